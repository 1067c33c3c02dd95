"""Local replica synchronization for mail, calendar, and task accounts."""

__version__ = "0.1.0"
