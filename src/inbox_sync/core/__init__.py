"""Core utilities for configuration, logging, and dependency wiring."""

from .config import AppSettings, SyncSettings, load_app_settings
from .container import ServiceContainer
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "ServiceContainer",
    "SyncSettings",
    "configure_logging",
    "load_app_settings",
]
