"""Persistence for sync jobs, synchronized records, and the mail search index."""

from .jobs import SqliteJobStore
from .search import MailSearchIndex
from .sqlite import SqliteRecordStore

__all__ = ["MailSearchIndex", "SqliteJobStore", "SqliteRecordStore"]
