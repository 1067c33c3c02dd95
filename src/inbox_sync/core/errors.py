"""Exception hierarchy shared by adapters, storage, and the worker."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for failures raised while synchronizing an account."""


class ConfigurationError(SyncError):
    """Account settings or credentials are missing or unusable."""


class RemoteError(SyncError):
    """Remote service failed, refused, or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseError(SyncError):
    """Remote payload could not be interpreted."""


class StorageError(RuntimeError):
    """Local persistence failed."""


__all__ = [
    "ConfigurationError",
    "ParseError",
    "RemoteError",
    "StorageError",
    "SyncError",
]
