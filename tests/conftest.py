"""Shared fixtures for storage-backed tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from inbox_sync.core.config import StorageSettings
from inbox_sync.storage import SqliteJobStore, SqliteRecordStore


@pytest.fixture
def storage_settings(tmp_path: Path) -> StorageSettings:
    return StorageSettings(db_path=tmp_path / "sync.db", index_dir=tmp_path / "index")


@pytest.fixture
def record_store(storage_settings: StorageSettings) -> Iterator[SqliteRecordStore]:
    store = SqliteRecordStore(storage_settings)
    yield store
    store.close()


@pytest.fixture
def job_store(storage_settings: StorageSettings) -> Iterator[SqliteJobStore]:
    store = SqliteJobStore(storage_settings)
    yield store
    store.close()
