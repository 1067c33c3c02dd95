"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./inbox_sync.db"), description="SQLite database path"
    )
    index_dir: Path = Field(
        default=Path("./inbox_sync_index"),
        description="Directory holding the rebuildable mail search index",
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle structured logging format"
    )


class SyncSettings(BaseModel):
    """Settings controlling job admission, retries, and polling cadence."""

    max_parallel_jobs: int = Field(
        default=4, description="Global ceiling on concurrently running jobs"
    )
    max_jobs_per_account: int = Field(
        default=2, ge=1, description="Concurrent jobs allowed per account"
    )
    max_jobs_per_account_domain: int = Field(
        default=1, ge=1, description="Concurrent jobs allowed per account and domain"
    )
    due_batch_size: int = Field(
        default=40, ge=1, description="Due jobs fetched per scheduler pass"
    )
    max_attempts: int = Field(
        default=5, ge=1, description="Attempts before a job is marked failed"
    )
    backoff_base_seconds: int = Field(
        default=30, ge=1, description="Base delay for exponential backoff"
    )
    backoff_cap: int = Field(
        default=8, ge=0, description="Largest exponent applied to the backoff base"
    )
    email_poll_interval_secs: int = Field(
        default=120, ge=1, description="Delay between mail sync jobs"
    )
    calendar_poll_interval_secs: int = Field(
        default=300, ge=1, description="Delay between calendar sync jobs"
    )
    task_poll_interval_secs: int = Field(
        default=300, ge=1, description="Delay between task sync jobs"
    )
    cycle_interval_secs: float = Field(
        default=15.0, gt=0, description="Sleep between daemon scheduling cycles"
    )
    email_folder: str = Field(default="INBOX", description="Folder to synchronize")
    email_fetch_limit: int = Field(
        default=100, ge=1, description="Messages fetched per mail sync job"
    )
    calendar_past_days: int = Field(
        default=30, ge=0, description="Days of past events to synchronize"
    )
    calendar_future_days: int = Field(
        default=365, ge=0, description="Days of future events to synchronize"
    )
    stale_running_after_secs: int = Field(
        default=1800,
        ge=1,
        description="Age after which running jobs are requeued on startup",
    )

    @field_validator("max_parallel_jobs")
    @classmethod
    def _clamp_parallelism(cls, value: int) -> int:
        return max(1, min(40, value))


class HttpSettings(BaseModel):
    """Settings shared by HTTP-based protocol adapters."""

    timeout_seconds: float = Field(
        default=30.0, gt=0, description="Request timeout for remote services"
    )


class MailTransportSettings(BaseModel):
    """Settings for socket-based mail transports."""

    per_host_connections: int = Field(
        default=2, ge=1, description="Concurrent connections allowed per mail host"
    )
    idle_timeout_secs: int = Field(
        default=55, ge=1, description="Upper bound for a single IMAP IDLE wait"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    mail: MailTransportSettings = Field(default_factory=MailTransportSettings)


ENV_PREFIX = "INBOX_SYNC_"
SECRET_SEGMENT = "SECRET__"


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if key and key.startswith(ENV_PREFIX)
            }

    env_values = (
        {key: value for key, value in os.environ.items() if key.startswith(ENV_PREFIX)}
        if include_environment
        else {}
    )

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        # Credentials are resolved per account, never through settings.
        if key.removeprefix(ENV_PREFIX).startswith(SECRET_SEGMENT):
            continue
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AppSettings",
    "ENV_PREFIX",
    "HttpSettings",
    "LoggingSettings",
    "MailTransportSettings",
    "StorageSettings",
    "SyncSettings",
    "load_app_settings",
]
