"""Per-account protocol settings parsed from stored JSON blobs."""

from __future__ import annotations

from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
)

from .errors import ConfigurationError
from .models import SyncDomain


class ProtocolSettings(BaseModel):
    """Connection details for a mail account."""

    model_config = ConfigDict(extra="ignore")

    imap_host: str | None = Field(default=None, description="IMAP hostname")
    imap_port: int = Field(default=993, description="IMAP port")
    imap_use_ssl: bool = Field(default=True, description="Use IMAP over SSL")
    smtp_host: str | None = Field(default=None, description="SMTP hostname")
    smtp_port: int = Field(default=465, description="SMTP port")
    smtp_use_ssl: bool = Field(
        default=True, description="Use implicit SSL; STARTTLS when disabled"
    )
    endpoint: str | None = Field(
        default=None, description="EWS or JMAP endpoint URL"
    )
    username: str | None = Field(default=None, description="Login name")
    access_token: SecretStr | None = Field(default=None, description="OAuth token")
    password: SecretStr | None = Field(default=None, description="Account password")
    offline_sync_limit: int | None = Field(
        default=None,
        description="Only fetch messages from the last N days; None fetches all",
    )

    @field_validator("offline_sync_limit", mode="before")
    @classmethod
    def _parse_limit(cls, value: Any) -> Any:
        if isinstance(value, str) and value.lower() == "all":
            return None
        if isinstance(value, dict):
            return value.get("days")
        return value


class CalendarSettings(BaseModel):
    """Connection details for a calendar collection."""

    model_config = ConfigDict(extra="ignore")

    endpoint: str | None = Field(default=None, description="CalDAV collection URL")
    username: str | None = Field(default=None, description="CalDAV login name")
    password: SecretStr | None = Field(default=None, description="CalDAV password")
    access_token: SecretStr | None = Field(default=None, description="OAuth token")
    calendar_id: str = Field(default="primary", description="Remote calendar id")


class TaskSettings(BaseModel):
    """Connection details for a task list."""

    model_config = ConfigDict(extra="ignore")

    endpoint: str | None = Field(default=None, description="CalDAV collection URL")
    username: str | None = Field(default=None, description="CalDAV login name")
    password: SecretStr | None = Field(default=None, description="CalDAV password")
    access_token: SecretStr | None = Field(default=None, description="OAuth token")
    list_id: str = Field(default="default", description="Remote task list id")


DomainSettings = ProtocolSettings | CalendarSettings | TaskSettings

_SETTINGS_TYPES: dict[SyncDomain, type[BaseModel]] = {
    SyncDomain.EMAIL: ProtocolSettings,
    SyncDomain.CALENDAR: CalendarSettings,
    SyncDomain.TASKS: TaskSettings,
}


def secret_value(secret: SecretStr | None) -> str | None:
    """Return the plain value of an optional secret."""
    if secret is None:
        return None
    return secret.get_secret_value() or None


def parse_domain_settings(domain: SyncDomain, blob: dict[str, Any]) -> Any:
    """Build the settings model for ``domain`` from a stored blob.

    The blob may nest settings under the domain key or hold them flat.
    """
    section = blob.get(domain.value)
    source = section if isinstance(section, dict) else blob
    model = _SETTINGS_TYPES[domain]
    try:
        return model.model_validate(source)
    except ValidationError as exc:
        raise ConfigurationError(
            f"invalid {domain.value} settings: {exc.error_count()} error(s)"
        ) from exc


__all__ = [
    "CalendarSettings",
    "DomainSettings",
    "ProtocolSettings",
    "TaskSettings",
    "parse_domain_settings",
    "secret_value",
]
