"""Credential resolvers consumed by the sync worker."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from .config import ENV_PREFIX

LOGGER = logging.getLogger(__name__)

PASSWORD_NAMESPACE = "account_password"
ACCESS_TOKEN_NAMESPACE = "oauth_access_token"


class StaticCredentialResolver:
    """Resolve secrets from an in-memory mapping keyed by account and namespace."""

    def __init__(self, secrets: Mapping[tuple[str, str], str] | None = None) -> None:
        self._secrets = dict(secrets or {})

    def set(self, account_id: str, namespace: str, value: str) -> None:
        self._secrets[(account_id, namespace)] = value

    def resolve(self, account_id: str, namespace: str) -> str | None:
        return self._secrets.get((account_id, namespace))


class EnvCredentialResolver:
    """Resolve secrets from ``INBOX_SYNC_SECRET__<NAMESPACE>__<ACCOUNT>`` variables."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ

    def resolve(self, account_id: str, namespace: str) -> str | None:
        key = f"{ENV_PREFIX}SECRET__{namespace.upper()}__{_env_token(account_id)}"
        value = self._environ.get(key)
        if value:
            LOGGER.debug(
                "Resolved %s for account %s from environment", namespace, account_id
            )
            return value
        return None


def _env_token(account_id: str) -> str:
    return "".join(char if char.isalnum() else "_" for char in account_id).upper()


__all__ = [
    "ACCESS_TOKEN_NAMESPACE",
    "EnvCredentialResolver",
    "PASSWORD_NAMESPACE",
    "StaticCredentialResolver",
]
