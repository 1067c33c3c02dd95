"""Shared httpx plumbing for REST, SOAP, and JMAP adapters."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.errors import ConfigurationError, ParseError, RemoteError

LOGGER = logging.getLogger(__name__)


class HttpAdapter:
    """Base for adapters that talk to a remote service over HTTP.

    Each call opens a short-lived :class:`httpx.AsyncClient`. A transport can be
    injected, which tests use to serve canned responses.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    def _client(self, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport, **kwargs
        )

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        *,
        expected: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and raise :class:`RemoteError` on failure statuses."""
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {url} failed: {exc}") from exc
        ok = response.status_code in expected if expected else response.is_success
        if not ok:
            LOGGER.debug(
                "%s %s returned %s: %s",
                method,
                url,
                response.status_code,
                response.text[:500],
            )
            raise RemoteError(
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _json(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> dict[str, Any]:
        response = await self._request(client, method, url, **kwargs)
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise ParseError(f"{method} {url} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise ParseError(f"{method} {url} returned unexpected JSON")
        return payload

    async def _graph_pages(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Collect ``value`` items across pages, following ``@odata.nextLink``."""
        items: list[dict[str, Any]] = []
        next_url: str | None = url
        while next_url:
            data = await self._json(client, "GET", next_url, params=params)
            items.extend(data.get("value", []))
            next_url = data.get("@odata.nextLink")
            params = None  # nextLink is a full URL including the query
        return items

    async def _google_pages(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any],
        *,
        key: str = "items",
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Collect ``key`` entries across pages, passing ``nextPageToken`` back.

        Paging stops early once ``limit`` entries have been gathered.
        """
        items: list[dict[str, Any]] = []
        query = dict(params)
        while True:
            data = await self._json(client, "GET", url, params=query)
            items.extend(data.get(key, []))
            page_token = data.get("nextPageToken")
            if limit is not None and len(items) >= limit:
                return items[:limit]
            if not page_token:
                return items
            query["pageToken"] = page_token


def bearer_headers(token: str | None, service: str) -> dict[str, str]:
    """Return an Authorization header, failing when the token is missing."""
    if not token:
        raise ConfigurationError(f"{service} access token is not configured")
    return {"Authorization": f"Bearer {token}"}


def client_auth(
    token: str | None, username: str | None, password: str | None, service: str
) -> dict[str, Any]:
    """Return client keyword arguments for bearer auth, else basic auth."""
    if token:
        return {"headers": {"Authorization": f"Bearer {token}"}}
    if username and password:
        return {"auth": httpx.BasicAuth(username, password)}
    raise ConfigurationError(f"missing authentication material for {service}")


__all__ = ["HttpAdapter", "bearer_headers", "client_auth"]
