"""Ingestion helpers turning raw remote payloads into canonical records."""

from .parser import EmailParser, make_preview, parse_address_list, resolve_thread_id

__all__ = [
    "EmailParser",
    "make_preview",
    "parse_address_list",
    "resolve_thread_id",
]
