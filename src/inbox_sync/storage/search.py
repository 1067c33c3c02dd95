"""Rebuildable full-text index over stored mail."""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Sequence
from pathlib import Path
from types import TracebackType

from ..core.interfaces import MailIndex
from ..core.models import MailMessage

LOGGER = logging.getLogger(__name__)

INDEX_FILE_NAME = "mail.idx"

_TERM_PATTERN = re.compile(r"\w+", re.UNICODE)


class MailSearchIndex(MailIndex):
    """SQLite FTS5 term index kept in its own directory beside the primary store.

    The index holds subject, preview, body, and labels keyed by message id. It
    can be dropped and rebuilt from the record store at any time.
    """

    def __init__(self, index_dir: Path | str) -> None:
        """Open or create the index database under ``index_dir``."""
        directory = Path(index_dir)
        directory.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(
            directory / INDEX_FILE_NAME, check_same_thread=False
        )
        with self._connection:
            self._connection.execute(
                """
                CREATE VIRTUAL TABLE IF NOT EXISTS mail_fts USING fts5(
                    message_id UNINDEXED,
                    subject,
                    preview,
                    body,
                    labels,
                    tokenize = 'unicode61'
                )
                """
            )

    def __enter__(self) -> MailSearchIndex:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def index_messages(self, messages: Sequence[MailMessage]) -> None:
        """Replace the indexed document of every message in one commit."""
        with self._connection:
            for message in messages:
                self._connection.execute(
                    "DELETE FROM mail_fts WHERE message_id = ?", (message.id,)
                )
                self._connection.execute(
                    """
                    INSERT INTO mail_fts (message_id, subject, preview, body, labels)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        message.id,
                        message.subject,
                        message.preview,
                        message.body_text or "",
                        " ".join(message.labels),
                    ),
                )
        LOGGER.debug("Indexed %d message(s)", len(messages))

    def search(self, query: str, limit: int) -> list[str]:
        """Return ids of messages matching every term of ``query`` as a prefix."""
        terms = _TERM_PATTERN.findall(query)
        if not terms:
            return []
        match = " ".join(f'"{term}"*' for term in terms)
        try:
            cursor = self._connection.execute(
                """
                SELECT message_id FROM mail_fts
                WHERE mail_fts MATCH ?
                ORDER BY rank
                LIMIT ?
                """,
                (match, limit),
            )
        except sqlite3.OperationalError as exc:
            LOGGER.debug("Index rejected query %r: %s", query, exc)
            return []
        return [row[0] for row in cursor.fetchall()]

    def remove(self, message_ids: Sequence[str]) -> None:
        """Drop the indexed documents of deleted messages."""
        with self._connection:
            self._connection.executemany(
                "DELETE FROM mail_fts WHERE message_id = ?",
                [(message_id,) for message_id in message_ids],
            )

    def clear(self) -> None:
        """Drop every indexed document."""
        with self._connection:
            self._connection.execute("DELETE FROM mail_fts")

    def close(self) -> None:
        self._connection.close()


__all__ = ["INDEX_FILE_NAME", "MailSearchIndex"]
