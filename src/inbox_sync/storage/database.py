"""SQLite connection setup and schema migrations shared by the stores."""

from __future__ import annotations

import logging
import re
import sqlite3
from pathlib import Path

from ..core.errors import StorageError

LOGGER = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent / "schema"

_ADD_COLUMN = re.compile(
    r"^\s*ALTER\s+TABLE\s+(\w+)\s+ADD\s+COLUMN\s+(\w+)", re.IGNORECASE | re.MULTILINE
)


def open_database(db_path: Path | str) -> sqlite3.Connection:
    """Open ``db_path`` with row access by name and apply pending migrations."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        connection = sqlite3.connect(path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        with connection:
            connection.execute("PRAGMA foreign_keys = ON")
            connection.execute("PRAGMA journal_mode = WAL")
        apply_migrations(connection)
    except sqlite3.Error as exc:
        raise StorageError(f"Unable to open database {path}: {exc}") from exc
    return connection


def apply_migrations(connection: sqlite3.Connection) -> None:
    """Execute every schema script in order; scripts are idempotent.

    ``ALTER TABLE ... ADD COLUMN`` cannot be guarded in SQL, so scripts that
    contain one run statement by statement and skip columns already present.
    """
    for migration in sorted(SCHEMA_DIR.glob("*.sql")):
        LOGGER.debug("Applying migration %s", migration.name)
        script = migration.read_text(encoding="utf-8")
        try:
            if _ADD_COLUMN.search(script):
                _apply_column_migration(connection, script)
            else:
                with connection:
                    connection.executescript(script)
        except sqlite3.Error as exc:
            LOGGER.error("Migration %s failed: %s", migration.name, exc)
            raise


def _apply_column_migration(connection: sqlite3.Connection, script: str) -> None:
    lines = [
        line
        for line in script.splitlines()
        if line.strip() and not line.strip().startswith("--")
    ]
    statements = [part.strip() for part in "\n".join(lines).split(";")]
    for statement in filter(None, statements):
        match = _ADD_COLUMN.match(statement)
        if match and _has_column(connection, match.group(1), match.group(2)):
            LOGGER.debug(
                "Column %s.%s already exists, skipping ALTER TABLE",
                match.group(1),
                match.group(2),
            )
            continue
        with connection:
            connection.execute(statement)


def _has_column(connection: sqlite3.Connection, table: str, column: str) -> bool:
    rows = connection.execute(f"PRAGMA table_info({table})").fetchall()
    return any(row[1] == column for row in rows)


__all__ = ["SCHEMA_DIR", "apply_migrations", "open_database"]
