"""
SQLite plumbing — schema, connections and explicit transactions.

Connections run in autocommit mode; every multi-statement mutation goes
through ``transaction()``, which wraps it in ``BEGIN IMMEDIATE … COMMIT`` and
rolls back on any error. ``sqlite3.Error`` never escapes this package: it is
re-raised as ``StorageError``.
"""
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..exceptions import StorageError

logger = logging.getLogger("tinysecrets.vault")

SCHEMA_VERSION = 2

_SCHEMA = """
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS secrets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project TEXT NOT NULL,
    environment TEXT NOT NULL,
    key TEXT NOT NULL,
    encrypted_value TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    UNIQUE(project, environment, key)
);

CREATE TABLE IF NOT EXISTS secret_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project TEXT NOT NULL,
    environment TEXT NOT NULL,
    key TEXT NOT NULL,
    encrypted_value TEXT NOT NULL,
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    deleted_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_secrets_project ON secrets(project);
CREATE INDEX IF NOT EXISTS idx_secrets_project_env ON secrets(project, environment);
CREATE INDEX IF NOT EXISTS idx_history_project_env_key
    ON secret_history(project, environment, key, version);
"""


def connect(path: Path) -> sqlite3.Connection:
    """Open the store file in autocommit mode with row access by name."""
    try:
        conn = sqlite3.connect(str(path), isolation_level=None)
    except sqlite3.Error as err:
        raise StorageError(f"Failed to open store database {path}: {err}") from err
    conn.row_factory = sqlite3.Row
    return conn


def create_schema(conn: sqlite3.Connection) -> None:
    try:
        conn.executescript(_SCHEMA)
    except sqlite3.Error as err:
        raise StorageError(f"Failed to initialize database schema: {err}") from err


def _rollback(conn: sqlite3.Connection) -> None:
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error as err:
        # the transaction is already gone when SQLite aborted it itself
        logger.debug("Rollback failed: %s", err)


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the enclosed statements as one atomic unit of work.

    Raises:
        StorageError: If any statement or the commit fails. Nothing from the
            block is persisted in that case.
    """
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as err:
        raise StorageError(f"Failed to start transaction: {err}") from err
    try:
        yield conn
    except sqlite3.Error as err:
        _rollback(conn)
        raise StorageError(f"Transaction aborted: {err}") from err
    except BaseException:
        _rollback(conn)
        raise
    try:
        conn.execute("COMMIT")
    except sqlite3.Error as err:
        _rollback(conn)
        raise StorageError(f"Failed to commit transaction: {err}") from err


def fetch_all(conn: sqlite3.Connection, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
    try:
        return conn.execute(sql, params).fetchall()
    except sqlite3.Error as err:
        raise StorageError(f"Query failed: {err}") from err


def fetch_one(conn: sqlite3.Connection, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
    try:
        return conn.execute(sql, params).fetchone()
    except sqlite3.Error as err:
        raise StorageError(f"Query failed: {err}") from err
