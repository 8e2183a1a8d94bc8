from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

DEFAULT_SQLITE_CONNECT_TIMEOUT_SECONDS = 30.0
DEFAULT_SQLITE_BUSY_TIMEOUT_MS = 30_000

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"
# Bump together with schema.sql.
SCHEMA_VERSION = 1


def _read_positive_env(name: str, default: float, cast: type = float):
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = cast(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _configure_connection(conn: sqlite3.Connection) -> None:
    busy_timeout_ms = _read_positive_env(
        "DOCSWEEP_SQLITE_BUSY_TIMEOUT_MS", DEFAULT_SQLITE_BUSY_TIMEOUT_MS, int
    )
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")


def get_connection(db_path: Path) -> sqlite3.Connection:
    timeout = _read_positive_env(
        "DOCSWEEP_SQLITE_CONNECT_TIMEOUT_SECONDS", DEFAULT_SQLITE_CONNECT_TIMEOUT_SECONDS
    )
    conn = sqlite3.connect(db_path, timeout=timeout)
    conn.row_factory = sqlite3.Row
    _configure_connection(conn)
    return conn


@contextmanager
def write_transaction(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Open a connection holding the write lock from the first statement.

    Commits when the block exits normally, rolls back on an exception, and
    always closes the connection. Check-then-write sequences run inside one
    of these so concurrent writers cannot interleave between the check and
    the write.
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE;")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()
    finally:
        conn.close()


def schema_version(db_path: Path) -> int:
    with get_connection(db_path) as conn:
        return int(conn.execute("PRAGMA user_version;").fetchone()[0])


def initialize_schema(db_path: Path, schema_path: Path = SCHEMA_PATH) -> None:
    """Apply ``schema_path`` (idempotent) and stamp ``SCHEMA_VERSION``."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with get_connection(db_path) as conn:
        conn.executescript(schema_path.read_text(encoding="utf-8"))
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
        conn.commit()
