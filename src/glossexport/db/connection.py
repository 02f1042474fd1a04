"""SQLite connection management."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from glossexport.db.schema import init_schema

logger = logging.getLogger(__name__)


def get_connection(db_path: Path | str) -> sqlite3.Connection:
    """
    Get a SQLite connection with row factory and WAL mode.

    WAL (Write-Ahead Logging) mode lets the export job read while the
    annotation tool keeps writing glosses.
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def managed_connection(db_path: Path | str) -> Iterator[sqlite3.Connection]:
    """Open a connection that is closed on every exit path.

    Uncommitted work is rolled back when the block raises.
    """
    conn = get_connection(db_path)
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()
        logger.debug("Closed database connection to %s", db_path)


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize database schema."""
    init_schema(conn)
