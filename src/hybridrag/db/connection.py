"""SQLite connection layer with sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sqlite_vec

_BUSY_TIMEOUT_S = 30.0


class Database:
    """Per-project SQLite database with sqlite-vec vector search support.

    Connections run in autocommit mode (``isolation_level=None``); callers that
    need atomicity open an explicit transaction through
    :meth:`hybridrag.db.repository.Repository.transaction` or
    :meth:`~hybridrag.db.repository.Repository.snapshot`.

    sqlite3 connections must not be shared between threads, so concurrent
    workers each open their own via :meth:`session`.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Connections open through connect() or session().

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection."""
        conn = sqlite3.connect(
            self.db_path,
            timeout=_BUSY_TIMEOUT_S,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        """Yield a fresh connection and close it afterwards."""
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()
