from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from outreach.store.migrations import apply_schema


class SqliteSession:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def execute(self, query: str, params: Iterable[Any] | None = None) -> int:
        cur = self._conn.execute(query, list(params or []))
        return cur.rowcount

    def executemany(self, query: str, rows: Sequence[Sequence[Any]]) -> int:
        cur = self._conn.executemany(query, rows)
        return cur.rowcount

    def fetch_all(self, query: str, params: Iterable[Any] | None = None) -> list[sqlite3.Row]:
        cur = self._conn.execute(query, list(params or []))
        return cur.fetchall()

    def fetch_one(self, query: str, params: Iterable[Any] | None = None) -> sqlite3.Row | None:
        cur = self._conn.execute(query, list(params or []))
        return cur.fetchone()


class SqliteStore:
    def __init__(self, db_path: Path, busy_timeout: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def session(self) -> Iterator[SqliteSession]:
        """One transaction: committed on exit, rolled back on any exception."""
        with self.connect() as conn:
            yield SqliteSession(conn)

    @contextmanager
    def snapshot(self) -> Iterator[SqliteSession]:
        """Read session where every query sees the same database state."""
        with self.connect() as conn:
            conn.execute("BEGIN")
            yield SqliteSession(conn)

    def apply_schema(self, schema_path: Path) -> None:
        with self.connect() as conn:
            apply_schema(conn, schema_path)

    def execute(self, query: str, params: Iterable[Any] | None = None) -> int:
        with self.session() as session:
            return session.execute(query, params)

    def fetch_all(self, query: str, params: Iterable[Any] | None = None) -> list[sqlite3.Row]:
        with self.session() as session:
            return session.fetch_all(query, params)

    def fetch_one(self, query: str, params: Iterable[Any] | None = None) -> sqlite3.Row | None:
        with self.session() as session:
            return session.fetch_one(query, params)
