"""SQLite engine policy and timestamp conversion shared by the repository."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine


@dataclass(frozen=True, slots=True)
class SqlitePolicy:
    """Pragmas applied to every new connection.

    WAL lets status readers poll while batch children write their stage outputs.
    """

    busy_timeout_ms: int = 5_000
    journal_mode: str = "WAL"
    foreign_keys: bool = True

    def apply(self, connection: sqlite3.Connection) -> None:
        cursor = connection.cursor()
        try:
            cursor.execute(f"PRAGMA journal_mode = {self.journal_mode}")
            cursor.execute(f"PRAGMA busy_timeout = {max(1, self.busy_timeout_ms)}")
            cursor.execute(f"PRAGMA foreign_keys = {'ON' if self.foreign_keys else 'OFF'}")
        finally:
            cursor.close()


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def db_now() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""

    return utc_now().replace(tzinfo=None)


def from_db_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def build_sqlite_engine(db_path: Path, policy: SqlitePolicy | None = None) -> Engine:
    policy = policy or SqlitePolicy()
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, policy.busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )
    event.listen(engine, "connect", lambda connection, _record: policy.apply(connection))
    return engine
