"""SQLite engine policy and datetime conversions shared by the job store."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def sqlite_url(db_path: Path) -> str:
    return f"sqlite:///{db_path}"


def sqlite_pragmas(busy_timeout_ms: int) -> tuple[str, ...]:
    """Statements run on every new connection."""

    return (
        "PRAGMA journal_mode = WAL",
        "PRAGMA synchronous = NORMAL",
        f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}",
    )


def build_sqlite_engine(*, db_path: Path, busy_timeout_ms: int) -> Engine:
    """Engine for one SQLite file; the parent directory is created on demand.

    NullPool keeps connections short-lived so worker threads never share one.
    """

    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        sqlite_url(db_path),
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )
    pragmas = sqlite_pragmas(busy_timeout_ms)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: sqlite3.Connection, _record: object) -> None:
        cursor = dbapi_connection.cursor()
        try:
            for statement in pragmas:
                cursor.execute(statement)
        finally:
            cursor.close()

    return engine


def to_db_datetime(value: datetime) -> datetime:
    """SQLite stores naive UTC."""

    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def to_utc_aware_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
