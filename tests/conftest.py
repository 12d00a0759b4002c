"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from call_recap.config import (
    DeliverySettings,
    GateSettings,
    NotificationSettings,
    Settings,
    StorageSettings,
)
from call_recap.orchestrator.repository import SqlJobStore
from call_recap.orchestrator.store import InMemoryJobStore, JobStore


class RecordingSleep:
    """Async sleep replacement that records delays and only yields."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer CALL_RECAP_* variables out of tests."""

    for name in list(os.environ):
        if name.startswith("CALL_RECAP_") or name == "OPENAI_API_KEY":
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage=StorageSettings(
            db_path=tmp_path / "jobs.db",
            backend="memory",
            uploads_dir=tmp_path / "uploads",
            artifacts_dir=tmp_path / "artifacts",
            logs_dir=tmp_path / "logs",
        ),
        gate=GateSettings(dry_run=False, allow_network=False),
        notifications=NotificationSettings(enabled=True, recipient=None),
        delivery=DeliverySettings(slack_webhook_url="mock:slack"),
    )


@pytest.fixture(params=["memory", "sqlite"])
def job_store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[JobStore]:
    if request.param == "memory":
        store: JobStore = InMemoryJobStore()
    else:
        sql_store = SqlJobStore(tmp_path / "store.db", busy_timeout_ms=2_000)
        sql_store.init_schema()
        store = sql_store
    yield store
    store.close()
