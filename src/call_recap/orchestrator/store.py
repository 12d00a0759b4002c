"""Job store interface and the in-memory backend.

Both backends share one contract so call sites never branch on the storage
engine; `open_job_store` picks the backend once, at construction time.
"""

from __future__ import annotations

import copy
import itertools
import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol

from call_recap.orchestrator.errors import DuplicateJobError, JobNotFoundError
from call_recap.orchestrator.models import (
    JobRecord,
    UserSettings,
    normalize_job_fields,
    normalize_payload,
)
from call_recap.orchestrator.repository import SqlJobStore
from call_recap.storage.common import utc_now

if TYPE_CHECKING:
    from call_recap.config import StorageSettings


class JobStore(Protocol):
    """Durable record of each job's lifecycle."""

    def create_job(self, record: JobRecord) -> JobRecord: ...

    def update_job(self, job_id: str, fields: Mapping[str, object]) -> JobRecord | None: ...

    def get_job(self, job_id: str) -> JobRecord | None: ...

    def list_jobs(self, limit: int | None = None) -> list[JobRecord]: ...

    def delete_job(self, job_id: str) -> None: ...

    def get_settings(self) -> UserSettings: ...

    def save_settings(self, settings: UserSettings) -> UserSettings: ...

    def close(self) -> None: ...


class InMemoryJobStore:
    """Process-local job store used for tests and when SQLite is unavailable."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, tuple[int, JobRecord]] = {}
        self._sequence = itertools.count(1)
        self._settings: UserSettings | None = None

    def create_job(self, record: JobRecord) -> JobRecord:
        payload = normalize_payload(record.payload)
        with self._lock:
            if record.id in self._records:
                raise DuplicateJobError(f"Job already exists: {record.id}", job_id=record.id)
            stored = record.copy()
            stored.payload = payload
            self._records[record.id] = (next(self._sequence), stored)
            return stored.copy()

    def update_job(self, job_id: str, fields: Mapping[str, object]) -> JobRecord | None:
        if not fields:
            return None
        with self._lock:
            entry = self._records.get(job_id)
            if entry is None:
                raise JobNotFoundError(f"Job not found: {job_id}", job_id=job_id)
            seq, current = entry
            changes = normalize_job_fields(current, fields, now=utc_now())
            updated = current.copy()
            for name, value in changes.items():
                setattr(updated, name, value)
            self._records[job_id] = (seq, updated)
            return updated.copy()

    def get_job(self, job_id: str) -> JobRecord | None:
        with self._lock:
            entry = self._records.get(job_id)
            return entry[1].copy() if entry is not None else None

    def list_jobs(self, limit: int | None = None) -> list[JobRecord]:
        with self._lock:
            entries = sorted(
                self._records.values(),
                key=lambda item: (item[1].created_at, item[0]),
                reverse=True,
            )
            selected = entries if limit is None else entries[: max(0, limit)]
            return [record.copy() for _, record in selected]

    def delete_job(self, job_id: str) -> None:
        with self._lock:
            self._records.pop(job_id, None)

    def get_settings(self) -> UserSettings:
        with self._lock:
            return copy.copy(self._settings) if self._settings else UserSettings()

    def save_settings(self, settings: UserSettings) -> UserSettings:
        with self._lock:
            self._settings = UserSettings(
                auto_precall_email=settings.auto_precall_email,
                auto_postcall_email=settings.auto_postcall_email,
                updated_at=utc_now(),
            )
            return copy.copy(self._settings)

    def close(self) -> None:
        """Nothing to release."""


def open_job_store(settings: StorageSettings) -> JobStore:
    """Build the configured backend with its schema ready."""

    if settings.backend == "memory":
        return InMemoryJobStore()
    store = SqlJobStore(settings.db_path, busy_timeout_ms=settings.busy_timeout_ms)
    store.init_schema()
    return store
