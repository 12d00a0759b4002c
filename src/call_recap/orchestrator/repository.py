"""Durable job store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from call_recap.orchestrator.errors import DuplicateJobError, JobNotFoundError, StorageError
from call_recap.orchestrator.models import (
    JobRecord,
    JobSource,
    JobStatus,
    NotificationStatus,
    UserSettings,
    normalize_job_fields,
    normalize_payload,
)
from call_recap.storage.alembic_runner import current_revision, upgrade_head
from call_recap.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from call_recap.storage.sqlmodel_models import JobRow, UserSettingsRow

logger = logging.getLogger(__name__)


class SqlJobStore:
    """Job persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        try:
            upgrade_head(self.db_path)
        except SQLAlchemyError as error:
            raise StorageError(f"Failed to migrate job store schema: {error}") from error

    def schema_version(self) -> str | None:
        """Applied Alembic revision, or None when the schema was never migrated."""

        with self._storage_errors("read schema version"):
            return current_revision(self.engine)

    def create_job(self, record: JobRecord) -> JobRecord:
        payload = normalize_payload(record.payload)
        try:
            with Session(self.engine) as session:
                row = JobRow(job_id=record.id, status=record.status.value)
                _apply_record(row, record)
                row.payload_json = _dump_payload(payload)
                session.add(row)
                session.commit()
                session.refresh(row)
                return _to_job_record(row)
        except IntegrityError as error:
            raise DuplicateJobError(
                f"Job already exists: {record.id}",
                job_id=record.id,
            ) from error
        except SQLAlchemyError as error:
            raise StorageError(f"Failed to create job {record.id}: {error}") from error

    def update_job(self, job_id: str, fields: Mapping[str, object]) -> JobRecord | None:
        if not fields:
            return None
        with self._storage_errors(f"update job {job_id}"), Session(self.engine) as session:
            row = session.exec(select(JobRow).where(JobRow.job_id == job_id)).one_or_none()
            if row is None:
                raise JobNotFoundError(f"Job not found: {job_id}", job_id=job_id)
            changes = normalize_job_fields(_to_job_record(row), fields, now=utc_now())
            _apply_changes(row, changes)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_record(row)

    def get_job(self, job_id: str) -> JobRecord | None:
        with self._storage_errors(f"read job {job_id}"), Session(self.engine) as session:
            row = session.exec(select(JobRow).where(JobRow.job_id == job_id)).one_or_none()
            return _to_job_record(row) if row is not None else None

    def list_jobs(self, limit: int | None = None) -> list[JobRecord]:
        """List jobs, newest first."""

        with self._storage_errors("list jobs"), Session(self.engine) as session:
            statement = select(JobRow).order_by(
                col(JobRow.created_at).desc(),
                col(JobRow.seq).desc(),
            )
            if limit is not None:
                statement = statement.limit(max(0, limit))
            rows = session.exec(statement).all()
            return [_to_job_record(row) for row in rows]

    def delete_job(self, job_id: str) -> None:
        with self._storage_errors(f"delete job {job_id}"), Session(self.engine) as session:
            row = session.exec(select(JobRow).where(JobRow.job_id == job_id)).one_or_none()
            if row is None:
                return
            session.delete(row)
            session.commit()
            logger.info("Deleted job %s", job_id)

    def get_settings(self) -> UserSettings:
        with self._storage_errors("read settings"), Session(self.engine) as session:
            row = session.get(UserSettingsRow, 1)
            if row is None:
                return UserSettings()
            return _to_user_settings(row)

    def save_settings(self, settings: UserSettings) -> UserSettings:
        with self._storage_errors("save settings"), Session(self.engine) as session:
            row = session.get(UserSettingsRow, 1) or UserSettingsRow(id=1)
            row.auto_precall_email = settings.auto_precall_email
            row.auto_postcall_email = settings.auto_postcall_email
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info("Saved notification settings")
            return _to_user_settings(row)

    @contextmanager
    def _storage_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as error:
            raise StorageError(f"Failed to {action}: {error}") from error


def _apply_record(row: JobRow, record: JobRecord) -> None:
    row.source = record.source.value
    row.input_ref = record.input_ref
    row.original_name = record.original_name
    row.current_stage = record.current_stage
    row.result_summary = record.result_summary
    row.error = record.error
    row.notification_status = record.notification_status.value
    row.notification_sent_at = (
        to_db_datetime(record.notification_sent_at)
        if record.notification_sent_at is not None
        else None
    )
    row.notification_error = record.notification_error
    row.created_at = to_db_datetime(record.created_at)
    row.updated_at = to_db_datetime(record.updated_at)


def _apply_changes(row: JobRow, changes: Mapping[str, Any]) -> None:
    for name, value in changes.items():
        if name == "payload":
            row.payload_json = _dump_payload(value)
        elif name in {"status", "notification_status"}:
            setattr(row, name, value.value)
        elif name in {"updated_at", "notification_sent_at"}:
            setattr(row, name, to_db_datetime(value) if value is not None else None)
        else:
            setattr(row, name, value)


def _dump_payload(payload: dict[str, Any] | None) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def _load_payload(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else None


def _to_job_record(row: JobRow) -> JobRecord:
    return JobRecord(
        id=row.job_id,
        status=JobStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        source=JobSource(row.source),
        input_ref=row.input_ref,
        original_name=row.original_name,
        current_stage=row.current_stage,
        result_summary=row.result_summary,
        payload=_load_payload(row.payload_json),
        error=row.error,
        notification_status=NotificationStatus(row.notification_status),
        notification_sent_at=(
            to_utc_aware_datetime(row.notification_sent_at)
            if row.notification_sent_at is not None
            else None
        ),
        notification_error=row.notification_error,
    )


def _to_user_settings(row: UserSettingsRow) -> UserSettings:
    return UserSettings(
        auto_precall_email=row.auto_precall_email,
        auto_postcall_email=row.auto_postcall_email,
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
