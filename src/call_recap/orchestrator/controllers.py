"""Controllers for job, ingest and storage CLI commands."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from call_recap.config import Settings
from call_recap.orchestrator.events import JsonlEventLog
from call_recap.orchestrator.models import JobRecord
from call_recap.orchestrator.notifications import build_notifier
from call_recap.orchestrator.repository import SqlJobStore
from call_recap.orchestrator.services import (
    IngestOutcome,
    JobService,
    build_job_service,
    delete_job_with_blobs,
    update_user_settings,
)
from call_recap.orchestrator.store import JobStore, open_job_store
from call_recap.storage.alembic_runner import head_revision

T = TypeVar("T")


@dataclass(slots=True)
class JobSubmitCommand:
    """CLI input for uploading a recording."""

    db_path: Path | None
    file_path: Path
    original_name: str | None
    wait: bool


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    limit: int


@dataclass(slots=True)
class JobInspectCommand:
    """CLI input for show/delete of one job."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class WebhookIngestCommand:
    db_path: Path | None
    transcript_url: str | None


@dataclass(slots=True)
class FileEventIngestCommand:
    """CLI input for a remote storage file event."""

    db_path: Path | None
    url: str | None
    name: str | None
    tag: str
    wait: bool


@dataclass(slots=True)
class PrecallPrepCommand:
    """CLI input for generating a pre-call plan."""

    db_path: Path | None
    fields: dict[str, str | None]


@dataclass(slots=True)
class SettingsCommand:
    db_path: Path | None
    auto_precall_email: bool | None = None
    auto_postcall_email: bool | None = None


@dataclass(slots=True)
class EventsTailCommand:
    db_path: Path | None
    limit: int


@dataclass(slots=True)
class DbStatusCommand:
    db_path: Path | None


@dataclass(slots=True)
class CommandResult:
    """Rendered lines plus whether the command succeeded."""

    lines: list[str]
    success: bool = True


class JobsCliController:
    """Coordinates job submission, ingestion and inspection CLI operations."""

    def submit(self, command: JobSubmitCommand) -> CommandResult:
        settings = _settings(command.db_path)
        outcome = _run_with_service(
            settings,
            lambda service: service.submit_upload(
                command.file_path,
                command.original_name,
                wait=command.wait,
            ),
        )
        return _outcome_result(outcome)

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _job_store(settings) as store:
            jobs = store.list_jobs(command.limit)
        if not jobs:
            return ["No jobs found."]
        return [_job_line(job) for job in jobs]

    def show(self, command: JobInspectCommand) -> CommandResult:
        settings = _settings(command.db_path)
        with _job_store(settings) as store:
            job = store.get_job(command.job_id)
        if job is None:
            return CommandResult(lines=[f"Job not found: {command.job_id}"], success=False)
        return CommandResult(lines=[json.dumps(job.to_dict(), indent=2, ensure_ascii=False)])

    def delete(self, command: JobInspectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _job_store(settings) as store:
            existed = delete_job_with_blobs(store, settings.storage, command.job_id)
        if existed:
            return [f"Job deleted: {command.job_id}"]
        return [f"Job not found (nothing to delete): {command.job_id}"]

    def ingest_webhook(self, command: WebhookIngestCommand) -> CommandResult:
        settings = _settings(command.db_path)
        outcome = _run_with_service(
            settings,
            lambda service: service.ingest_webhook({"transcript_url": command.transcript_url}),
        )
        return _outcome_result(outcome)

    def ingest_file_event(self, command: FileEventIngestCommand) -> CommandResult:
        settings = _settings(command.db_path)
        event = {"tag": command.tag, "url": command.url, "name": command.name}
        outcome = _run_with_service(
            settings,
            lambda service: service.ingest_file_event(event, wait=command.wait),
        )
        return _outcome_result(outcome)

    def precall_prep(self, command: PrecallPrepCommand) -> CommandResult:
        settings = _settings(command.db_path)
        outcome = _run_with_service(
            settings,
            lambda service: service.prepare_precall(command.fields),
        )
        return _outcome_result(outcome)

    def notification_settings(self, command: SettingsCommand) -> list[str]:
        """Show notification preferences, applying any requested changes first."""

        settings = _settings(command.db_path)
        with _job_store(settings) as store:
            stored = update_user_settings(
                store,
                auto_precall_email=command.auto_precall_email,
                auto_postcall_email=command.auto_postcall_email,
            )
        return [json.dumps(stored.to_dict(), indent=2)]

    def events_tail(self, command: EventsTailCommand) -> list[str]:
        settings = _settings(command.db_path)
        events = JsonlEventLog(settings.storage.events_path).read_recent(command.limit)
        if not events:
            return ["No ingest events recorded."]
        return [json.dumps(event.to_dict(), ensure_ascii=False) for event in events]

    def db_status(self, command: DbStatusCommand) -> list[str]:
        settings = _settings(command.db_path)
        if settings.storage.backend != "sqlite":
            return [f"Store backend: {settings.storage.backend} (no schema to migrate)"]
        with _job_store(settings) as store:
            if not isinstance(store, SqlJobStore):
                return [f"Store backend: {settings.storage.backend}"]
            current = store.schema_version()
            jobs = len(store.list_jobs())
        head = head_revision(settings.storage.db_path)
        return [
            f"DB path: {settings.storage.db_path}",
            f"Schema revision: {current or 'none'} (head: {head or 'none'})",
            f"Up to date: {'yes' if current == head else 'no'}",
            f"Jobs: {jobs}",
        ]


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _job_store(settings: Settings) -> Iterator[JobStore]:
    store = open_job_store(settings.storage)
    try:
        yield store
    finally:
        store.close()


def _run_with_service(
    settings: Settings,
    action: Callable[[JobService], Awaitable[T]],
) -> T:
    async def _main(store: JobStore) -> T:
        service = build_job_service(
            settings,
            store=store,
            event_log=JsonlEventLog(settings.storage.events_path),
            notifier=build_notifier(settings.notifications),
        )
        try:
            return await action(service)
        finally:
            await service.aclose()

    with _job_store(settings) as store:
        return asyncio.run(_main(store))


def _outcome_result(outcome: IngestOutcome) -> CommandResult:
    return CommandResult(
        lines=[
            f"HTTP {outcome.status_code}",
            json.dumps(outcome.to_response(), ensure_ascii=False),
        ],
        success=outcome.ok,
    )


def _job_line(job: JobRecord) -> str:
    parts = [
        job.id,
        job.status.value,
        job.created_at.isoformat(timespec="seconds"),
        f"notify={job.notification_status.value}",
    ]
    if job.current_stage:
        parts.append(f"stage={job.current_stage}")
    if job.result_summary:
        parts.append(job.result_summary)
    return "  ".join(parts)
