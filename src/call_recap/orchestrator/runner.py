"""Pipeline runner: drives one job through its stages and records every transition.

Each stage runs through the retry executor with its own policy. Stage order is
fixed and a failed stage ends the job; later stages never run. Every state
change is written to the job store before the next stage starts, and the
terminal notification is awaited so its outcome is always recorded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from call_recap.config import NotificationSettings
from call_recap.orchestrator.errors import (
    CallRecapError,
    InvalidTransitionError,
    JobNotFoundError,
)
from call_recap.orchestrator.events import EventLog
from call_recap.orchestrator.models import (
    IngestEvent,
    JobRecord,
    JobStatus,
    NotificationStatus,
    normalize_payload,
)
from call_recap.orchestrator.notifications import Notifier, build_notification_message
from call_recap.orchestrator.retry import RetryPolicy, Sleeper, execute_with_backoff
from call_recap.orchestrator.store import JobStore
from call_recap.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "Analysis complete."

StatusListener = Callable[[JobRecord], None]


@dataclass(slots=True)
class StageContext:
    """Mutable state shared by the stages of one job run."""

    job: JobRecord
    values: dict[str, Any] = field(default_factory=dict)
    summary: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


StageOperation = Callable[[StageContext], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class PipelineStage:
    name: str
    operation: StageOperation
    policy: RetryPolicy


def configured_recipient(job: JobRecord, settings: NotificationSettings) -> str | None:
    return settings.recipient


@dataclass(frozen=True, slots=True)
class NotificationRoute:
    """Who a pipeline notifies, with what message, and which stored preference gates it."""

    preference: str = "auto_postcall_email"
    recipient: Callable[[JobRecord, NotificationSettings], str | None] = configured_recipient
    message: Callable[[JobRecord], tuple[str, str]] = build_notification_message


class PipelineRunner:
    """Runs jobs stage by stage against a job store."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: JobStore,
        stages: Sequence[PipelineStage],
        notifier: Notifier | None,
        notification_settings: NotificationSettings,
        event_log: EventLog,
        listeners: Sequence[StatusListener] = (),
        route: NotificationRoute | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.store = store
        self.stages = tuple(stages)
        self.notifier = notifier
        self.notification_settings = notification_settings
        self.route = route or NotificationRoute()
        self.event_log = event_log
        self.listeners = list(listeners)
        self._sleep = sleep
        self._active: set[str] = set()

    def add_listener(self, listener: StatusListener) -> None:
        self.listeners.append(listener)

    async def run(self, job_id: str) -> JobRecord:
        """Drive an `uploaded` job to a terminal state and return the final record."""

        if job_id in self._active:
            raise InvalidTransitionError(f"Job {job_id} is already running.", job_id=job_id)
        self._active.add(job_id)
        try:
            job = await asyncio.to_thread(self.store.get_job, job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}", job_id=job_id)
            if job.status is not JobStatus.UPLOADED:
                raise InvalidTransitionError(
                    f"Job {job_id} is {job.status.value}; only uploaded jobs can run.",
                    job_id=job_id,
                )
            job = await self._drive(job)
            job = await self._notify(job)
            return job
        finally:
            self._active.discard(job_id)

    async def _drive(self, job: JobRecord) -> JobRecord:
        job = await self._write(job.id, {"status": JobStatus.PROCESSING})
        logger.info("Job %s processing %d stages", job.id, len(self.stages))
        context = StageContext(job=job, payload=dict(job.payload or {}))

        for stage in self.stages:
            context.job = await self._write(job.id, {"current_stage": stage.name})
            try:
                context.values[stage.name] = await execute_with_backoff(
                    lambda stage=stage: stage.operation(context),
                    stage.policy,
                    label=f"job {job.id} stage {stage.name}",
                    sleep=self._sleep,
                )
                normalize_payload(context.payload)
            except Exception as error:  # noqa: BLE001
                message = str(error) or type(error).__name__
                logger.error("Job %s failed at stage %s: %s", job.id, stage.name, message)
                failed = await self._write(
                    job.id,
                    {
                        "status": JobStatus.ERROR,
                        "result_summary": f"{stage.name} failed: {message}",
                        "error": message,
                    },
                )
                await self._log_outcome(failed, stage=stage.name, error=message)
                return failed

        summary = context.summary.strip() if isinstance(context.summary, str) else ""
        done = await self._write(
            job.id,
            {
                "status": JobStatus.DONE,
                "result_summary": summary or DEFAULT_SUMMARY,
                "payload": context.payload or None,
                "error": None,
                "current_stage": None,
            },
        )
        logger.info("Job %s done", job.id)
        await self._log_outcome(done, stage=None, error=None)
        return done

    async def _notify(self, job: JobRecord) -> JobRecord:
        settings = self.notification_settings
        recipient = self.route.recipient(job, settings)
        if (
            not settings.enabled
            or not recipient
            or self.notifier is None
            or not await self._preference_allows(job)
        ):
            return await self._write(
                job.id,
                {"notification_status": NotificationStatus.SKIPPED},
            )

        try:
            subject, body = self.route.message(job)
            sent = await self.notifier.notify(recipient, subject, body)
            failure = None if sent else "Notifier reported failure."
        except Exception as error:  # noqa: BLE001
            sent = False
            failure = str(error) or type(error).__name__

        if sent:
            return await self._write(
                job.id,
                {
                    "notification_status": NotificationStatus.SENT,
                    "notification_sent_at": utc_now(),
                    "notification_error": None,
                },
            )
        logger.warning("Notification for job %s failed: %s", job.id, failure)
        return await self._write(
            job.id,
            {
                "notification_status": NotificationStatus.ERROR,
                "notification_error": failure,
            },
        )

    async def _preference_allows(self, job: JobRecord) -> bool:
        """Stored preference for this route; unreadable settings count as enabled."""

        try:
            stored = await asyncio.to_thread(self.store.get_settings)
        except CallRecapError as error:
            logger.warning(
                "Failed to load notification settings for job %s; sending anyway: %s",
                job.id,
                error,
            )
            return True
        return stored.allows(self.route.preference)

    async def _write(self, job_id: str, fields: Mapping[str, object]) -> JobRecord:
        record = await asyncio.to_thread(self.store.update_job, job_id, fields)
        if record is None:
            raise JobNotFoundError(f"Job not found: {job_id}", job_id=job_id)
        if "status" in fields:
            self._emit(record)
        return record

    def _emit(self, job: JobRecord) -> None:
        for listener in self.listeners:
            try:
                listener(job)
            except Exception:  # noqa: BLE001
                logger.warning("Status listener failed for job %s", job.id, exc_info=True)

    async def _log_outcome(self, job: JobRecord, *, stage: str | None, error: str | None) -> None:
        outcome: dict[str, Any] = {"status": job.status.value, "success": error is None}
        if stage is not None:
            outcome["stage"] = stage
        if job.result_summary:
            outcome["summary"] = job.result_summary
        event = IngestEvent(
            timestamp=utc_now(),
            source=job.source.value,
            target_ref=job.input_ref,
            outcome=outcome,
            error=error,
            job_id=job.id,
        )
        try:
            await asyncio.to_thread(self.event_log.append, event)
        except Exception:  # noqa: BLE001
            logger.warning("Ingest event log failed for job %s", job.id, exc_info=True)
