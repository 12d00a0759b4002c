"""Use-case services: gate inbound work, create jobs and dispatch pipeline runs."""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import urlparse
from uuid import uuid4

from call_recap.config import Settings, StorageSettings
from call_recap.http.client import AsyncHttpClient
from call_recap.integrations.inputs import UPLOAD_SCHEME, upload_path
from call_recap.integrations.openai import OpenAiClient
from call_recap.orchestrator.errors import CallRecapError
from call_recap.orchestrator.events import EventLog
from call_recap.orchestrator.gate import (
    GateDecision,
    GateLeg,
    GateRequest,
    decide,
    is_loopback,
)
from call_recap.orchestrator.models import (
    IngestEvent,
    JobRecord,
    JobSource,
    JobStatus,
    UserSettings,
    new_job_record,
)
from call_recap.orchestrator.notifications import Notifier, build_precall_message
from call_recap.orchestrator.retry import Sleeper
from call_recap.orchestrator.runner import NotificationRoute, PipelineRunner, StatusListener
from call_recap.orchestrator.stages import (
    PRECALL_REQUIRED_FIELDS,
    PrecallPipeline,
    StageDependencies,
    UploadPipeline,
    WebhookPipeline,
    precall_fields,
    precall_recipient,
)
from call_recap.orchestrator.store import JobStore
from call_recap.storage.common import utc_now

logger = logging.getLogger(__name__)

NETWORK_DISABLED_MESSAGE = "Set CALL_RECAP_ALLOW_NETWORK=1 to enable outbound HTTP"
DELIVERY_STAGE = "deliver_summary"

_GATE_RESPONSES: dict[GateDecision, tuple[int, str | None]] = {
    GateDecision.SHORT_CIRCUIT_OK: (200, None),
    GateDecision.SHORT_CIRCUIT_DRYRUN: (200, None),
    GateDecision.REJECT_INVALID: (400, "invalid_input"),
    GateDecision.REJECT_MISSING_TARGET: (400, "missing_target"),
    GateDecision.REJECT_NETWORK_DISABLED: (400, "network_disabled"),
}


@dataclass(slots=True)
class IngestOutcome:
    """Result of one ingestion request, ready to be rendered by a caller."""

    decision: GateDecision
    status_code: int
    job: JobRecord | None = None
    error: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def to_response(self) -> dict[str, Any]:
        """JSON body matching the status code."""

        body: dict[str, Any]
        if self.error is not None:
            body = {"error": self.error}
            if self.message:
                body["message"] = self.message
        else:
            body = {"ok": True}
            if self.decision is GateDecision.SHORT_CIRCUIT_DRYRUN:
                body["dryRun"] = True
            elif self.decision is GateDecision.SHORT_CIRCUIT_OK:
                body["skipped"] = True
        if self.job is not None:
            body["jobId"] = self.job.id
            body["status"] = self.job.status.value
            if self.job.result_summary:
                body["summary"] = self.job.result_summary
            if self.job.source is JobSource.PRECALL and self.job.payload:
                body["plan"] = self.job.payload.get("plan")
                body["emailStatus"] = self.job.notification_status.value
        return body


class JobService:
    """Coordinates gate checks, job creation and pipeline dispatch."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        store: JobStore,
        event_log: EventLog,
        upload_runner: PipelineRunner,
        webhook_runner: PipelineRunner,
        precall_runner: PipelineRunner,
        http: AsyncHttpClient | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.event_log = event_log
        self.upload_runner = upload_runner
        self.webhook_runner = webhook_runner
        self.precall_runner = precall_runner
        self.http = http
        self._tasks: set[asyncio.Task[JobRecord]] = set()

    def add_listener(self, listener: StatusListener) -> None:
        """Subscribe to every status write of every pipeline."""

        self.upload_runner.add_listener(listener)
        self.webhook_runner.add_listener(listener)
        self.precall_runner.add_listener(listener)

    def create_job(
        self,
        *,
        source: JobSource,
        input_ref: str | None,
        original_name: str | None = None,
        job_id: str | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> JobRecord:
        """Persist a fresh `uploaded` job."""

        record = new_job_record(
            source=source,
            input_ref=input_ref,
            original_name=original_name,
            job_id=job_id,
            payload=payload,
            now=utc_now(),
        )
        job = self.store.create_job(record)
        logger.info("Created job %s from %s", job.id, source.value)
        return job

    def get_job(self, job_id: str) -> JobRecord | None:
        return self.store.get_job(job_id)

    def list_jobs(self, limit: int | None = None) -> list[JobRecord]:
        return self.store.list_jobs(limit)

    def delete_job(self, job_id: str) -> bool:
        return delete_job_with_blobs(self.store, self.settings.storage, job_id)

    async def submit_upload(
        self,
        path: Path,
        original_name: str | None = None,
        *,
        wait: bool = False,
    ) -> IngestOutcome:
        """Store an uploaded recording and dispatch its pipeline run."""

        target = str(path) if path.is_file() else None
        decision = decide(
            GateRequest(target=target, external=False),
            self.settings.gate,
        )
        if decision is not GateDecision.PROCEED:
            self._record_gate(JobSource.UPLOAD, str(path), decision, GateLeg.INBOUND)
            return _gate_outcome(decision, message=f"Expected a readable file: {path}")

        job_id = uuid4().hex
        uploads_dir = self.settings.storage.uploads_dir
        stored = uploads_dir / f"{job_id}{path.suffix.lower()}"
        await asyncio.to_thread(_copy_file, path, stored)
        try:
            job = await asyncio.to_thread(
                self.create_job,
                source=JobSource.UPLOAD,
                input_ref=f"{UPLOAD_SCHEME}{stored.name}",
                original_name=original_name or path.name,
                job_id=job_id,
            )
        except CallRecapError:
            stored.unlink(missing_ok=True)
            raise
        return await self._dispatch(self.upload_runner, job, wait=wait)

    async def ingest_file_event(
        self,
        event: Mapping[str, Any],
        *,
        wait: bool = False,
    ) -> IngestOutcome:
        """Handle a remote storage notification `{tag, url, name}`."""

        url = event.get("url")
        decision = decide(
            GateRequest(target=url, actionable=event.get("tag") == "file"),
            self.settings.gate,
        )
        if decision is not GateDecision.PROCEED:
            self._record_gate(JobSource.FILE_EVENT, _as_ref(url), decision, GateLeg.INBOUND)
            return _gate_outcome(decision, message="Expected url string")

        name = event.get("name")
        job = await asyncio.to_thread(
            self.create_job,
            source=JobSource.FILE_EVENT,
            input_ref=url,
            original_name=name if isinstance(name, str) and name else _name_from_url(url),
        )
        return await self._dispatch(self.upload_runner, job, wait=wait)

    async def ingest_webhook(self, payload: object) -> IngestOutcome:
        """Transcript webhook: gate both legs, then run the pipeline end to end."""

        transcript_url = payload.get("transcript_url") if isinstance(payload, Mapping) else None
        inbound = decide(GateRequest(target=transcript_url), self.settings.gate)
        if inbound is not GateDecision.PROCEED:
            self._record_gate(JobSource.WEBHOOK, _as_ref(transcript_url), inbound, GateLeg.INBOUND)
            return _gate_outcome(inbound, message="Expected transcript_url string")

        outbound = decide(
            GateRequest(target=self.settings.delivery.slack_webhook_url, leg=GateLeg.OUTBOUND),
            self.settings.gate,
        )
        if outbound is not GateDecision.PROCEED:
            self._record_gate(JobSource.WEBHOOK, transcript_url, outbound, GateLeg.OUTBOUND)
            return _gate_outcome(outbound, message="Slack webhook URL is not usable")

        job = await asyncio.to_thread(
            self.create_job,
            source=JobSource.WEBHOOK,
            input_ref=transcript_url,
        )
        return await self._dispatch(self.webhook_runner, job, wait=True)

    async def prepare_precall(self, request: object) -> IngestOutcome:
        """Generate a pre-call plan and e-mail it when the stored preference allows."""

        fields = precall_fields(request)
        website_url = fields.get("website_url")
        complete = all(fields.get(name) for name in PRECALL_REQUIRED_FIELDS)
        decision = decide(
            GateRequest(
                target=fields["company_name"] if complete else None,
                external=not (website_url and is_loopback(website_url)),
            ),
            self.settings.gate,
        )
        if decision is not GateDecision.PROCEED:
            self._record_gate(JobSource.PRECALL, website_url, decision, GateLeg.INBOUND)
            return _gate_outcome(
                decision,
                message=f"{', '.join(PRECALL_REQUIRED_FIELDS)} are required.",
            )

        job = await asyncio.to_thread(
            self.create_job,
            source=JobSource.PRECALL,
            input_ref=website_url,
            original_name=fields["company_name"],
            payload={"request": fields},
        )
        return await self._dispatch(self.precall_runner, job, wait=True)

    def get_settings(self) -> UserSettings:
        return self.store.get_settings()

    def update_settings(
        self,
        *,
        auto_precall_email: bool | None = None,
        auto_postcall_email: bool | None = None,
    ) -> UserSettings:
        return update_user_settings(
            self.store,
            auto_precall_email=auto_precall_email,
            auto_postcall_email=auto_postcall_email,
        )

    async def drain(self) -> list[JobRecord]:
        """Wait for every dispatched job; failed runs are logged, not raised."""

        if not self._tasks:
            return []
        tasks = list(self._tasks)
        results = await asyncio.gather(*tasks, return_exceptions=True)
        finished: list[JobRecord] = []
        for task, result in zip(tasks, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Background %s failed: %s",
                    task.get_name(),
                    result,
                    exc_info=(type(result), result, result.__traceback__),
                )
            else:
                finished.append(result)
        return finished

    async def aclose(self) -> None:
        try:
            await self.drain()
        finally:
            if self.http is not None:
                await self.http.aclose()

    async def _dispatch(
        self,
        runner: PipelineRunner,
        job: JobRecord,
        *,
        wait: bool,
    ) -> IngestOutcome:
        if wait:
            return _job_outcome(await runner.run(job.id))
        task = asyncio.create_task(runner.run(job.id), name=f"job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return _job_outcome(job)

    def _record_gate(
        self,
        source: JobSource,
        target_ref: str | None,
        decision: GateDecision,
        leg: GateLeg,
    ) -> None:
        logger.info("Ingest %s %s leg: %s", source.value, leg.value, decision.value)
        self.event_log.append(
            IngestEvent(
                timestamp=utc_now(),
                source=source.value,
                target_ref=target_ref,
                outcome={
                    "decision": decision.value,
                    "leg": leg.value,
                    "dryRun": decision is GateDecision.SHORT_CIRCUIT_DRYRUN,
                },
                error=decision.value if decision.is_rejection else None,
            ),
        )


def build_job_service(  # noqa: PLR0913
    settings: Settings,
    *,
    store: JobStore,
    event_log: EventLog,
    notifier: Notifier | None,
    http: AsyncHttpClient | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> JobService:
    """Wire both pipelines around one store, event log and HTTP client."""

    http = http or AsyncHttpClient(
        allow_network=settings.gate.allow_network,
        timeout_seconds=settings.delivery.http_timeout_seconds,
    )
    deps = StageDependencies(
        http=http,
        openai=OpenAiClient(settings.openai, http),
        storage=settings.storage,
        delivery=settings.delivery,
    )

    def runner(
        pipeline: UploadPipeline | WebhookPipeline | PrecallPipeline,
        route: NotificationRoute | None = None,
    ) -> PipelineRunner:
        return PipelineRunner(
            store=store,
            stages=pipeline.stages(settings.retry),
            notifier=notifier,
            notification_settings=settings.notifications,
            event_log=event_log,
            route=route,
            sleep=sleep,
        )

    return JobService(
        settings=settings,
        store=store,
        event_log=event_log,
        upload_runner=runner(UploadPipeline(deps)),
        webhook_runner=runner(WebhookPipeline(deps)),
        precall_runner=runner(
            PrecallPipeline(deps),
            NotificationRoute(
                preference="auto_precall_email",
                recipient=precall_recipient,
                message=build_precall_message,
            ),
        ),
        http=http,
    )


def update_user_settings(
    store: JobStore,
    *,
    auto_precall_email: bool | None = None,
    auto_postcall_email: bool | None = None,
) -> UserSettings:
    """Change the given preferences and keep the others; no changes means a plain read."""

    current = store.get_settings()
    if auto_precall_email is None and auto_postcall_email is None:
        return current
    if auto_precall_email is not None:
        current.auto_precall_email = auto_precall_email
    if auto_postcall_email is not None:
        current.auto_postcall_email = auto_postcall_email
    return store.save_settings(current)


def delete_job_with_blobs(store: JobStore, storage: StorageSettings, job_id: str) -> bool:
    """Delete a job with its upload and report. Returns whether a record existed."""

    job = store.get_job(job_id)
    if job is None:
        store.delete_job(job_id)
        return False
    blob = upload_path(storage.uploads_dir, job.input_ref) if job.input_ref else None
    if blob is not None:
        blob.unlink(missing_ok=True)
    (storage.artifacts_dir / f"{job.id}.txt").unlink(missing_ok=True)
    store.delete_job(job_id)
    logger.info("Deleted job %s and its blobs", job_id)
    return True


def _gate_outcome(decision: GateDecision, *, message: str) -> IngestOutcome:
    status_code, error = _GATE_RESPONSES[decision]
    if decision is GateDecision.REJECT_NETWORK_DISABLED:
        message = NETWORK_DISABLED_MESSAGE
    return IngestOutcome(
        decision=decision,
        status_code=status_code,
        error=error,
        message=message if error is not None else None,
    )


def _job_outcome(job: JobRecord) -> IngestOutcome:
    if job.status is JobStatus.DONE:
        return IngestOutcome(decision=GateDecision.PROCEED, status_code=200, job=job)
    if job.status is JobStatus.ERROR:
        stage = job.current_stage or "pipeline"
        return IngestOutcome(
            decision=GateDecision.PROCEED,
            status_code=502,
            job=job,
            error="slack_post_failed" if stage == DELIVERY_STAGE else f"{stage}_failed",
            message=job.error,
        )
    return IngestOutcome(decision=GateDecision.PROCEED, status_code=202, job=job)


def _copy_file(source: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)


def _as_ref(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _name_from_url(url: str) -> str | None:
    name = PurePosixPath(urlparse(url).path).name
    return name or None
