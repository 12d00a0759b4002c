"""Concrete pipeline stages for uploaded recordings and transcript webhooks."""

from __future__ import annotations

import asyncio
import csv
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from call_recap.config import (
    DeliverySettings,
    NotificationSettings,
    RetrySettings,
    StorageSettings,
)
from call_recap.http.client import AsyncHttpClient
from call_recap.integrations.inputs import fetch_reference
from call_recap.integrations.openai import OpenAiClient
from call_recap.integrations.slack import post_to_slack
from call_recap.integrations.summarizer import (
    offline_analysis,
    offline_precall_plan,
    summarize_transcript,
)
from call_recap.orchestrator.errors import ExternalServiceError, ValidationError
from call_recap.orchestrator.gate import is_loopback
from call_recap.orchestrator.models import JobRecord
from call_recap.orchestrator.notifications import build_job_summary_body
from call_recap.orchestrator.runner import PipelineStage, StageContext

logger = logging.getLogger(__name__)

UPLOAD_STAGE_NAMES = ("fetch_input", "transcribe", "analyze", "produce_artifact", "record_output")
WEBHOOK_STAGE_NAMES = ("fetch_transcript", "summarize", "deliver_summary")
PRECALL_STAGE_NAMES = ("fetch_website", "generate_plan")
PRECALL_REQUIRED_FIELDS = ("client_name", "company_name", "meeting_goal")
PRECALL_FIELDS = (
    *PRECALL_REQUIRED_FIELDS,
    "role",
    "website_url",
    "linkedin_url",
    "notes",
    "goal_description",
    "offer_name",
    "offer_summary",
    "desired_outcome",
    "send_to_email",
)
WEBSITE_SNIPPET_MAX_CHARS = 20_000
LEDGER_COLUMNS = (
    "job_id",
    "created_at",
    "original_name",
    "client_name",
    "top_priority",
    "artifact_path",
)


@dataclass(slots=True)
class StageDependencies:
    """Collaborators shared by the stage implementations."""

    http: AsyncHttpClient
    openai: OpenAiClient
    storage: StorageSettings
    delivery: DeliverySettings


class UploadPipeline:
    """fetch_input -> transcribe -> analyze -> produce_artifact -> record_output."""

    def __init__(self, deps: StageDependencies) -> None:
        self.deps = deps

    def stages(self, retry: RetrySettings) -> list[PipelineStage]:
        operations = {
            "fetch_input": self.fetch_input,
            "transcribe": self.transcribe,
            "analyze": self.analyze,
            "produce_artifact": self.produce_artifact,
            "record_output": self.record_output,
        }
        return [
            PipelineStage(name=name, operation=operations[name], policy=retry.policy_for(name))
            for name in UPLOAD_STAGE_NAMES
        ]

    async def fetch_input(self, context: StageContext) -> bytes:
        return await fetch_reference(
            _input_ref(context),
            http=self.deps.http,
            uploads_dir=self.deps.storage.uploads_dir,
        )

    async def transcribe(self, context: StageContext) -> str:
        audio: bytes = context.values["fetch_input"]
        if is_loopback(_input_ref(context)):
            transcript = audio.decode("utf-8", errors="replace").strip()
        else:
            transcript = await self.deps.openai.transcribe(
                audio,
                file_name=context.job.original_name or context.job.input_ref,
            )
        if not transcript:
            raise ValidationError("Empty transcript.", code="empty_transcript")
        context.payload["transcript"] = transcript
        return transcript

    async def analyze(self, context: StageContext) -> dict[str, Any]:
        transcript: str = context.values["transcribe"]
        if is_loopback(_input_ref(context)):
            analysis = offline_analysis(transcript, source_name=context.job.original_name)
        else:
            analysis = await self.deps.openai.analyze(transcript)
        context.payload["analysis"] = analysis
        top_priority = analysis.get("TOP_PRIORITY")
        if isinstance(top_priority, str) and top_priority.strip():
            context.summary = top_priority.strip()
        return analysis

    async def produce_artifact(self, context: StageContext) -> str:
        analysis: dict[str, Any] = context.values["analyze"]
        report = build_job_summary_body(context.job, analysis)
        path = self.deps.storage.artifacts_dir / f"{context.job.id}.txt"
        await asyncio.to_thread(_write_text, path, report)
        context.payload["artifact_path"] = str(path)
        logger.info("Wrote report for job %s to %s", context.job.id, path)
        return str(path)

    async def record_output(self, context: StageContext) -> str:
        analysis: dict[str, Any] = context.values["analyze"]
        row = {
            "job_id": context.job.id,
            "created_at": context.job.created_at.isoformat(),
            "original_name": context.job.original_name or "",
            "client_name": str(analysis.get("CLIENT_NAME") or "Unknown"),
            "top_priority": str(analysis.get("TOP_PRIORITY") or ""),
            "artifact_path": context.values.get("produce_artifact", ""),
        }
        ledger = self.deps.storage.ledger_path
        await asyncio.to_thread(_append_ledger_row, ledger, row)
        context.payload["ledger_path"] = str(ledger)
        return str(ledger)


class WebhookPipeline:
    """fetch_transcript -> summarize -> deliver_summary."""

    def __init__(self, deps: StageDependencies) -> None:
        self.deps = deps

    def stages(self, retry: RetrySettings) -> list[PipelineStage]:
        operations = {
            "fetch_transcript": self.fetch_transcript,
            "summarize": self.summarize,
            "deliver_summary": self.deliver_summary,
        }
        return [
            PipelineStage(name=name, operation=operations[name], policy=retry.policy_for(name))
            for name in WEBHOOK_STAGE_NAMES
        ]

    async def fetch_transcript(self, context: StageContext) -> str:
        raw = await fetch_reference(
            _input_ref(context),
            http=self.deps.http,
            uploads_dir=self.deps.storage.uploads_dir,
        )
        return raw.decode("utf-8", errors="replace")

    async def summarize(self, context: StageContext) -> str:
        summary = summarize_transcript(context.values["fetch_transcript"])
        context.summary = summary
        context.payload["summary"] = summary
        return summary

    async def deliver_summary(self, context: StageContext) -> dict[str, bool]:
        result = await post_to_slack(
            self.deps.delivery.slack_webhook_url or "",
            {"text": context.values["summarize"]},
            http=self.deps.http,
        )
        context.payload["slack"] = result
        return result


class PrecallPipeline:
    """fetch_website -> generate_plan.

    The website is optional context: a page that cannot be fetched leaves the
    plan to the request fields alone.
    """

    def __init__(self, deps: StageDependencies) -> None:
        self.deps = deps

    def stages(self, retry: RetrySettings) -> list[PipelineStage]:
        operations = {
            "fetch_website": self.fetch_website,
            "generate_plan": self.generate_plan,
        }
        return [
            PipelineStage(name=name, operation=operations[name], policy=retry.policy_for(name))
            for name in PRECALL_STAGE_NAMES
        ]

    async def fetch_website(self, context: StageContext) -> str | None:
        url = _precall_request(context).get("website_url")
        if not url or not (is_loopback(url) or url.startswith(("http://", "https://"))):
            return None
        try:
            raw = await fetch_reference(
                url,
                http=self.deps.http,
                uploads_dir=self.deps.storage.uploads_dir,
            )
        except ExternalServiceError as error:
            logger.warning("Website fetch failed for job %s: %s", context.job.id, error)
            return None
        return raw.decode("utf-8", errors="replace")[:WEBSITE_SNIPPET_MAX_CHARS]

    async def generate_plan(self, context: StageContext) -> dict[str, Any]:
        request = _precall_request(context)
        website: str | None = context.values.get("fetch_website")
        if context.job.input_ref and is_loopback(context.job.input_ref):
            plan = offline_precall_plan(request, website=website)
        else:
            plan = await self.deps.openai.precall_plan(request, website=website)
        checklist = plan_checklist(plan)
        context.payload["plan"] = plan
        context.payload["checklist_count"] = len(checklist)
        context.summary = (
            f"Pre-call plan for {request['client_name']} at {request['company_name']}: "
            f"{len(checklist)} questions"
        )
        return plan


def precall_fields(request: object) -> dict[str, str]:
    """Known pre-call request fields as stripped, non-empty strings."""

    if not isinstance(request, Mapping):
        return {}
    fields: dict[str, str] = {}
    for name in PRECALL_FIELDS:
        value = request.get(name)
        if isinstance(value, str) and value.strip():
            fields[name] = value.strip()
    return fields


def precall_recipient(job: JobRecord, settings: NotificationSettings) -> str | None:
    """Pre-call plans go to the address given with the request, never the default."""

    request = (job.payload or {}).get("request")
    if not isinstance(request, Mapping):
        return None
    recipient = request.get("send_to_email")
    return recipient if isinstance(recipient, str) and recipient else None


def plan_checklist(plan: Mapping[str, Any]) -> list[Any]:
    for key in ("questionChecklist", "checklist"):
        value = plan.get(key)
        if isinstance(value, list):
            return value
    return []


def _precall_request(context: StageContext) -> dict[str, str]:
    request = context.payload.get("request")
    if not isinstance(request, dict):
        raise ValidationError(f"Job {context.job.id} has no pre-call request.")
    return request


def _input_ref(context: StageContext) -> str:
    if not context.job.input_ref:
        raise ValidationError(f"Job {context.job.id} has no input reference.")
    return context.job.input_ref


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _append_ledger_row(path: Path, row: dict[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    is_new = not path.exists() or path.stat().st_size == 0
    with path.open("a", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=LEDGER_COLUMNS)
        if is_new:
            writer.writeheader()
        writer.writerow(row)
