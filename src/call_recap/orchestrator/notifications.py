"""Best-effort job summary notifications.

A notifier reports success as a boolean; the runner records the outcome on the
job without ever touching its primary status.
"""

from __future__ import annotations

import asyncio
import json
import logging
import smtplib
from collections.abc import Mapping
from email.message import EmailMessage
from typing import Any, Protocol

from call_recap.config import NotificationSettings
from call_recap.orchestrator.models import JobRecord

logger = logging.getLogger(__name__)

REPORT_TITLE = "Call Recap - Call Summary"

ANALYSIS_SECTIONS: tuple[tuple[str, str], ...] = (
    ("Top Priority", "TOP_PRIORITY"),
    ("Client Overview", "CLIENT_OVERVIEW"),
    ("Time & Efficiency", "TIME_EFFICIENCY"),
    ("Costs & Resources", "COSTS_RESOURCES"),
    ("Risk & Quality", "RISK_QUALITY"),
    ("Revenue Growth", "REVENUE_GROWTH"),
    ("Customer Engagement", "CUSTOMER_ENGAGEMENT"),
    ("Data & Systems", "DATA_SYSTEMS"),
    ("Key Outcomes", "KEY_OUTCOMES"),
    ("Recommended Automations", "AUTOMATIONS_LIST"),
    ("Revenue Opportunities", "REVENUE_IDEAS"),
    ("Metrics", "METRICS"),
    ("Readiness & Constraints", "READINESS_CONSTRAINTS"),
    ("Competition & Capacity", "COMPETITION_CAPACITY"),
    ("Next Steps", "NEXT_STEPS"),
    ("Key Quotes", "KEY_QUOTES"),
    ("Plan", "PLAN_LIST"),
    ("Red Flags", "RED_FLAGS"),
)


class Notifier(Protocol):
    async def notify(self, recipient: str, subject: str, body: str) -> bool: ...


class SmtpNotifier:
    """Plain-text e-mail over SMTP, sent from a worker thread."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        from_email: str,
        username: str | None = None,
        password: str | None = None,
        use_ssl: bool = False,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.from_email = from_email
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.timeout_seconds = timeout_seconds

    async def notify(self, recipient: str, subject: str, body: str) -> bool:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.from_email
        message["To"] = recipient
        message.set_content(body)
        try:
            await asyncio.to_thread(self._send, message)
        except (OSError, smtplib.SMTPException) as error:
            logger.warning("Failed to send summary e-mail to %s: %s", recipient, error)
            return False
        logger.info("Sent summary e-mail to %s", recipient)
        return True

    def _send(self, message: EmailMessage) -> None:
        if self.use_ssl:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout_seconds) as server:
                self._login_and_send(server, message)
            return
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
            server.starttls()
            self._login_and_send(server, message)

    def _login_and_send(self, server: smtplib.SMTP, message: EmailMessage) -> None:
        if self.username and self.password:
            server.login(self.username, self.password)
        server.send_message(message)


def build_notifier(settings: NotificationSettings) -> SmtpNotifier | None:
    """SMTP notifier, or None when host or sender are not configured."""

    if not settings.smtp_host or not settings.from_email:
        logger.info("SMTP not configured; summary e-mails are disabled")
        return None
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        from_email=settings.from_email,
        username=settings.smtp_user,
        password=settings.smtp_password,
        use_ssl=settings.smtp_secure or settings.smtp_port == 465,
        timeout_seconds=settings.smtp_timeout_seconds,
    )


def build_notification_message(job: JobRecord) -> tuple[str, str]:
    """Subject and body for one terminal job."""

    analysis = _analysis_of(job)
    client_name = _single_line(analysis.get("CLIENT_NAME") if analysis else None)
    subject = f"{REPORT_TITLE} - {client_name} - {job.id}"
    return subject, build_job_summary_body(job, analysis)


def build_precall_message(job: JobRecord) -> tuple[str, str]:
    """Subject and body of a pre-call plan e-mail, preferring the plan's own text."""

    plan = (job.payload or {}).get("plan")
    plan = plan if isinstance(plan, Mapping) else {}
    company = job.original_name or "Unknown"
    subject = plan.get("emailSubject")
    if not isinstance(subject, str) or not subject.strip():
        subject = f"Pre-call plan: {company}"
    subject = " ".join(subject.split())
    body = plan.get("emailBody")
    if isinstance(body, str) and body.strip():
        return subject, body.strip()

    lines = [subject]
    briefing = plan.get("briefing")
    if isinstance(briefing, Mapping):
        lines.extend(_format_section("Meeting Focus", briefing.get("meetingFocus")))
    checklist = plan.get("questionChecklist") or plan.get("checklist")
    if isinstance(checklist, list):
        questions = [item.get("question") for item in checklist if isinstance(item, Mapping)]
        lines.extend(_format_section("Questions", questions))
    lines.extend(_format_section("Coaching Notes", plan.get("coachingNotes")))
    return subject, "\n".join(lines)


def build_job_summary_body(job: JobRecord, analysis: Mapping[str, Any] | None = None) -> str:
    """Plain-text report of a job and its analysis sections."""

    if analysis is None:
        analysis = _analysis_of(job)

    lines = [
        REPORT_TITLE,
        "",
        f"Client: {_single_line(analysis.get('CLIENT_NAME') if analysis else None)}",
        f"Industry: {_single_line(analysis.get('CLIENT_INDUSTRY') if analysis else None)}",
        f"Call ID: {job.id}",
        f"Recorded File: {job.original_name or job.input_ref or 'N/A'}",
        f"Created At: {job.created_at.isoformat()}",
    ]

    if not analysis:
        lines.extend(["", "Summary:", job.result_summary or "No summary available."])
    else:
        for title, key in ANALYSIS_SECTIONS:
            lines.extend(_format_section(title, analysis.get(key)))

    lines.extend(["", f"Job Status: {job.status.value}"])
    if job.result_summary:
        lines.append(f"Summary: {job.result_summary}")
    if job.error:
        lines.extend(["", f"Error: {job.error}"])
    return "\n".join(lines)


def _analysis_of(job: JobRecord) -> Mapping[str, Any] | None:
    if not job.payload:
        return None
    analysis = job.payload.get("analysis")
    return analysis if isinstance(analysis, Mapping) else None


def _single_line(value: object) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return "Unknown"


def _format_section(title: str, value: object) -> list[str]:
    content = _content_lines(value)
    if not content:
        return []
    return ["", f"{title}:", *content]


def _content_lines(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [line.strip() for line in value.strip().splitlines()] if value.strip() else []
    if isinstance(value, list):
        items = [str(item).strip() for item in value if item is not None]
        return [f"- {item}" for item in items if item]
    return [json.dumps(value, ensure_ascii=False, default=str)]
