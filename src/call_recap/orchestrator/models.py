"""Domain models for job records, lifecycle states and ingest events."""

from __future__ import annotations

import copy
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from call_recap.orchestrator.errors import InvalidTransitionError, ValidationError


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.DONE, JobStatus.ERROR})

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.UPLOADED: frozenset({JobStatus.PROCESSING, JobStatus.ERROR}),
    JobStatus.PROCESSING: frozenset({JobStatus.DONE, JobStatus.ERROR}),
    JobStatus.DONE: frozenset(),
    JobStatus.ERROR: frozenset(),
}


class NotificationStatus(str, Enum):
    """Best-effort notification outcome, tracked apart from job status."""

    PENDING = "pending"
    SENT = "sent"
    ERROR = "error"
    SKIPPED = "skipped"


class JobSource(str, Enum):
    """Entry point that created a job."""

    UPLOAD = "upload"
    FILE_EVENT = "file_event"
    WEBHOOK = "webhook"
    PRECALL = "precall"


class FailureClass(str, Enum):
    """Normalized external failure classes used by retry policy."""

    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    ACCESS_OR_AUTH = "access_or_auth"
    BILLING_OR_QUOTA = "billing_or_quota"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"


@dataclass(slots=True)
class JobRecord:
    """One unit of pipeline work tracked from creation to terminal state."""

    id: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    source: JobSource = JobSource.UPLOAD
    input_ref: str | None = None
    original_name: str | None = None
    current_stage: str | None = None
    result_summary: str | None = None
    payload: dict[str, Any] | None = None
    error: str | None = None
    notification_status: NotificationStatus = NotificationStatus.PENDING
    notification_sent_at: datetime | None = None
    notification_error: str | None = None

    def copy(self) -> JobRecord:
        """Detached copy so callers never alias stored state."""

        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view for CLI and API responses."""

        return {
            "id": self.id,
            "status": self.status.value,
            "source": self.source.value,
            "input_ref": self.input_ref,
            "original_name": self.original_name,
            "current_stage": self.current_stage,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "result_summary": self.result_summary,
            "payload": self.payload,
            "error": self.error,
            "notification_status": self.notification_status.value,
            "notification_sent_at": (
                self.notification_sent_at.isoformat()
                if self.notification_sent_at is not None
                else None
            ),
            "notification_error": self.notification_error,
        }


MUTABLE_JOB_FIELDS = frozenset(
    {
        "status",
        "input_ref",
        "original_name",
        "current_stage",
        "result_summary",
        "payload",
        "error",
        "notification_status",
        "notification_sent_at",
        "notification_error",
    },
)


def new_job_record(
    *,
    source: JobSource,
    input_ref: str | None,
    original_name: str | None = None,
    job_id: str | None = None,
    payload: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> JobRecord:
    """Build a fresh `uploaded` job with a new identifier."""

    timestamp = now or datetime.now(tz=UTC)
    return JobRecord(
        id=job_id or uuid4().hex,
        status=JobStatus.UPLOADED,
        created_at=timestamp,
        updated_at=timestamp,
        source=source,
        input_ref=input_ref,
        original_name=original_name,
        payload=normalize_payload(payload),
    )


def normalize_payload(payload: object) -> dict[str, Any] | None:
    """Detached copy of a payload exactly as a JSON column would store it.

    Both store backends keep this form, so a value only one of them could hold
    (datetimes, sets, non-string keys) is rejected everywhere.
    """

    if payload is None:
        return None
    if not isinstance(payload, Mapping):
        raise ValidationError("Job payload must be a JSON object.")
    try:
        return json.loads(json.dumps(dict(payload), ensure_ascii=False))
    except (TypeError, ValueError) as error:
        raise ValidationError(
            f"Job payload is not JSON-serializable: {error}",
            code="invalid_payload",
        ) from error


def check_transition(current: JobStatus, target: JobStatus, *, job_id: str) -> None:
    """Raise if moving from `current` to `target` would regress the lifecycle."""

    if current == target:
        return
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Job {job_id} cannot move from {current.value} to {target.value}.",
            job_id=job_id,
        )


def normalize_job_fields(
    current: JobRecord,
    fields: Mapping[str, object],
    *,
    now: datetime,
) -> dict[str, Any]:
    """Validate a partial update and coerce enum values.

    Returns the normalized changes including a refreshed `updated_at`.
    """

    unknown = sorted(set(fields) - MUTABLE_JOB_FIELDS)
    if unknown:
        raise ValidationError(f"Unsupported job fields for update: {', '.join(unknown)}")

    changes: dict[str, Any] = dict(fields)
    if "status" in changes:
        status = JobStatus(changes["status"])
        check_transition(current.status, status, job_id=current.id)
        changes["status"] = status
    if "notification_status" in changes:
        changes["notification_status"] = NotificationStatus(changes["notification_status"])
    if "payload" in changes:
        changes["payload"] = normalize_payload(changes["payload"])
    changes["updated_at"] = now
    return changes


@dataclass(slots=True)
class UserSettings:
    """Persisted notification preferences, edited at runtime.

    `auto_precall_email` gates pre-call plan e-mails; `auto_postcall_email`
    gates the summary sent when a recording or webhook job finishes.
    """

    auto_precall_email: bool = True
    auto_postcall_email: bool = True
    updated_at: datetime | None = None

    def allows(self, preference: str) -> bool:
        value = getattr(self, preference, None)
        if not isinstance(value, bool):
            raise ValidationError(f"Unknown notification preference: {preference}")
        return value

    def to_dict(self) -> dict[str, Any]:
        return {
            "auto_precall_email": self.auto_precall_email,
            "auto_postcall_email": self.auto_postcall_email,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(slots=True)
class IngestEvent:
    """Append-only audit entry for one ingestion attempt or outcome."""

    timestamp: datetime
    source: str
    target_ref: str | None
    outcome: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    job_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ts": self.timestamp.isoformat(),
            "source": self.source,
            "target_ref": self.target_ref,
            "outcome": self.outcome,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.job_id is not None:
            data["job_id"] = self.job_id
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> IngestEvent:
        timestamp = datetime.fromisoformat(str(data["ts"]))
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        outcome = data.get("outcome")
        return cls(
            timestamp=timestamp,
            source=str(data.get("source", "")),
            target_ref=data.get("target_ref"),
            outcome=dict(outcome) if isinstance(outcome, Mapping) else {},
            error=data.get("error"),
            job_id=data.get("job_id"),
        )
