"""Error taxonomy shared by the job store, retry executor and pipeline runner."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class CallRecapError(Exception):
    """Base error for call-recap operations."""

    message: str
    code: str = "error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class ValidationError(CallRecapError):
    """Malformed caller input. Never retried."""

    code: str = "invalid_input"


@dataclass(slots=True)
class InvalidTransitionError(ValidationError):
    """Requested job status move is not allowed by the lifecycle."""

    code: str = "invalid_transition"
    job_id: str | None = None


@dataclass(slots=True)
class ExternalServiceError(CallRecapError):
    """Failure reported by (or while reaching) an external service."""

    code: str = "external_error"
    status_code: int | None = None
    details: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class TransientExternalError(ExternalServiceError):
    """Retryable external failure: timeouts, rate limits, 5xx."""

    code: str = "transient_external"


@dataclass(slots=True)
class PermanentExternalError(ExternalServiceError):
    """External failure that retrying cannot fix, such as a malformed response."""

    code: str = "permanent_external"


@dataclass(slots=True)
class StorageError(CallRecapError):
    """Job store read/write failure."""

    code: str = "storage_error"


@dataclass(slots=True)
class DuplicateJobError(StorageError):
    """A job with the same id already exists."""

    code: str = "duplicate_id"
    job_id: str | None = None


@dataclass(slots=True)
class JobNotFoundError(StorageError):
    """No job with the requested id."""

    code: str = "not_found"
    job_id: str | None = None
