"""Deterministic classification of external service failures for retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from call_recap.orchestrator.errors import (
    ExternalServiceError,
    PermanentExternalError,
    TransientExternalError,
)
from call_recap.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 1

_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
_TRANSIENT_CLASSES = frozenset(
    {
        FailureClass.TIMEOUT,
        FailureClass.TRANSPORT,
        FailureClass.RATE_LIMITED,
        FailureClass.SERVICE_UNAVAILABLE,
    },
)

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "insufficient_quota",
    "billing",
    "payment",
    "credits",
    "quota exceeded",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "incorrect api key",
    "authentication",
    "invalid_token",
)
_RATE_LIMIT_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "rate_limit",
    "please retry",
    "try again later",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "overloaded",
    "server_error",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def is_transient(self) -> bool:
        return self.failure_class in _TRANSIENT_CLASSES

    def to_details(self, *, service: str, status_code: int | None) -> dict[str, object]:
        """Classifier diagnostics attached to errors and warning logs."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "service": service,
            "status_code": status_code,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }

    def to_error(
        self,
        *,
        service: str,
        message: str,
        status_code: int | None,
    ) -> ExternalServiceError:
        """Build the typed error the retry executor understands."""

        error_type = TransientExternalError if self.is_transient else PermanentExternalError
        return error_type(
            f"{service} request failed: {message}",
            code=self.reason_code,
            status_code=status_code,
            details=self.to_details(service=service, status_code=status_code),
        )


def classify_http_failure(
    *,
    service: str,
    status_code: int,
    body: str,
) -> FailureClassification:
    """Classify a non-2xx response into a deterministic retry class."""

    haystack = body.lower()

    pattern = _first_match(haystack, _BILLING_OR_QUOTA_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.BILLING_OR_QUOTA,
            reason_code=f"{service}_billing_or_quota",
            matched_rule="billing_or_quota",
            matched_pattern=pattern,
        )

    if status_code in {401, 403}:
        return FailureClassification(
            failure_class=FailureClass.ACCESS_OR_AUTH,
            reason_code=f"{service}_access_or_auth",
            matched_rule="auth_status_code",
            matched_pattern=None,
        )

    pattern = _first_match(haystack, _RATE_LIMIT_TRANSIENT_PATTERNS)
    if status_code == 429 or pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.RATE_LIMITED,
            reason_code=f"{service}_rate_limited",
            matched_rule="rate_limit_transient",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _GENERIC_TRANSIENT_PATTERNS)
    if status_code in _TRANSIENT_STATUS_CODES or pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.SERVICE_UNAVAILABLE,
            reason_code=f"{service}_service_unavailable",
            matched_rule=(
                "transient_status_code"
                if status_code in _TRANSIENT_STATUS_CODES and pattern is None
                else "generic_transient"
            ),
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _ACCESS_OR_AUTH_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.ACCESS_OR_AUTH,
            reason_code=f"{service}_access_or_auth",
            matched_rule="access_or_auth",
            matched_pattern=pattern,
        )

    if status_code == 404:
        return FailureClassification(
            failure_class=FailureClass.NOT_FOUND,
            reason_code=f"{service}_not_found",
            matched_rule="not_found_status_code",
            matched_pattern=None,
        )

    return FailureClassification(
        failure_class=FailureClass.INVALID_REQUEST,
        reason_code=f"{service}_invalid_request",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def classify_transport_failure(*, service: str, timed_out: bool) -> FailureClassification:
    """Timeouts and connection failures are always retryable."""

    if timed_out:
        return FailureClassification(
            failure_class=FailureClass.TIMEOUT,
            reason_code=f"{service}_timeout",
            matched_rule="timeout",
            matched_pattern=None,
        )
    return FailureClassification(
        failure_class=FailureClass.TRANSPORT,
        reason_code=f"{service}_transport",
        matched_rule="transport",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
