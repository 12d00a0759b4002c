from __future__ import annotations

import allure
import pytest

from call_recap.orchestrator.errors import PermanentExternalError, TransientExternalError
from call_recap.orchestrator.failure_classifier import (
    FAILURE_CLASSIFIER_VERSION,
    classify_http_failure,
    classify_transport_failure,
)
from call_recap.orchestrator.models import FailureClass

pytestmark = [
    allure.epic("Job Orchestration"),
    allure.feature("Failure Classification"),
]


def test_classifier_version_is_stable() -> None:
    assert FAILURE_CLASSIFIER_VERSION == 1


def test_classifier_prefers_billing_over_transient_status() -> None:
    classified = classify_http_failure(
        service="openai_analysis",
        status_code=429,
        body='{"error": {"code": "insufficient_quota"}}',
    )

    assert classified.failure_class == FailureClass.BILLING_OR_QUOTA
    assert classified.matched_pattern == "insufficient_quota"
    assert classified.reason_code == "openai_analysis_billing_or_quota"
    assert not classified.is_transient


@pytest.mark.parametrize("status_code", [401, 403])
def test_auth_status_codes_are_permanent(status_code: int) -> None:
    classified = classify_http_failure(service="slack", status_code=status_code, body="")

    assert classified.failure_class == FailureClass.ACCESS_OR_AUTH
    assert classified.matched_rule == "auth_status_code"


def test_rate_limit_is_transient() -> None:
    classified = classify_http_failure(service="slack", status_code=429, body="")

    assert classified.failure_class == FailureClass.RATE_LIMITED
    assert classified.is_transient


def test_rate_limit_text_wins_over_client_status() -> None:
    classified = classify_http_failure(
        service="openai_analysis",
        status_code=400,
        body="Rate limit reached, please retry",
    )

    assert classified.failure_class == FailureClass.RATE_LIMITED
    assert classified.matched_pattern == "rate limit"


@pytest.mark.parametrize("status_code", [408, 500, 502, 503, 504])
def test_transient_status_codes(status_code: int) -> None:
    classified = classify_http_failure(service="fetch_input", status_code=status_code, body="")

    assert classified.failure_class == FailureClass.SERVICE_UNAVAILABLE
    assert classified.matched_rule == "transient_status_code"
    assert classified.is_transient


def test_generic_transient_text_on_other_status() -> None:
    classified = classify_http_failure(
        service="fetch_input",
        status_code=520,
        body="Service temporarily unavailable",
    )

    assert classified.failure_class == FailureClass.SERVICE_UNAVAILABLE
    assert classified.matched_rule == "generic_transient"


def test_auth_text_on_bad_request_is_permanent() -> None:
    classified = classify_http_failure(
        service="openai_transcription",
        status_code=400,
        body="Incorrect API key provided",
    )

    assert classified.failure_class == FailureClass.ACCESS_OR_AUTH
    assert classified.matched_pattern == "incorrect api key"


def test_not_found_and_fallback() -> None:
    missing = classify_http_failure(service="fetch_input", status_code=404, body="")
    invalid = classify_http_failure(service="fetch_input", status_code=422, body="bad field")

    assert missing.failure_class == FailureClass.NOT_FOUND
    assert invalid.failure_class == FailureClass.INVALID_REQUEST
    assert invalid.matched_rule == "fallback_non_retryable"


def test_transport_failures_are_transient() -> None:
    timeout = classify_transport_failure(service="slack", timed_out=True)
    reset = classify_transport_failure(service="slack", timed_out=False)

    assert timeout.failure_class == FailureClass.TIMEOUT
    assert reset.failure_class == FailureClass.TRANSPORT
    assert timeout.is_transient and reset.is_transient


def test_to_error_picks_error_type_from_class() -> None:
    transient = classify_http_failure(service="slack", status_code=503, body="").to_error(
        service="slack",
        message="HTTP 503",
        status_code=503,
    )
    permanent = classify_http_failure(service="slack", status_code=404, body="").to_error(
        service="slack",
        message="HTTP 404",
        status_code=404,
    )

    assert isinstance(transient, TransientExternalError)
    assert str(transient) == "slack request failed: HTTP 503"
    assert transient.code == "slack_service_unavailable"
    assert transient.status_code == 503
    assert isinstance(permanent, PermanentExternalError)
    assert permanent.code == "slack_not_found"


def test_errors_carry_classifier_diagnostics() -> None:
    error = classify_http_failure(
        service="openai_analysis",
        status_code=429,
        body='{"error": {"code": "insufficient_quota"}}',
    ).to_error(service="openai_analysis", message="HTTP 429", status_code=429)

    assert isinstance(error, PermanentExternalError)
    assert error.details == {
        "classifier_version": FAILURE_CLASSIFIER_VERSION,
        "service": "openai_analysis",
        "status_code": 429,
        "failure_class": "billing_or_quota",
        "reason_code": "openai_analysis_billing_or_quota",
        "matched_rule": "billing_or_quota",
        "matched_pattern": "insufficient_quota",
    }
