"""Slack incoming-webhook delivery."""

from __future__ import annotations

import logging
from typing import Any

from call_recap.http.client import AsyncHttpClient
from call_recap.integrations.inputs import LOOPBACK_FAILURE_PREFIX
from call_recap.orchestrator.errors import TransientExternalError, ValidationError
from call_recap.orchestrator.gate import LOOPBACK_SCHEME

logger = logging.getLogger(__name__)


async def post_to_slack(
    webhook_url: str,
    payload: dict[str, Any],
    *,
    http: AsyncHttpClient,
) -> dict[str, bool]:
    """Post one message; loopback URLs succeed or fail without the network."""

    if not webhook_url:
        raise ValidationError("Missing Slack webhook URL", code="missing_target")
    if webhook_url.startswith(LOOPBACK_FAILURE_PREFIX):
        raise TransientExternalError(
            "Mock Slack failure",
            code="slack_post_failed",
            status_code=502,
        )
    if webhook_url.startswith(LOOPBACK_SCHEME):
        logger.debug("Loopback Slack delivery: %s", payload)
        return {"ok": True}
    await http.post(webhook_url, service="slack", json=payload)
    return {"ok": True}
