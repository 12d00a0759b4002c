"""Async HTTP client that maps failures onto the retry-aware error taxonomy."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from call_recap.orchestrator.errors import PermanentExternalError
from call_recap.orchestrator.failure_classifier import (
    FAILURE_CLASSIFIER_VERSION,
    classify_http_failure,
    classify_transport_failure,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = "CallRecap/0.1 (+https://github.com/call-recap/call-recap)"
_MAX_ERROR_BODY_CHARS = 500


class AsyncHttpClient:
    """httpx wrapper with timeout, user agent and network switch.

    Retries are owned by the caller's retry policy, so a failed request is
    raised once as a transient or permanent error.
    """

    def __init__(
        self,
        *,
        allow_network: bool,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.allow_network = allow_network
        base_headers = {"User-Agent": user_agent}
        if headers:
            base_headers.update(headers)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers=base_headers,
            transport=transport,
            follow_redirects=True,
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        service: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request and raise a typed error for any failure."""

        if not self.allow_network:
            raise PermanentExternalError(
                f"Network access is disabled; refusing {method} {url}",
                code="network_disabled",
            )
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Timeout calling %s %s", service, url)
            raise classify_transport_failure(service=service, timed_out=True).to_error(
                service=service,
                message="timeout",
                status_code=None,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling %s %s: %s", service, url, exc)
            raise classify_transport_failure(service=service, timed_out=False).to_error(
                service=service,
                message=str(exc) or type(exc).__name__,
                status_code=None,
            ) from exc

        if response.is_success:
            return response
        body = response.text[:_MAX_ERROR_BODY_CHARS]
        classification = classify_http_failure(
            service=service,
            status_code=response.status_code,
            body=body,
        )
        logger.warning(
            "%s responded %s (%s, rule=%s, pattern=%s, classifier v%s)",
            service,
            response.status_code,
            classification.reason_code,
            classification.matched_rule,
            classification.matched_pattern,
            FAILURE_CLASSIFIER_VERSION,
        )
        raise classification.to_error(
            service=service,
            message=f"HTTP {response.status_code}",
            status_code=response.status_code,
        )

    async def get(self, url: str, *, service: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, service=service, **kwargs)

    async def post(self, url: str, *, service: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, service=service, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> AsyncHttpClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
