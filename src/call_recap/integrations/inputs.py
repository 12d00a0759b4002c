"""Fetch job inputs by reference: loopback fixtures, stored uploads or HTTP URLs."""

from __future__ import annotations

import asyncio
from pathlib import Path

from call_recap.http.client import AsyncHttpClient
from call_recap.orchestrator.errors import PermanentExternalError, TransientExternalError
from call_recap.orchestrator.gate import LOOPBACK_SCHEME

UPLOAD_SCHEME = "upload:"
LOOPBACK_FAILURE_PREFIX = f"{LOOPBACK_SCHEME}fail"


async def fetch_reference(
    reference: str,
    *,
    http: AsyncHttpClient,
    uploads_dir: Path,
) -> bytes:
    """Resolve a job input reference to its raw bytes."""

    if reference.startswith(LOOPBACK_FAILURE_PREFIX):
        raise TransientExternalError(
            f"Loopback fetch failure for {reference}",
            code="loopback_failure",
            status_code=502,
        )
    if reference.startswith(LOOPBACK_SCHEME):
        return reference[len(LOOPBACK_SCHEME) :].encode("utf-8")
    if reference.startswith(UPLOAD_SCHEME):
        return await asyncio.to_thread(_read_upload, uploads_dir, reference[len(UPLOAD_SCHEME) :])
    if reference.startswith(("http://", "https://")):
        response = await http.get(reference, service="fetch_input")
        return response.content
    raise PermanentExternalError(
        f"Unsupported input reference: {reference!r}",
        code="unsupported_reference",
    )


def upload_path(uploads_dir: Path, reference: str) -> Path | None:
    """Blob path behind an `upload:` reference, if it is one."""

    if not reference.startswith(UPLOAD_SCHEME):
        return None
    return uploads_dir / Path(reference[len(UPLOAD_SCHEME) :]).name


def _read_upload(uploads_dir: Path, name: str) -> bytes:
    path = uploads_dir / Path(name).name
    if not path.is_file():
        raise PermanentExternalError(
            f"Uploaded file not found on disk: {path}",
            code="upload_missing",
        )
    return path.read_bytes()
