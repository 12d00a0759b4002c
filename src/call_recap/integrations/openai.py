"""OpenAI transcription, call analysis and pre-call planning over raw HTTP."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import PurePath
from typing import Any

from call_recap.config import OpenAiSettings
from call_recap.http.client import AsyncHttpClient
from call_recap.orchestrator.errors import PermanentExternalError

logger = logging.getLogger(__name__)

WHISPER_EXTENSIONS = frozenset(
    {".flac", ".m4a", ".mp3", ".mp4", ".mpeg", ".mpga", ".oga", ".ogg", ".wav", ".webm"},
)
FALLBACK_AUDIO_EXTENSION = ".mp4"

ANALYSIS_KEYS: tuple[str, ...] = (
    "CLIENT_NAME",
    "CLIENT_INDUSTRY",
    "CLIENT_OVERVIEW",
    "TIME_EFFICIENCY",
    "COSTS_RESOURCES",
    "RISK_QUALITY",
    "REVENUE_GROWTH",
    "CUSTOMER_ENGAGEMENT",
    "DATA_SYSTEMS",
    "TOP_PRIORITY",
    "READINESS_CONSTRAINTS",
    "COMPETITION_CAPACITY",
    "KEY_OUTCOMES",
    "AUTOMATIONS_LIST",
    "REVENUE_IDEAS",
    "METRICS",
    "RED_FLAGS",
    "NEXT_STEPS",
    "KEY_QUOTES",
    "PLAN_LIST",
)

ANALYSIS_PROMPT = f"""You are a senior automation architect and business consultant.

Return a STRICT, VALID JSON object only (no Markdown, no code fences, no leading or trailing
text). The first character must be {{.

Keys must match exactly: {", ".join(ANALYSIS_KEYS)}.

Rules:
- Each value is plain text. No HTML, no Markdown.
- Use bullet lines that start with "- " separated by newlines, except CLIENT_NAME,
  CLIENT_INDUSTRY and TOP_PRIORITY, which are single-line sentences.
- Do not invent facts. If unknown, write "Unknown".
- Quote client words exactly inside quotes.

Return only the JSON object."""

PRECALL_PROMPT = """You are a senior sales strategist preparing a discovery call.

Return a STRICT, VALID JSON object only, with exactly these top-level keys:
- "briefing": {"clientOverview", "companyOverview", "meetingFocus"}, all strings.
- "questionChecklist": at least 4 items of {"id", "category", "question",
  "importance" ("must-ask" or "nice-to-have"), "source" ("core" or "goal-specific")}.
- "coachingNotes": 3 to 6 short, practical sentences.
- "metadata": {"version": 1, "callType": "discovery"}.
- "emailSubject" and "emailBody": a concise subject and a second-person coaching brief
  in short sections separated by blank lines.

Rules:
- Use only the request fields and the website text when it is provided.
- If something is not known, write "Unknown". Do not speculate.
- Keep every question tied to the meeting goal, the offer and the desired outcome.

Return only the JSON object."""


def whisper_file_name(name: str | None) -> str:
    """File name with an extension the transcription endpoint accepts."""

    path = PurePath(name or "audio")
    suffix = path.suffix.lower()
    if suffix in WHISPER_EXTENSIONS:
        return f"{path.stem or 'audio'}{suffix}"
    return f"{path.name or 'audio'}{FALLBACK_AUDIO_EXTENSION}"


class OpenAiClient:
    """Minimal client for the model calls the pipelines need."""

    def __init__(self, settings: OpenAiSettings, http: AsyncHttpClient) -> None:
        self.settings = settings
        self.http = http

    def _headers(self) -> dict[str, str]:
        if not self.settings.api_key:
            raise PermanentExternalError(
                "OpenAI client not configured. Set CALL_RECAP_OPENAI_API_KEY.",
                code="openai_not_configured",
            )
        return {"Authorization": f"Bearer {self.settings.api_key}"}

    async def transcribe(self, audio: bytes, *, file_name: str | None) -> str:
        """Speech-to-text for one recording."""

        response = await self.http.post(
            f"{self.settings.base_url.rstrip('/')}/audio/transcriptions",
            service="openai_transcription",
            headers=self._headers(),
            data={"model": self.settings.transcription_model, "response_format": "text"},
            files={"file": (whisper_file_name(file_name), audio)},
        )
        text = response.text.strip()
        if not text:
            raise PermanentExternalError(
                "Empty transcript from transcription model",
                code="empty_transcript",
            )
        return text

    async def analyze(self, transcript: str) -> dict[str, Any]:
        """Structured call analysis in JSON mode."""

        return await self._complete_json(
            service="openai_analysis",
            model=self.settings.analysis_model,
            system_prompt=ANALYSIS_PROMPT,
            user_content=json.dumps({"transcribed_text": transcript}),
        )

    async def precall_plan(
        self,
        request: Mapping[str, str],
        *,
        website: str | None,
    ) -> dict[str, Any]:
        """Pre-call briefing, checklist and e-mail in JSON mode."""

        fields = {name: value for name, value in request.items() if name != "send_to_email"}
        return await self._complete_json(
            service="openai_precall",
            model=self.settings.precall_model,
            system_prompt=PRECALL_PROMPT,
            user_content=json.dumps(
                {"request": fields, "website_html": website},
                ensure_ascii=False,
            ),
            temperature=0.2,
        )

    async def _complete_json(
        self,
        *,
        service: str,
        model: str,
        system_prompt: str,
        user_content: str,
        temperature: float | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
        }
        if temperature is not None:
            payload["temperature"] = temperature
        response = await self.http.post(
            f"{self.settings.base_url.rstrip('/')}/chat/completions",
            service=service,
            headers=self._headers(),
            json=payload,
        )
        try:
            body = response.json()
        except ValueError as error:
            raise PermanentExternalError(
                f"{service} response is not JSON",
                code="invalid_json",
            ) from error
        return parse_analysis_response(body)


def parse_analysis_response(body: object) -> dict[str, Any]:
    """Extract the JSON object from a chat completion body."""

    content = ""
    if isinstance(body, dict):
        choices = body.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                content = message["content"].strip()
    if not content:
        raise PermanentExternalError(
            "Empty analysis response from model",
            code="empty_analysis",
        )
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as error:
        logger.error("Failed to parse analysis JSON: %s", error)
        raise PermanentExternalError(
            "invalid JSON from model.",
            code="invalid_json",
        ) from error
    if not isinstance(parsed, dict):
        raise PermanentExternalError("invalid JSON from model.", code="invalid_json")
    return parsed
