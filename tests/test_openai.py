from __future__ import annotations

import asyncio
import json

import allure
import httpx
import pytest

from call_recap.config import OpenAiSettings
from call_recap.http.client import AsyncHttpClient
from call_recap.integrations.openai import (
    OpenAiClient,
    parse_analysis_response,
    whisper_file_name,
)
from call_recap.integrations.summarizer import (
    NO_COMPANY_INFO,
    offline_analysis,
    offline_precall_plan,
    summarize_transcript,
)
from call_recap.orchestrator.errors import PermanentExternalError

pytestmark = [
    allure.epic("Job Orchestration"),
    allure.feature("Transcription & Analysis"),
]


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Call.M4A", "Call.m4a"),
        ("meeting.wav", "meeting.wav"),
        ("voice-memo.aac", "voice-memo.aac.mp4"),
        (None, "audio.mp4"),
    ],
)
def test_whisper_file_name(name: str | None, expected: str) -> None:
    assert whisper_file_name(name) == expected


def test_parse_analysis_response_returns_object() -> None:
    parsed = parse_analysis_response(_completion('{"CLIENT_NAME": "Acme"}'))

    assert parsed == {"CLIENT_NAME": "Acme"}


@pytest.mark.parametrize(
    ("body", "code"),
    [
        ({}, "empty_analysis"),
        (_completion("   "), "empty_analysis"),
        (_completion("not json"), "invalid_json"),
        (_completion("[1, 2]"), "invalid_json"),
    ],
)
def test_parse_analysis_response_rejects_bad_bodies(body: dict, code: str) -> None:
    with pytest.raises(PermanentExternalError) as raised:
        parse_analysis_response(body)

    assert raised.value.code == code


def test_client_requires_api_key() -> None:
    async def scenario():
        async with AsyncHttpClient(allow_network=True) as http:
            return await OpenAiClient(OpenAiSettings(), http).analyze("hello")

    with pytest.raises(PermanentExternalError) as raised:
        asyncio.run(scenario())

    assert raised.value.code == "openai_not_configured"


def test_analyze_sends_json_mode_request() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=_completion('{"TOP_PRIORITY": "Ship it"}'))

    async def scenario():
        http = AsyncHttpClient(allow_network=True, transport=httpx.MockTransport(handler))
        async with http:
            client = OpenAiClient(OpenAiSettings(api_key="sk-test"), http)
            return await client.analyze("We need to ship it.")

    assert asyncio.run(scenario()) == {"TOP_PRIORITY": "Ship it"}
    (request,) = requests
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["response_format"] == {"type": "json_object"}
    assert json.loads(body["messages"][1]["content"]) == {
        "transcribed_text": "We need to ship it.",
    }


def test_transcribe_returns_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/audio/transcriptions"
        return httpx.Response(200, text="  hello from the call \n")

    async def scenario():
        http = AsyncHttpClient(allow_network=True, transport=httpx.MockTransport(handler))
        async with http:
            client = OpenAiClient(OpenAiSettings(api_key="sk-test"), http)
            return await client.transcribe(b"audio", file_name="call.mp3")

    assert asyncio.run(scenario()) == "hello from the call"


def test_summarize_transcript_collapses_and_truncates() -> None:
    assert summarize_transcript("  hello \n  world ") == "Summary: hello world"
    assert summarize_transcript("") == "Summary unavailable."
    assert summarize_transcript(None) == "Summary unavailable."

    long_summary = summarize_transcript("x" * 500)
    assert long_summary == "Summary: " + "x" * 180 + "…"


def test_offline_analysis_uses_first_sentence_as_priority() -> None:
    analysis = offline_analysis("Fix billing. Then CRM! Maybe reports?", source_name="acme.mp3")

    assert analysis["TOP_PRIORITY"] == "Fix billing."
    assert analysis["CLIENT_NAME"] == "acme.mp3"
    assert analysis["KEY_OUTCOMES"] == "- Then CRM!\n- Maybe reports?"


def test_precall_plan_sends_request_without_recipient() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=_completion('{"questionChecklist": []}'))

    async def scenario():
        http = AsyncHttpClient(allow_network=True, transport=httpx.MockTransport(handler))
        async with http:
            client = OpenAiClient(OpenAiSettings(api_key="sk-test"), http)
            return await client.precall_plan(
                {"client_name": "Ana", "send_to_email": "ana@example.com"},
                website="<p>Acme</p>",
            )

    assert asyncio.run(scenario()) == {"questionChecklist": []}
    body = json.loads(requests[0].content)
    assert body["model"] == "gpt-4.1-mini"
    assert body["temperature"] == 0.2
    assert json.loads(body["messages"][1]["content"]) == {
        "request": {"client_name": "Ana"},
        "website_html": "<p>Acme</p>",
    }


def test_offline_precall_plan_adds_goal_question_for_desired_outcome() -> None:
    request = {
        "client_name": "Ana",
        "company_name": "Acme",
        "meeting_goal": "Scope a pilot",
        "desired_outcome": "Book a demo",
    }

    plan = offline_precall_plan(request)

    checklist = plan["questionChecklist"]
    assert [item["id"] for item in checklist] == ["q1", "q2", "q3", "q4", "q5"]
    assert [item["importance"] for item in checklist].count("must-ask") == 3
    assert checklist[-1]["source"] == "goal-specific"
    assert plan["briefing"]["companyOverview"] == NO_COMPANY_INFO
    assert plan["briefing"]["clientOverview"] == "Ana at Acme."
    assert plan["emailSubject"] == "Pre-call plan: Unknown for Acme"
    assert len(plan["coachingNotes"]) == 4
