"""Offline summaries, analyses and pre-call plans for loopback inputs and the webhook flow."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

SNIPPET_MAX_CHARS = 180
NO_COMPANY_INFO = "No detailed company information is available from the inputs or website."
_WHITESPACE = re.compile(r"\s+")
_TAGS = re.compile(r"<[^>]+>")


def snippet(text: object) -> str | None:
    """Whitespace-collapsed text cut to `SNIPPET_MAX_CHARS`, or None when blank."""

    if not isinstance(text, str) or not text.strip():
        return None
    collapsed = _WHITESPACE.sub(" ", text).strip()
    if len(collapsed) > SNIPPET_MAX_CHARS:
        collapsed = collapsed[:SNIPPET_MAX_CHARS] + "…"
    return collapsed


def summarize_transcript(text: object) -> str:
    """One-line placeholder summary: a whitespace-collapsed snippet."""

    collapsed = snippet(text)
    if collapsed is None:
        return "Summary unavailable."
    return f"Summary: {collapsed}"


def offline_analysis(transcript: str, *, source_name: str | None = None) -> dict[str, Any]:
    """Deterministic analysis with the same keys the model is asked to return."""

    sentences = [part.strip() for part in re.split(r"(?<=[.!?])\s+", transcript) if part.strip()]
    top_priority = sentences[0] if sentences else "Unknown"
    return {
        "CLIENT_NAME": source_name or "Unknown",
        "CLIENT_INDUSTRY": "Unknown",
        "CLIENT_OVERVIEW": summarize_transcript(transcript),
        "TOP_PRIORITY": top_priority,
        "KEY_OUTCOMES": "\n".join(f"- {sentence}" for sentence in sentences[1:4]) or "Unknown",
        "NEXT_STEPS": "Unknown",
    }


def offline_precall_plan(
    request: Mapping[str, str],
    *,
    website: str | None = None,
) -> dict[str, Any]:
    """Template plan in the model's schema, built only from the request and page text."""

    client = request.get("client_name") or "Unknown"
    company = request.get("company_name") or "Unknown"
    goal = request.get("meeting_goal") or "Unknown"
    offer = request.get("offer_name") or "Unknown"
    outcome = request.get("desired_outcome") or "Unknown"

    questions = [
        ("Discovery", f"What prompted {company} to take this meeting now?", "core"),
        ("Process", f"How does {company} handle this today, and who owns it?", "core"),
        ("Risk", "What would stop a decision in the next quarter?", "core"),
        ("Goal", f"What would {client} need to see to move forward on: {goal}?", "goal"),
    ]
    if request.get("desired_outcome"):
        questions.append(("Outcome", f"Can we agree on this next step: {outcome}?", "goal"))
    checklist = [
        {
            "id": f"q{index}",
            "category": category,
            "question": question,
            "importance": "must-ask" if index <= 3 else "nice-to-have",
            "source": "core" if source == "core" else "goal-specific",
        }
        for index, (category, question, source) in enumerate(questions, start=1)
    ]
    coaching = [
        f"Open by confirming the goal: {goal}.",
        "Let the client describe the current process before presenting anything.",
        f"Tie every point about {offer} back to a problem the client named.",
        f"Close by asking for the desired outcome: {outcome}.",
    ]
    body = "\n\n".join(
        [
            f"You are meeting {client} from {company}. The goal of the call: {goal}.",
            "Key angles & questions:\n" + "\n".join(f"- {item['question']}" for item in checklist),
            "How to steer the call:\n" + "\n".join(f"- {note}" for note in coaching),
        ],
    )
    return {
        "briefing": {
            "clientOverview": f"{client}{_suffix(request.get('role'))} at {company}.",
            "companyOverview": snippet(_TAGS.sub(" ", website or "")) or NO_COMPANY_INFO,
            "meetingFocus": goal,
        },
        "questionChecklist": checklist,
        "coachingNotes": coaching,
        "metadata": {"version": 1, "callType": "discovery"},
        "emailSubject": f"Pre-call plan: {offer} for {company}",
        "emailBody": body,
    }


def _suffix(role: str | None) -> str:
    return f", {role}" if role else ""
