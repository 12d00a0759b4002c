"""Append-only ingest event log.

Appends are fire-and-forget: a log that cannot be written must never fail the
ingestion request that produced the event.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import Protocol

from call_recap.orchestrator.models import IngestEvent

logger = logging.getLogger(__name__)


class EventLog(Protocol):
    def append(self, event: IngestEvent) -> None: ...


class JsonlEventLog:
    """One JSON object per line, appended to a file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, event: IngestEvent) -> None:
        try:
            line = json.dumps(event.to_dict(), ensure_ascii=False, default=str)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except (OSError, TypeError, ValueError) as error:
            logger.warning("Failed to append ingest event to %s: %s", self.path, error)

    def read_recent(self, limit: int = 20) -> list[IngestEvent]:
        """Last `limit` parseable events, oldest first."""

        if limit <= 0 or not self.path.exists():
            return []
        with self.path.open(encoding="utf-8", errors="replace") as handle:
            tail = deque((line for line in handle if line.strip()), maxlen=limit)
        events: list[IngestEvent] = []
        for line in tail:
            try:
                events.append(IngestEvent.from_dict(json.loads(line)))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed ingest event line: %r", line)
        return events


class MemoryEventLog:
    def __init__(self) -> None:
        self.events: list[IngestEvent] = []

    def append(self, event: IngestEvent) -> None:
        self.events.append(event)
