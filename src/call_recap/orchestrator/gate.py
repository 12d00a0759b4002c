"""Pure ingest gate: decides whether a request may reach external services.

The gate is consulted twice for flows that deliver somewhere: once for the
inbound target (what to read) and once for the outbound target (where to post).
It reads no globals; `GateSettings` is loaded once and injected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from call_recap.config import GateSettings

LOOPBACK_SCHEME = "mock:"


class GateLeg(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class GateDecision(str, Enum):
    """Outcome of one gate evaluation."""

    SHORT_CIRCUIT_OK = "ok"
    SHORT_CIRCUIT_DRYRUN = "dry_run"
    REJECT_INVALID = "invalid_input"
    REJECT_MISSING_TARGET = "missing_target"
    REJECT_NO_TARGET = "missing_target"
    REJECT_NETWORK_DISABLED = "network_disabled"
    PROCEED = "proceed"

    @property
    def is_rejection(self) -> bool:
        return self in {
            GateDecision.REJECT_INVALID,
            GateDecision.REJECT_MISSING_TARGET,
            GateDecision.REJECT_NETWORK_DISABLED,
        }


@dataclass(frozen=True, slots=True)
class GateRequest:
    """One target to be judged by the gate.

    `external=None` infers locality from the target: only the loopback scheme
    is local. Callers that already know the target is local (uploaded files)
    pass `external=False`.
    """

    target: object
    leg: GateLeg = GateLeg.INBOUND
    actionable: bool = True
    external: bool | None = None


def is_loopback(target: str) -> bool:
    return target.startswith(LOOPBACK_SCHEME)


def decide(request: GateRequest, settings: GateSettings) -> GateDecision:
    """Evaluate gate rules in order; first match wins."""

    target = request.target
    if not isinstance(target, str) or not target.strip():
        if request.leg is GateLeg.OUTBOUND and (target is None or isinstance(target, str)):
            return GateDecision.REJECT_MISSING_TARGET
        return GateDecision.REJECT_INVALID
    if settings.dry_run:
        return GateDecision.SHORT_CIRCUIT_DRYRUN
    if not request.actionable:
        return GateDecision.SHORT_CIRCUIT_OK
    external = request.external if request.external is not None else not is_loopback(target)
    if not external:
        return GateDecision.PROCEED
    if not settings.allow_network:
        return GateDecision.REJECT_NETWORK_DISABLED
    return GateDecision.PROCEED
