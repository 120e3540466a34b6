"""Call session record and the forward-only state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallDirection(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class CallState(str, Enum):
    INITIATED = "INITIATED"
    INCOMING = "INCOMING"
    PREACCEPTED = "PREACCEPTED"
    CONNECTING = "CONNECTING"
    ACCEPTED = "ACCEPTED"
    RINGING = "RINGING"
    REJECTED = "REJECTED"
    TERMINATED = "TERMINATED"


# TERMINATED is reachable from every state; it is applied by removing the session.
ALLOWED_TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    CallState.INITIATED: frozenset(
        {CallState.CONNECTING, CallState.RINGING, CallState.ACCEPTED, CallState.REJECTED}
    ),
    CallState.CONNECTING: frozenset({CallState.RINGING, CallState.ACCEPTED, CallState.REJECTED}),
    CallState.RINGING: frozenset({CallState.ACCEPTED, CallState.REJECTED}),
    CallState.INCOMING: frozenset(
        {CallState.PREACCEPTED, CallState.RINGING, CallState.ACCEPTED, CallState.REJECTED}
    ),
    CallState.PREACCEPTED: frozenset({CallState.ACCEPTED, CallState.REJECTED}),
    CallState.ACCEPTED: frozenset(),
    CallState.REJECTED: frozenset(),
    CallState.TERMINATED: frozenset(),
}


def can_transition(current: CallState, target: CallState) -> bool:
    if target is CallState.TERMINATED:
        return current is not CallState.TERMINATED
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True, slots=True)
class CallSession:
    """One call as seen by the relay.

    Instances are immutable; the session store swaps whole records so readers
    never observe a partially merged session.
    """

    call_id: str
    direction: CallDirection = CallDirection.INBOUND
    state: CallState = CallState.INITIATED
    sdp_offer: str | None = None
    sdp_answer: str | None = None
    peer: str | None = None
    tracking_data: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def remote_sdp(self) -> str | None:
        # Inbound: the caller sent the offer. Outbound: the callee sent the answer.
        if self.direction is CallDirection.INBOUND:
            return self.sdp_offer
        return self.sdp_answer
