from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from calls.fanout import EVENT_CALL_TERMINATED, EventFanout, build_event
from calls.models import CallState
from calls.store import SessionStore

LOGGER = logging.getLogger(__name__)

EXPIRED_STATUS = "EXPIRED"

# Calls that never got answered. An answered call only ends on terminate.
EXPIRABLE_STATES = frozenset(
    {
        CallState.INITIATED,
        CallState.CONNECTING,
        CallState.RINGING,
        CallState.INCOMING,
        CallState.PREACCEPTED,
        CallState.REJECTED,
    }
)


def expire_idle_sessions(store: SessionStore, fanout: EventFanout, *, ttl_seconds: int) -> int:
    expired = store.expire_idle(timedelta(seconds=ttl_seconds), states=EXPIRABLE_STATES)
    for session in expired:
        LOGGER.info("Expiring idle call %s (state=%s)", session.call_id, session.state.value)
        fanout.broadcast(build_event(EVENT_CALL_TERMINATED, session.call_id, status=EXPIRED_STATUS))
    return len(expired)


async def run_session_sweeper(
    store: SessionStore,
    fanout: EventFanout,
    *,
    ttl_seconds: int,
    interval_seconds: int,
) -> None:
    """Expire unanswered sessions that saw no update for ``ttl_seconds``; runs until cancelled."""

    LOGGER.info("Session sweeper started (ttl=%ss, interval=%ss)", ttl_seconds, interval_seconds)
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            expire_idle_sessions(store, fanout, ttl_seconds=ttl_seconds)
        except Exception:
            LOGGER.exception("Session sweep failed")
