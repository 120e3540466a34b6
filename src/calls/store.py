from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import AsyncIterator, Callable, Collection
from contextlib import asynccontextmanager
from dataclasses import fields, replace
from datetime import datetime, timedelta

from calls.models import CallSession, CallState, utcnow

_PATCHABLE_FIELDS = frozenset(
    f.name for f in fields(CallSession) if f.name not in {"call_id", "created_at", "last_updated"}
)


class SessionStore:
    """In-memory store for call sessions.

    Note: This is a single-process store; sessions are lost on restart. Every
    method except ``locked`` is synchronous, so on the event loop each one is
    an atomic update of a single entry.
    """

    def __init__(
        self,
        *,
        terminated_history_size: int = 1000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions: dict[str, CallSession] = {}
        self._terminated: OrderedDict[str, None] = OrderedDict()
        self._history_size = terminated_history_size
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._sessions

    def get(self, call_id: str) -> CallSession | None:
        return self._sessions.get(call_id)

    def snapshot(self) -> list[CallSession]:
        return list(self._sessions.values())

    def upsert(self, call_id: str, **patch) -> CallSession:
        """Merge ``patch`` into the session, creating it with defaults if missing.

        ``direction`` is only honoured on creation. Repeating an identical
        patch returns the stored record untouched.
        """

        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown session fields: {sorted(unknown)}")

        now = self._clock()
        existing = self._sessions.get(call_id)
        if existing is None:
            session = CallSession(call_id=call_id, created_at=now, last_updated=now, **patch)
            self._sessions[call_id] = session
            self._terminated.pop(call_id, None)
            return session

        patch.pop("direction", None)
        changes = {key: value for key, value in patch.items() if getattr(existing, key) != value}
        if not changes:
            return existing

        session = replace(existing, last_updated=now, **changes)
        self._sessions[call_id] = session
        return session

    def remove(self, call_id: str) -> CallSession | None:
        session = self._sessions.pop(call_id, None)
        if session is not None:
            self._remember_terminated(call_id)
        return session

    def was_terminated(self, call_id: str) -> bool:
        return call_id in self._terminated

    def expire_idle(
        self,
        max_idle: timedelta,
        *,
        states: Collection[CallState] | None = None,
    ) -> list[CallSession]:
        """Remove sessions idle longer than ``max_idle``, optionally only those in ``states``."""

        cutoff = self._clock() - max_idle
        expired = [
            session
            for session in self._sessions.values()
            if session.last_updated < cutoff and (states is None or session.state in states)
        ]
        for session in expired:
            self.remove(session.call_id)
        return expired

    @asynccontextmanager
    async def locked(self, call_id: str) -> AsyncIterator[None]:
        """Serialize read-modify-write sequences for one call id."""

        lock = self._locks.get(call_id)
        if lock is None:
            lock = self._locks[call_id] = asyncio.Lock()
        self._lock_users[call_id] = self._lock_users.get(call_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[call_id] - 1
            if remaining:
                self._lock_users[call_id] = remaining
            else:
                del self._lock_users[call_id]
                del self._locks[call_id]

    def _remember_terminated(self, call_id: str) -> None:
        if self._history_size <= 0:
            return
        self._terminated[call_id] = None
        self._terminated.move_to_end(call_id)
        while len(self._terminated) > self._history_size:
            self._terminated.popitem(last=False)
