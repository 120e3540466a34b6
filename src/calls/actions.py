"""Client-initiated call actions: make, pre-accept, accept, terminate."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from calls.errors import CallNotFoundError, CallValidationError
from calls.fanout import EVENT_CALL_STATUS, EVENT_CALL_TERMINATED, EventFanout, build_event
from calls.models import CallDirection, CallSession, CallState, can_transition
from calls.store import SessionStore

if TYPE_CHECKING:  # pragma: no cover
    from integrations.whatsapp_client import WhatsAppCallingClient

LOGGER = logging.getLogger(__name__)

_PRE_ACCEPTABLE = frozenset({CallState.INCOMING})
_ACCEPTABLE = frozenset({CallState.INCOMING, CallState.PREACCEPTED})


def _require(**values: str | None) -> None:
    missing = [name for name, value in values.items() if value is None or not str(value).strip()]
    if missing:
        raise CallValidationError(f"Missing required field(s): {', '.join(missing)}")


class CallActions:
    """Validates a client request, drives the platform, then records and announces the result.

    Platform errors propagate unchanged so the API layer can tell a missing
    call permission apart from any other remote failure.
    """

    def __init__(
        self,
        store: SessionStore,
        signaling: WhatsAppCallingClient,
        fanout: EventFanout,
    ) -> None:
        self._store = store
        self._signaling = signaling
        self._fanout = fanout

    async def make_call(
        self,
        to: str | None,
        sdp_offer: str | None,
        tracking_data: str | None = None,
    ) -> str:
        _require(to=to, sdp_offer=sdp_offer)
        call_id = await self._signaling.connect(to, sdp_offer, tracking_data)

        async with self._store.locked(call_id):
            if self._store.was_terminated(call_id):
                LOGGER.info("Call %s ended before it could be recorded", call_id)
                return call_id

            existing = self._store.get(call_id)
            if existing is not None:
                # The connect webhook beat us here; keep its state.
                self._store.upsert(
                    call_id,
                    sdp_offer=sdp_offer,
                    peer=existing.peer or to,
                    tracking_data=tracking_data or existing.tracking_data,
                )
                return call_id

            session = self._store.upsert(
                call_id,
                direction=CallDirection.OUTBOUND,
                state=CallState.INITIATED,
                sdp_offer=sdp_offer,
                peer=to,
                tracking_data=tracking_data,
            )
            self._fanout.broadcast(
                build_event(
                    EVENT_CALL_STATUS,
                    call_id,
                    status=session.state.value,
                    direction=session.direction.value,
                    to=to,
                )
            )
        return call_id

    async def pre_accept(self, call_id: str | None, sdp: str | None) -> CallSession | None:
        _require(call_id=call_id, sdp=sdp)
        async with self._store.locked(call_id):
            self._check_answerable(self._store.get(call_id), "pre-accepted", _PRE_ACCEPTABLE)
        # The platform request runs unlocked so webhooks for this call are not held up.
        await self._signaling.pre_accept(call_id, sdp)
        async with self._store.locked(call_id):
            return self._record_answer(call_id, CallState.PREACCEPTED, sdp)

    async def accept(self, call_id: str | None, sdp: str | None) -> CallSession | None:
        _require(call_id=call_id, sdp=sdp)
        async with self._store.locked(call_id):
            session = self._store.get(call_id)
            self._check_answerable(session, "accepted", _ACCEPTABLE)
            tracking_data = session.tracking_data if session else None
        await self._signaling.accept(call_id, sdp, tracking_data)
        async with self._store.locked(call_id):
            return self._record_answer(call_id, CallState.ACCEPTED, sdp)

    async def terminate(self, call_id: str | None) -> CallSession | None:
        _require(call_id=call_id)
        await self._signaling.terminate(call_id)
        async with self._store.locked(call_id):
            session = self._store.remove(call_id)
            if session is None:
                LOGGER.info("Terminate sent for untracked or already ended call %s", call_id)
                return None
            self._fanout.broadcast(
                build_event(EVENT_CALL_TERMINATED, call_id, status=CallState.TERMINATED.value)
            )
            return session

    async def request_call_permission(self, to: str | None, body_text: str) -> str | None:
        _require(to=to)
        return await self._signaling.request_call_permission(to, body_text)

    def list_active(self) -> list[CallSession]:
        return self._store.snapshot()

    def remote_sdp(self, call_id: str) -> tuple[str, str]:
        """Return ``(sdp, sdp_type)`` sent by the remote party."""

        session = self._store.get(call_id)
        if session is None:
            raise CallNotFoundError(f"Call {call_id} not found.")
        sdp = session.remote_sdp
        if sdp is None:
            raise CallNotFoundError(f"No SDP received yet for call {call_id}.")
        sdp_type = "offer" if session.direction is CallDirection.INBOUND else "answer"
        return sdp, sdp_type

    def _check_answerable(
        self,
        session: CallSession | None,
        verb: str,
        allowed: frozenset[CallState],
    ) -> None:
        if session is None:
            # Answering an existing platform call is not gated on local knowledge of it.
            return
        if session.direction is not CallDirection.INBOUND:
            raise CallValidationError(f"Outbound call {session.call_id} cannot be {verb}.")
        if session.state not in allowed:
            raise CallValidationError(
                f"Call {session.call_id} cannot be {verb} from state {session.state.value}."
            )
        if session.sdp_offer is None:
            raise CallValidationError(f"Call {session.call_id} has no SDP offer yet.")

    def _record_answer(self, call_id: str, target: CallState, sdp: str) -> CallSession | None:
        session = self._store.get(call_id)
        if session is None:
            if self._store.was_terminated(call_id):
                LOGGER.info("Call %s ended while %s was in flight", call_id, target.value)
            else:
                LOGGER.warning("Call %s is not tracked; %s not recorded", call_id, target.value)
            return None
        if session.state is target or not can_transition(session.state, target):
            # A webhook moved the call on while the request was in flight.
            if session.state is not target:
                LOGGER.info(
                    "Call %s already %s; keeping only the %s answer",
                    call_id,
                    session.state.value,
                    target.value,
                )
            return self._store.upsert(call_id, sdp_answer=sdp)
        session = self._store.upsert(call_id, state=target, sdp_answer=sdp)
        self._fanout.broadcast(build_event(EVENT_CALL_STATUS, call_id, status=target.value))
        return session
