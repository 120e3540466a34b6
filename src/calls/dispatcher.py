"""Webhook event dispatcher: applies platform call events to session state.

State table (per call id, events applied strictly in delivery order):

    (none)               connect, inbound   -> INCOMING     broadcast incoming_call
    (none)/INITIATED     connect, outbound  -> CONNECTING   broadcast call_connect
    any non-terminal     ringing/accepted/rejected status -> that state, broadcast call_status
    any                  terminate          -> removed      broadcast call_terminated
    terminated/absent    anything else      -> discarded (StaleEventError, logged)

Backward status transitions and exact duplicates are logged and dropped. A
connect that arrives after the call moved on only fills in missing fields. A failure
while handling one event never stops the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from calls.actions import CallActions
from calls.errors import RelayError, StaleEventError
from calls.events import (
    CallEvent,
    ConnectEvent,
    StatusUpdateEvent,
    TerminateEvent,
    WebhookPayload,
    iter_call_events,
)
from calls.fanout import (
    EVENT_CALL_CONNECT,
    EVENT_CALL_STATUS,
    EVENT_CALL_TERMINATED,
    EVENT_INCOMING_CALL,
    EventFanout,
    build_event,
)
from calls.models import CallDirection, CallSession, CallState, can_transition
from calls.store import SessionStore
from config.settings import InboundCallPolicy

if TYPE_CHECKING:  # pragma: no cover
    from integrations.media_gateway import AnswerProvider

LOGGER = logging.getLogger(__name__)

# Strong references for fire-and-forget answer tasks; the loop only keeps weak ones.
_BACKGROUND_TASKS: set[asyncio.Task] = set()


async def cancel_background_tasks() -> None:
    tasks = list(_BACKGROUND_TASKS)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


class WebhookDispatcher:
    def __init__(
        self,
        store: SessionStore,
        fanout: EventFanout,
        actions: CallActions,
        *,
        policy: InboundCallPolicy = "manual",
        answer_provider: AnswerProvider | None = None,
    ) -> None:
        self._store = store
        self._fanout = fanout
        self._actions = actions
        self._policy = policy
        self._answer_provider = answer_provider
        self._tasks: set[asyncio.Task] = set()

    async def dispatch(self, payload: dict[str, Any]) -> int:
        """Apply every call event in ``payload``; return how many changed state."""

        try:
            parsed = WebhookPayload.model_validate(payload)
        except ValidationError as exc:
            LOGGER.warning("Ignoring malformed webhook payload: %s", exc)
            return 0

        applied = 0
        for event in iter_call_events(parsed):
            if await self.apply(event):
                applied += 1
        return applied

    async def apply(self, event: CallEvent) -> bool:
        try:
            if isinstance(event, ConnectEvent):
                return await self._on_connect(event)
            if isinstance(event, TerminateEvent):
                return await self._on_terminate(event)
            if isinstance(event, StatusUpdateEvent):
                return await self._on_status(event)
            LOGGER.warning("Unsupported call event %r", event)
        except StaleEventError as exc:
            LOGGER.info("Discarding %s for call %s: %s", type(event).__name__, event.call_id, exc.detail)
        except RelayError as exc:
            LOGGER.error("Handling %s for call %s failed: %s", type(event).__name__, event.call_id, exc.detail)
        except Exception:
            LOGGER.exception("Unexpected failure handling %s for call %s", type(event).__name__, event.call_id)
        return False

    async def drain(self) -> None:
        """Wait for automatic answer tasks started by this dispatcher."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _on_connect(self, event: ConnectEvent) -> bool:
        call_id = event.call_id
        async with self._store.locked(call_id):
            if self._store.was_terminated(call_id):
                raise StaleEventError("connect after terminate")

            session = self._store.get(call_id)
            if session is not None:
                direction = session.direction
            else:
                direction = event.direction or CallDirection.INBOUND
            inbound = direction is CallDirection.INBOUND
            target = CallState.INCOMING if inbound else CallState.CONNECTING

            patch: dict[str, Any] = {}
            if event.sdp is not None:
                patch["sdp_offer" if inbound else "sdp_answer"] = event.sdp
            peer = event.caller if inbound else event.callee
            if peer:
                patch["peer"] = peer
            if event.tracking_data:
                patch["tracking_data"] = event.tracking_data

            if session is None:
                session = self._store.upsert(call_id, direction=direction, state=target, **patch)
                self._announce_connect(session, event)
                if inbound:
                    self._schedule_auto_answer(session)
                return True

            if session.state is target:
                self._store.upsert(call_id, **patch)
                LOGGER.info("Duplicate connect for call %s merged", call_id)
                return False

            if not can_transition(session.state, target):
                # Late duplicate: keep the state, fill in what the record lacks.
                for sdp_field in ("sdp_offer", "sdp_answer"):
                    if getattr(session, sdp_field) is not None:
                        patch.pop(sdp_field, None)
                self._store.upsert(call_id, **patch)
                LOGGER.info(
                    "Late connect for call %s merged without changing state %s",
                    call_id,
                    session.state.value,
                )
                return False

            session = self._store.upsert(call_id, state=target, **patch)
            self._announce_connect(session, event)
            return True

    async def _on_status(self, event: StatusUpdateEvent) -> bool:
        call_id = event.call_id
        target = CallState(event.kind.value)
        async with self._store.locked(call_id):
            session = self._store.get(call_id)
            if session is None:
                reason = "call already terminated" if self._store.was_terminated(call_id) else "unknown call"
                raise StaleEventError(reason)

            if session.state is target:
                LOGGER.info("Duplicate %s status for call %s", target.value, call_id)
                return False
            if not can_transition(session.state, target):
                LOGGER.warning(
                    "Discarding status for call %s: %s -> %s is backward",
                    call_id,
                    session.state.value,
                    target.value,
                )
                return False

            self._store.upsert(call_id, state=target)
            self._fanout.broadcast(build_event(EVENT_CALL_STATUS, call_id, status=target.value))
            return True

    async def _on_terminate(self, event: TerminateEvent) -> bool:
        call_id = event.call_id
        async with self._store.locked(call_id):
            already_terminated = self._store.was_terminated(call_id)
            session = self._store.remove(call_id)
            if session is None:
                raise StaleEventError("duplicate terminate" if already_terminated else "unknown call")

            LOGGER.info("Call %s terminated from %s", call_id, session.state.value)
            self._fanout.broadcast(
                build_event(
                    EVENT_CALL_TERMINATED,
                    call_id,
                    status=(event.status or CallState.TERMINATED.value).upper(),
                    duration=event.duration,
                )
            )
            return True

    def _announce_connect(self, session: CallSession, event: ConnectEvent) -> None:
        if session.direction is CallDirection.INBOUND:
            fields = {
                "from": event.caller,
                "to": event.callee,
                "direction": session.direction.value,
                "sdp": session.sdp_offer,
                "sdp_type": "offer",
                "tracking_data": session.tracking_data,
            }
            self._fanout.broadcast(build_event(EVENT_INCOMING_CALL, session.call_id, **fields))
            return

        fields = {
            "from": event.caller,
            "to": event.callee,
            "direction": session.direction.value,
            "sdp": session.sdp_answer,
            "sdp_type": "answer",
        }
        self._fanout.broadcast(build_event(EVENT_CALL_CONNECT, session.call_id, **fields))

    def _schedule_auto_answer(self, session: CallSession) -> None:
        if self._policy == "manual":
            return
        if self._answer_provider is None:
            LOGGER.warning(
                "Policy %s needs ANSWER_ENDPOINT; call %s is left for a client to accept",
                self._policy,
                session.call_id,
            )
            return
        if session.sdp_offer is None:
            LOGGER.warning("Call %s arrived without an SDP offer; not answering automatically", session.call_id)
            return

        task = asyncio.create_task(self._auto_answer(session.call_id, session.sdp_offer))
        _BACKGROUND_TASKS.add(task)
        self._tasks.add(task)
        task.add_done_callback(_BACKGROUND_TASKS.discard)
        task.add_done_callback(self._tasks.discard)

    async def _auto_answer(self, call_id: str, sdp_offer: str) -> None:
        try:
            answer = await self._answer_provider.create_answer(call_id, sdp_offer)

            session = self._store.get(call_id)
            if session is None or session.state is not CallState.INCOMING:
                LOGGER.info("Call %s moved on before its answer was ready", call_id)
                return

            await self._actions.pre_accept(call_id, answer)
            if self._policy == "auto_accept":
                await self._actions.accept(call_id, answer)
        except RelayError as exc:
            LOGGER.error("Automatic answer for call %s failed: %s", call_id, exc.detail)
        except Exception:
            LOGGER.exception("Automatic answer for call %s crashed", call_id)
