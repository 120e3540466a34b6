"""Decoding of WhatsApp calling webhook payloads into typed call events.

The platform delivers ``calls`` (connect/terminate) and ``statuses``
(ringing/accepted/rejected) arrays per change. Everything is decoded into the
closed set ``ConnectEvent | TerminateEvent | StatusUpdateEvent`` before any
state is touched; anything else is logged and skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from calls.models import CallDirection

LOGGER = logging.getLogger(__name__)

WEBHOOK_OBJECT = "whatsapp_business_account"
CALLS_FIELD = "calls"

_DIRECTION_ALIASES = {
    "USER_INITIATED": CallDirection.INBOUND,
    "INBOUND": CallDirection.INBOUND,
    "BUSINESS_INITIATED": CallDirection.OUTBOUND,
    "OUTBOUND": CallDirection.OUTBOUND,
}


class SessionDescription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sdp_type: str | None = None
    sdp: str | None = None


class WebhookCall(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    event: str | None = None
    from_number: str | None = Field(default=None, alias="from")
    to: str | None = None
    direction: str | None = None
    session: SessionDescription | None = None
    status: str | None = None
    duration: int | None = None
    biz_opaque_callback_data: str | None = None


class WebhookStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    status: str
    type: str | None = None
    recipient_id: str | None = None
    biz_opaque_callback_data: str | None = None


class ChangeValue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    calls: list[dict[str, Any]] = Field(default_factory=list)
    statuses: list[dict[str, Any]] = Field(default_factory=list)


class WebhookChange(BaseModel):
    model_config = ConfigDict(extra="ignore")

    field: str | None = None
    value: ChangeValue = Field(default_factory=ChangeValue)


class WebhookEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    changes: list[WebhookChange] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: str | None = None
    entry: list[WebhookEntry] = Field(default_factory=list)


class StatusKind(str, Enum):
    RINGING = "RINGING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


@dataclass(frozen=True, slots=True)
class ConnectEvent:
    call_id: str
    direction: CallDirection | None
    sdp: str | None
    sdp_type: str | None
    caller: str | None
    callee: str | None
    tracking_data: str | None = None


@dataclass(frozen=True, slots=True)
class TerminateEvent:
    call_id: str
    status: str | None = None
    duration: int | None = None


@dataclass(frozen=True, slots=True)
class StatusUpdateEvent:
    call_id: str
    kind: StatusKind


CallEvent = Union[ConnectEvent, TerminateEvent, StatusUpdateEvent]


def parse_direction(raw: str | None, sdp_type: str | None = None) -> CallDirection | None:
    if raw:
        direction = _DIRECTION_ALIASES.get(raw.strip().upper())
        if direction is not None:
            return direction
        LOGGER.warning("Unknown call direction %r", raw)
    # An offer in the webhook comes from the remote caller; an answer means we dialed out.
    if sdp_type:
        sdp_type = sdp_type.strip().lower()
        if sdp_type == "offer":
            return CallDirection.INBOUND
        if sdp_type == "answer":
            return CallDirection.OUTBOUND
    return None


def decode_call(raw: dict[str, Any]) -> ConnectEvent | TerminateEvent | None:
    try:
        call = WebhookCall.model_validate(raw)
    except ValidationError as exc:
        LOGGER.warning("Skipping malformed call event: %s", exc)
        return None

    event = (call.event or "").strip().lower()
    if event == "connect":
        session = call.session or SessionDescription()
        return ConnectEvent(
            call_id=call.id,
            direction=parse_direction(call.direction, session.sdp_type),
            sdp=session.sdp,
            sdp_type=session.sdp_type,
            caller=call.from_number,
            callee=call.to,
            tracking_data=call.biz_opaque_callback_data,
        )
    if event == "terminate":
        return TerminateEvent(call_id=call.id, status=call.status, duration=call.duration)

    LOGGER.warning("Ignoring unknown call event %r for call %s", call.event, call.id)
    return None


def decode_status(raw: dict[str, Any]) -> StatusUpdateEvent | None:
    try:
        status = WebhookStatus.model_validate(raw)
    except ValidationError as exc:
        LOGGER.warning("Skipping malformed status event: %s", exc)
        return None

    try:
        kind = StatusKind(status.status.strip().upper())
    except ValueError:
        LOGGER.warning("Ignoring unknown call status %r for call %s", status.status, status.id)
        return None
    return StatusUpdateEvent(call_id=status.id, kind=kind)


def iter_call_events(payload: WebhookPayload) -> Iterator[CallEvent]:
    """Yield events in delivery order: entries, changes, then calls before statuses."""

    if payload.object != WEBHOOK_OBJECT:
        LOGGER.warning("Ignoring webhook for object %r", payload.object)
        return

    for entry in payload.entry:
        for change in entry.changes:
            if change.field != CALLS_FIELD:
                LOGGER.debug("Ignoring webhook change for field %r", change.field)
                continue
            for raw_call in change.value.calls:
                decoded = decode_call(raw_call)
                if decoded is not None:
                    yield decoded
            for raw_status in change.value.statuses:
                decoded_status = decode_status(raw_status)
                if decoded_status is not None:
                    yield decoded_status
