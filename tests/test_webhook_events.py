from __future__ import annotations

from calls.events import (
    ConnectEvent,
    StatusKind,
    StatusUpdateEvent,
    TerminateEvent,
    WebhookPayload,
    iter_call_events,
    parse_direction,
)
from calls.models import CallDirection
from conftest import webhook_payload


def _events(payload: dict) -> list:
    return list(iter_call_events(WebhookPayload.model_validate(payload)))


def test_connect_event_is_decoded_with_session_and_parties():
    events = _events(
        webhook_payload(
            calls=[
                {
                    "id": "wacid.IN1",
                    "event": "connect",
                    "from": "41790000000",
                    "to": "41440000000",
                    "direction": "USER_INITIATED",
                    "session": {"sdp_type": "offer", "sdp": "v=0 offer"},
                    "biz_opaque_callback_data": "ticket-7",
                }
            ]
        )
    )

    assert events == [
        ConnectEvent(
            call_id="wacid.IN1",
            direction=CallDirection.INBOUND,
            sdp="v=0 offer",
            sdp_type="offer",
            caller="41790000000",
            callee="41440000000",
            tracking_data="ticket-7",
        )
    ]


def test_terminate_event_keeps_status_and_duration():
    events = _events(
        webhook_payload(
            calls=[{"id": "wacid.IN1", "event": "terminate", "status": "Completed", "duration": 42}]
        )
    )
    assert events == [TerminateEvent(call_id="wacid.IN1", status="Completed", duration=42)]


def test_status_kinds_are_case_insensitive():
    events = _events(webhook_payload(statuses=[{"id": "wacid.OUT1", "status": "ringing", "type": "call"}]))
    assert events == [StatusUpdateEvent(call_id="wacid.OUT1", kind=StatusKind.RINGING)]


def test_calls_are_yielded_before_statuses_of_the_same_change():
    events = _events(
        webhook_payload(
            calls=[{"id": "wacid.A", "event": "terminate"}],
            statuses=[{"id": "wacid.B", "status": "ACCEPTED"}],
        )
    )
    assert [type(event) for event in events] == [TerminateEvent, StatusUpdateEvent]


def test_unknown_and_malformed_items_are_skipped():
    events = _events(
        webhook_payload(
            calls=[
                {"id": "wacid.A", "event": "transfer"},
                {"event": "connect"},
                {"id": "wacid.B", "event": "terminate"},
            ],
            statuses=[{"id": "wacid.C", "status": "DELIVERED"}, {"id": "wacid.D"}],
        )
    )
    assert events == [TerminateEvent(call_id="wacid.B")]


def test_other_objects_and_fields_are_ignored():
    payload = webhook_payload(calls=[{"id": "wacid.A", "event": "terminate"}])
    payload["entry"][0]["changes"].append(
        {"field": "messages", "value": {"calls": [{"id": "wacid.B", "event": "terminate"}]}}
    )
    assert [event.call_id for event in _events(payload)] == ["wacid.A"]

    payload["object"] = "page"
    assert _events(payload) == []


def test_direction_falls_back_to_sdp_type():
    assert parse_direction("BUSINESS_INITIATED") is CallDirection.OUTBOUND
    assert parse_direction("inbound") is CallDirection.INBOUND
    assert parse_direction(None, "answer") is CallDirection.OUTBOUND
    assert parse_direction("SIDEWAYS", "offer") is CallDirection.INBOUND
    assert parse_direction(None, None) is None
