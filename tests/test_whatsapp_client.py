from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from calls.errors import AuthError, NetworkError, PermissionDeniedError, RemoteServiceError
from integrations.whatsapp_client import WhatsAppCallingClient, classify_error


class RecordingHandler:
    def __init__(self, status: int = 200, body: dict | None = None, exc: Exception | None = None) -> None:
        self.status = status
        self.body = body if body is not None else {"success": True}
        self.exc = exc
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(self.status, json=self.body)

    def sent_json(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def _client(handler: RecordingHandler, *, access_token: str | None = "token-123") -> WhatsAppCallingClient:
    return WhatsAppCallingClient(
        access_token=access_token,
        phone_number_id="1055",
        graph_url="https://graph.example.test/",
        api_version="v21.0",
        transport=httpx.MockTransport(handler),
    )


def test_connect_posts_offer_and_returns_call_id():
    handler = RecordingHandler(body={"messaging_product": "whatsapp", "calls": [{"id": "wacid.NEW"}]})

    call_id = asyncio.run(_client(handler).connect("41790000000", "v=0 offer", "crm-1"))

    assert call_id == "wacid.NEW"
    request = handler.requests[0]
    assert str(request.url) == "https://graph.example.test/v21.0/1055/calls"
    assert request.headers["Authorization"] == "Bearer token-123"
    assert handler.sent_json() == {
        "messaging_product": "whatsapp",
        "to": "41790000000",
        "action": "connect",
        "session": {"sdp_type": "offer", "sdp": "v=0 offer"},
        "biz_opaque_callback_data": "crm-1",
    }


def test_connect_without_call_id_in_response_is_an_error():
    handler = RecordingHandler(body={"messaging_product": "whatsapp", "calls": []})

    with pytest.raises(RemoteServiceError):
        asyncio.run(_client(handler).connect("41790000000", "v=0 offer"))


def test_pre_accept_and_accept_send_answer_session():
    handler = RecordingHandler()
    client = _client(handler)

    asyncio.run(client.pre_accept("wacid.IN1", "v=0 answer"))
    asyncio.run(client.accept("wacid.IN1", "v=0 answer", tracking_data="t-1"))

    assert handler.sent_json(0) == {
        "messaging_product": "whatsapp",
        "call_id": "wacid.IN1",
        "action": "pre_accept",
        "session": {"sdp_type": "answer", "sdp": "v=0 answer"},
    }
    accepted = handler.sent_json(1)
    assert accepted["action"] == "accept"
    assert accepted["biz_opaque_callback_data"] == "t-1"


def test_terminate_sends_no_session():
    handler = RecordingHandler()

    asyncio.run(_client(handler).terminate("wacid.IN1"))

    assert handler.sent_json() == {"messaging_product": "whatsapp", "call_id": "wacid.IN1", "action": "terminate"}


def test_request_call_permission_posts_interactive_message():
    handler = RecordingHandler(body={"messages": [{"id": "wamid.P1"}]})

    message_id = asyncio.run(_client(handler).request_call_permission("41790000000", "May we call?"))

    assert message_id == "wamid.P1"
    assert handler.requests[0].url.path == "/v21.0/1055/messages"
    sent = handler.sent_json()
    assert sent["type"] == "interactive"
    assert sent["interactive"]["type"] == "call_permission_request"
    assert sent["interactive"]["body"]["text"] == "May we call?"


def test_missing_permission_maps_to_permission_denied():
    body = {"error": {"message": "No approved permission", "code": 138006, "type": "OAuthException"}}
    handler = RecordingHandler(status=400, body=body)

    with pytest.raises(PermissionDeniedError) as excinfo:
        asyncio.run(_client(handler).connect("41790000000", "v=0 offer"))

    error = excinfo.value
    assert error.code == 138006
    assert error.status == 400
    assert error.body == body
    assert error.to_payload()["code"] == 138006
    assert len(handler.requests) == 1


@pytest.mark.parametrize(
    ("status", "body"),
    [
        (401, {"error": {"message": "Invalid OAuth access token."}}),
        (400, {"error": {"message": "Session has expired", "code": 190}}),
    ],
)
def test_rejected_token_maps_to_auth_error(status, body):
    with pytest.raises(AuthError):
        asyncio.run(_client(RecordingHandler(status=status, body=body)).terminate("wacid.1"))


def test_other_failures_keep_status_and_body():
    body = {"error": {"message": "Service temporarily unavailable", "code": 2}}
    handler = RecordingHandler(status=503, body=body)

    with pytest.raises(RemoteServiceError) as excinfo:
        asyncio.run(_client(handler).accept("wacid.1", "v=0 answer"))

    error = excinfo.value
    assert type(error) is RemoteServiceError
    assert error.status == 503
    assert error.body == body
    assert error.detail == "Service temporarily unavailable"
    # Never retried.
    assert len(handler.requests) == 1


@pytest.mark.parametrize(
    "exc",
    [httpx.ConnectError("refused"), httpx.ReadTimeout("slow")],
)
def test_transport_failures_map_to_network_error(exc):
    with pytest.raises(NetworkError):
        asyncio.run(_client(RecordingHandler(exc=exc)).terminate("wacid.1"))


def test_unconfigured_client_fails_without_sending():
    handler = RecordingHandler()

    with pytest.raises(AuthError):
        asyncio.run(_client(handler, access_token=None).terminate("wacid.1"))

    assert handler.requests == []


def test_classify_error_tolerates_non_json_bodies():
    error = classify_error(502, "<html>Bad gateway</html>")
    assert type(error) is RemoteServiceError
    assert error.status == 502
    assert "502" in error.detail
