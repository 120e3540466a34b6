"""WhatsApp Business Calling client (Graph API).

One method per platform action. Every method issues exactly one request and
either returns or raises a classified ``RemoteServiceError``; nothing is
retried and no session state is touched here.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from calls.errors import AuthError, NetworkError, PermissionDeniedError, RemoteServiceError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

MESSAGING_PRODUCT = "whatsapp"

# Graph error codes: 190 = invalid/expired access token,
# 138006 = recipient has not granted call permission.
AUTH_ERROR_CODES = frozenset({190})
PERMISSION_ERROR_CODES = frozenset({138006})


def _error_code(error: dict[str, Any]) -> int | None:
    try:
        return int(error.get("code"))
    except (TypeError, ValueError):
        return None


def classify_error(status: int, body: Any) -> RemoteServiceError:
    """Map a non-2xx Graph response to the matching exception."""

    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        error = {}
    code = _error_code(error)
    message = error.get("error_user_msg") or error.get("message")

    if code in PERMISSION_ERROR_CODES:
        return PermissionDeniedError(message, code=code, status=status, body=body)
    if status == 401 or code in AUTH_ERROR_CODES:
        return AuthError(message, status=status, body=body)
    return RemoteServiceError(message or f"Graph API returned HTTP {status}", status=status, body=body)


class WhatsAppCallingClient:
    """Thin async client for the ``/{phone_number_id}/calls`` endpoint."""

    def __init__(
        self,
        *,
        access_token: str | None,
        phone_number_id: str | None,
        graph_url: str = "https://graph.facebook.com",
        api_version: str = "v21.0",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._base_url = f"{graph_url.rstrip('/')}/{api_version.strip('/')}"
        self._timeout = timeout
        self._transport = transport

    async def connect(self, to: str, sdp_offer: str, tracking_data: str | None = None) -> str:
        payload: dict[str, Any] = {
            "messaging_product": MESSAGING_PRODUCT,
            "to": to,
            "action": "connect",
            "session": {"sdp_type": "offer", "sdp": sdp_offer},
        }
        if tracking_data:
            payload["biz_opaque_callback_data"] = tracking_data

        data = await self._post("calls", payload)
        calls = data.get("calls")
        call_id = None
        if isinstance(calls, list) and calls and isinstance(calls[0], dict):
            call_id = calls[0].get("id")
        if not call_id:
            raise RemoteServiceError("Connect response did not include a call id.", body=data)

        LOGGER.info("Outbound call %s placed to %s", call_id, to)
        return str(call_id)

    async def pre_accept(self, call_id: str, sdp_answer: str) -> None:
        await self._call_action(call_id, "pre_accept", sdp_answer=sdp_answer)

    async def accept(self, call_id: str, sdp_answer: str, tracking_data: str | None = None) -> None:
        await self._call_action(call_id, "accept", sdp_answer=sdp_answer, tracking_data=tracking_data)

    async def terminate(self, call_id: str) -> None:
        await self._call_action(call_id, "terminate")

    async def request_call_permission(self, to: str, body_text: str) -> str | None:
        payload = {
            "messaging_product": MESSAGING_PRODUCT,
            "recipient_type": "individual",
            "to": to,
            "type": "interactive",
            "interactive": {
                "type": "call_permission_request",
                "action": {"name": "call_permission_request"},
                "body": {"text": body_text},
            },
        }
        data = await self._post("messages", payload)
        messages = data.get("messages")
        if isinstance(messages, list) and messages and isinstance(messages[0], dict):
            return messages[0].get("id")
        return None

    async def _call_action(
        self,
        call_id: str,
        action: str,
        *,
        sdp_answer: str | None = None,
        tracking_data: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "messaging_product": MESSAGING_PRODUCT,
            "call_id": call_id,
            "action": action,
        }
        if sdp_answer is not None:
            payload["session"] = {"sdp_type": "answer", "sdp": sdp_answer}
        if tracking_data:
            payload["biz_opaque_callback_data"] = tracking_data

        await self._post("calls", payload)
        LOGGER.info("Sent %s for call %s", action, call_id)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._access_token}",
        }

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self._access_token or not self._phone_number_id:
            raise AuthError("WhatsApp access token or phone number id is not configured.")

        url = f"{self._base_url}/{self._phone_number_id}/{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Graph API request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Graph API request failed: {exc}") from exc

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if response.is_success:
            return body if isinstance(body, dict) else {}

        error = classify_error(response.status_code, body)
        LOGGER.error("Graph API %s failed with HTTP %s: %s", path, response.status_code, error.detail)
        raise error


def build_whatsapp_client(transport: httpx.AsyncBaseTransport | None = None) -> WhatsAppCallingClient:
    settings = get_settings()
    return WhatsAppCallingClient(
        access_token=settings.whatsapp_access_token,
        phone_number_id=settings.whatsapp_phone_number_id,
        graph_url=settings.whatsapp_graph_url,
        api_version=settings.whatsapp_api_version,
        timeout=settings.whatsapp_request_timeout,
        transport=transport,
    )
