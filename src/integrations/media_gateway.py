"""SDP answer generation delegated to an external media gateway.

The relay never negotiates media itself. When inbound calls are answered
automatically, the offer is handed to a gateway that owns the WebRTC stack
and returns the answer to send with pre-accept/accept.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from calls.errors import NetworkError, RemoteServiceError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


class AnswerProvider(ABC):
    """Produces an SDP answer for an inbound offer."""

    @abstractmethod
    async def create_answer(self, call_id: str, sdp_offer: str) -> str:
        """Return the SDP answer for ``sdp_offer``."""


class HttpAnswerProvider(AnswerProvider):
    """POSTs the offer to a gateway endpoint that replies with ``{"sdp": ...}``."""

    def __init__(
        self,
        endpoint: str,
        *,
        api_key: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    async def create_answer(self, call_id: str, sdp_offer: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._endpoint,
                    json={"call_id": call_id, "sdp_type": "offer", "sdp": sdp_offer},
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Media gateway unreachable: {exc}") from exc

        if not response.is_success:
            LOGGER.error("Media gateway returned HTTP %s for call %s", response.status_code, call_id)
            raise RemoteServiceError(
                "Media gateway could not produce an answer.",
                status=response.status_code,
                body=response.text,
            )

        try:
            answer = response.json().get("sdp")
        except (ValueError, AttributeError):
            answer = None
        if not answer:
            raise RemoteServiceError("Media gateway response contains no SDP.", status=response.status_code)
        return answer


def build_answer_provider() -> AnswerProvider | None:
    settings = get_settings()
    if not settings.answer_endpoint:
        return None
    return HttpAnswerProvider(
        settings.answer_endpoint,
        api_key=settings.answer_endpoint_api_key,
        timeout=settings.answer_timeout,
    )
