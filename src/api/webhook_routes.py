"""WhatsApp calling webhook: subscription handshake and event delivery.

Deliveries are acknowledged before any call logic runs; processing happens
in a background task so a slow or failing platform call never causes a
redelivery.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from fastapi.responses import PlainTextResponse

from api.dependencies import get_dispatcher
from calls.dispatcher import WebhookDispatcher
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


def verify_signature(body: bytes, signature_header: str | None, app_secret: str) -> bool:
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    received = signature_header.removeprefix("sha256=")
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def _tokens_match(received: str, expected: str) -> bool:
    # Bytes, so non-ASCII input is a mismatch rather than a TypeError.
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


@router.get("/webhook")
async def verify_webhook(
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
) -> Response:
    expected = get_settings().webhook_verify_token
    if mode == "subscribe" and expected and token is not None and _tokens_match(token, expected):
        LOGGER.info("Webhook subscription verified")
        return PlainTextResponse(challenge or "")

    LOGGER.warning("Webhook verification rejected (mode=%r)", mode)
    return Response(status_code=403)


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> Response:
    body = await request.body()

    app_secret = get_settings().whatsapp_app_secret
    if app_secret and not verify_signature(body, request.headers.get("x-hub-signature-256"), app_secret):
        LOGGER.warning("Rejecting webhook delivery with a bad signature")
        return Response(status_code=403)

    try:
        payload = json.loads(body)
    except ValueError:
        LOGGER.warning("Webhook body is not JSON: %r", body[:200])
        return PlainTextResponse("invalid json", status_code=400)
    if not isinstance(payload, dict):
        return PlainTextResponse("invalid payload", status_code=400)

    LOGGER.info("Received webhook delivery (%d bytes)", len(body))
    LOGGER.debug("Webhook payload: %s", payload)
    background_tasks.add_task(dispatcher.dispatch, payload)
    return Response(status_code=200)
