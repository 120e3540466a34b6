from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket

from api.dependencies import get_fanout
from calls.fanout import EventFanout

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def subscriber_socket(
    websocket: WebSocket,
    fanout: EventFanout = Depends(get_fanout),
) -> None:
    """Push call events to a client. The server only sends; client messages are ignored."""

    await websocket.accept()
    # Subscribe before confirming so no broadcast can slip between the two.
    subscriber = fanout.subscribe()
    sender: asyncio.Task | None = None
    try:
        await websocket.send_json({"type": "connected", "subscriber_id": subscriber.subscriber_id})
        sender = asyncio.create_task(fanout.pump(subscriber, websocket.send_text))
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            LOGGER.debug("Ignoring message from subscriber %s", subscriber.subscriber_id)
    finally:
        fanout.unsubscribe(subscriber)
        if sender is not None:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
