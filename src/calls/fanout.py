"""Broadcast of call state changes to connected real-time clients."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

LOGGER = logging.getLogger(__name__)

EVENT_INCOMING_CALL = "incoming_call"
EVENT_CALL_CONNECT = "call_connect"
EVENT_CALL_STATUS = "call_status"
EVENT_CALL_TERMINATED = "call_terminated"


def build_event(event_type: str, call_id: str, **fields: Any) -> dict[str, Any]:
    event: dict[str, Any] = {"type": event_type, "call_id": call_id}
    event.update({key: value for key, value in fields.items() if value is not None})
    return event


@dataclass(eq=False)
class Subscriber:
    subscriber_id: int
    queue: asyncio.Queue = field(repr=False)
    closed: bool = False


class EventFanout:
    """Delivers every broadcast to all subscribers connected at that moment.

    Each subscriber owns a bounded queue drained by its WebSocket task, so
    ``broadcast`` itself never waits on a client. A subscriber whose queue is
    full, or whose send fails or times out, is dropped as if it disconnected.
    """

    def __init__(self, *, queue_size: int = 100, send_timeout: float = 5.0) -> None:
        self._subscribers: dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._queue_size = queue_size
        self._send_timeout = send_timeout

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscriber:
        subscriber = Subscriber(
            subscriber_id=next(self._ids),
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        self._subscribers[subscriber.subscriber_id] = subscriber
        LOGGER.info("Subscriber %s connected (total=%d)", subscriber.subscriber_id, len(self._subscribers))
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.pop(subscriber.subscriber_id, None)
        if subscriber.closed:
            return
        subscriber.closed = True
        # Wake the drain loop; a full queue is discarded since nobody will read it.
        while subscriber.queue.full():
            subscriber.queue.get_nowait()
        subscriber.queue.put_nowait(None)
        LOGGER.info("Subscriber %s disconnected (total=%d)", subscriber.subscriber_id, len(self._subscribers))

    def broadcast(self, event: dict[str, Any]) -> int:
        """Queue ``event`` for every current subscriber; return how many got it."""

        try:
            message = json.dumps(event)
        except (TypeError, ValueError):
            LOGGER.exception("Dropping unserializable event %r", event.get("type"))
            return 0

        delivered = 0
        for subscriber in list(self._subscribers.values()):
            if subscriber.closed:
                self.unsubscribe(subscriber)
                continue
            try:
                subscriber.queue.put_nowait(message)
            except asyncio.QueueFull:
                LOGGER.warning("Subscriber %s is not keeping up; dropping it", subscriber.subscriber_id)
                self.unsubscribe(subscriber)
                continue
            delivered += 1
        return delivered

    async def messages(self, subscriber: Subscriber) -> AsyncIterator[str]:
        while True:
            message = await subscriber.queue.get()
            if message is None:
                return
            yield message

    async def pump(self, subscriber: Subscriber, send: Callable[[str], Awaitable[None]]) -> None:
        """Forward queued messages through ``send`` until the subscriber goes away."""

        async for message in self.messages(subscriber):
            try:
                await asyncio.wait_for(send(message), timeout=self._send_timeout)
            except Exception as exc:
                LOGGER.warning("Send to subscriber %s failed: %s", subscriber.subscriber_id, exc)
                self.unsubscribe(subscriber)
                return
