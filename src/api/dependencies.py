"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules. The session store
and fan-out are process-wide singletons; everything else is cheap to build
per request.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from calls.actions import CallActions
from calls.dispatcher import WebhookDispatcher
from calls.fanout import EventFanout
from calls.store import SessionStore
from config.settings import get_settings
from integrations.media_gateway import AnswerProvider, build_answer_provider
from integrations.oauth_client import OAuthClient, build_oauth_client
from integrations.recordings import RecordingStorage
from integrations.whatsapp_client import WhatsAppCallingClient, build_whatsapp_client


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    settings = get_settings()
    return SessionStore(terminated_history_size=settings.terminated_history_size)


@lru_cache(maxsize=1)
def get_fanout() -> EventFanout:
    settings = get_settings()
    return EventFanout(
        queue_size=settings.subscriber_queue_size,
        send_timeout=settings.subscriber_send_timeout,
    )


def get_signaling_client() -> WhatsAppCallingClient:
    return build_whatsapp_client()


def get_answer_provider() -> AnswerProvider | None:
    return build_answer_provider()


def get_call_actions(
    store: SessionStore = Depends(get_session_store),
    signaling: WhatsAppCallingClient = Depends(get_signaling_client),
    fanout: EventFanout = Depends(get_fanout),
) -> CallActions:
    return CallActions(store, signaling, fanout)


def get_dispatcher(
    store: SessionStore = Depends(get_session_store),
    fanout: EventFanout = Depends(get_fanout),
    actions: CallActions = Depends(get_call_actions),
    answer_provider: AnswerProvider | None = Depends(get_answer_provider),
) -> WebhookDispatcher:
    return WebhookDispatcher(
        store,
        fanout,
        actions,
        policy=get_settings().inbound_call_policy,
        answer_provider=answer_provider,
    )


def get_oauth_client() -> OAuthClient:
    return build_oauth_client()


def get_recording_storage() -> RecordingStorage:
    settings = get_settings()
    return RecordingStorage(settings.data_dir / "recordings", max_bytes=settings.recordings_max_bytes)
