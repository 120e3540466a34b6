from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

VERIFY_TOKEN = "test-verify-token"


class FakeSignalingClient:
    """Records every platform call. ``failures`` maps an action name to the exception it raises."""

    def __init__(self, *, call_id: str = "wacid.OUT1", failures: dict | None = None) -> None:
        self.call_id = call_id
        self.failures = dict(failures or {})
        self.calls: list[tuple] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def actions(self) -> list[str]:
        return [entry[0] for entry in self.calls]

    def _record(self, action: str, *args) -> None:
        self.calls.append((action, *args))
        failure = self.failures.get(action)
        if failure is not None:
            raise failure

    async def connect(self, to: str, sdp_offer: str, tracking_data: str | None = None) -> str:
        self._record("connect", to, sdp_offer, tracking_data)
        return self.call_id

    async def pre_accept(self, call_id: str, sdp_answer: str) -> None:
        self._record("pre_accept", call_id, sdp_answer)

    async def accept(self, call_id: str, sdp_answer: str, tracking_data: str | None = None) -> None:
        self._record("accept", call_id, sdp_answer)

    async def terminate(self, call_id: str) -> None:
        self._record("terminate", call_id)

    async def request_call_permission(self, to: str, body_text: str) -> str | None:
        self._record("request_call_permission", to, body_text)
        return "wamid.PERMISSION1"


class FakeAnswerProvider:
    def __init__(self, answer: str = "v=0 answer", error: Exception | None = None) -> None:
        self.answer = answer
        self.error = error
        self.offers: list[tuple[str, str]] = []

    async def create_answer(self, call_id: str, sdp_offer: str) -> str:
        self.offers.append((call_id, sdp_offer))
        if self.error is not None:
            raise self.error
        return self.answer


def drain_events(subscriber) -> list[dict]:
    """Pop every queued fan-out message for ``subscriber``."""

    events = []
    while not subscriber.queue.empty():
        message = subscriber.queue.get_nowait()
        if message is not None:
            events.append(json.loads(message))
    return events


def webhook_payload(*, calls: list[dict] | None = None, statuses: list[dict] | None = None) -> dict:
    value: dict = {"messaging_product": "whatsapp"}
    if calls is not None:
        value["calls"] = calls
    if statuses is not None:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA1", "changes": [{"field": "calls", "value": value}]}],
    }


@pytest.fixture()
def store():
    from calls.store import SessionStore

    return SessionStore()


@pytest.fixture()
def fanout():
    from calls.fanout import EventFanout

    return EventFanout(queue_size=50, send_timeout=1.0)


@pytest.fixture()
def signaling():
    return FakeSignalingClient()


@pytest.fixture(scope="session")
def app(tmp_path_factory: pytest.TempPathFactory):
    tmp_dir = tmp_path_factory.mktemp("runtime")

    # Must be set before the cached settings are first built.
    os.environ["DATA_DIR"] = str(tmp_dir)
    os.environ["WEBHOOK_VERIFY_TOKEN"] = VERIFY_TOKEN
    os.environ["SESSION_SWEEP_INTERVAL_SECONDS"] = "0"
    os.environ["INBOUND_CALL_POLICY"] = "manual"
    for name in ("WHATSAPP_ACCESS_TOKEN", "WHATSAPP_PHONE_NUMBER_ID", "WHATSAPP_APP_SECRET", "ANSWER_ENDPOINT"):
        os.environ.pop(name, None)

    import importlib

    from config.settings import get_settings

    get_settings.cache_clear()
    import api.dependencies as deps

    deps.get_session_store.cache_clear()
    deps.get_fanout.cache_clear()

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app, store, fanout, signaling):
    # Fresh store/fan-out per test and no real Graph API traffic.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_session_store] = lambda: store
    app.dependency_overrides[deps.get_fanout] = lambda: fanout
    app.dependency_overrides[deps.get_signaling_client] = lambda: signaling
    app.dependency_overrides[deps.get_answer_provider] = lambda: None

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
