"""Entry point for the WhatsApp call signaling relay."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from api.auth_routes import router as auth_router
from api.dependencies import get_fanout, get_session_store
from api.errors import register_exception_handlers
from api.realtime_routes import router as realtime_router
from api.routes import router as api_router
from api.webhook_routes import router as webhook_router
from calls.dispatcher import cancel_background_tasks
from calls.fanout import EventFanout
from calls.store import SessionStore
from calls.sweeper import run_session_sweeper
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper: asyncio.Task | None = None
    if settings.session_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            run_session_sweeper(
                get_session_store(),
                get_fanout(),
                ttl_seconds=settings.session_ttl_seconds,
                interval_seconds=settings.session_sweep_interval_seconds,
            )
        )
    LOGGER.info("Call relay started (inbound policy=%s)", settings.inbound_call_policy)
    yield
    if sweeper is not None:
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
    await cancel_background_tasks()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)

app = FastAPI(
    title="WhatsApp Call Relay",
    description="Relays WhatsApp Business Calling signaling between the platform and real-time clients.",
    lifespan=lifespan,
)
register_exception_handlers(app)
app.include_router(api_router, prefix="/api")
app.include_router(webhook_router)
app.include_router(realtime_router)
app.include_router(auth_router)


@app.get("/health")
async def health_check(
    store: SessionStore = Depends(get_session_store),
    fanout: EventFanout = Depends(get_fanout),
) -> dict:
    return {
        "status": "healthy",
        "active_calls": len(store),
        "subscribers": fanout.subscriber_count,
        "inbound_call_policy": settings.inbound_call_policy,
    }


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
