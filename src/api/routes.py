"""Routes mounted under ``/api``."""

from __future__ import annotations

from fastapi import APIRouter

from api.call_routes import router as call_router
from api.recording_routes import router as recording_router

router = APIRouter()
router.include_router(call_router)
router.include_router(recording_router)
