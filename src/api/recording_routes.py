from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from api.dependencies import get_recording_storage
from api.schemas import RecordingUploadResponse
from integrations.recordings import RecordingStorage, RecordingTooLargeError

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["recordings"])


@router.post("/recordings", response_model=RecordingUploadResponse)
async def upload_recording(
    call_id: str = Form(...),
    file: UploadFile = File(...),
    storage: RecordingStorage = Depends(get_recording_storage),
) -> RecordingUploadResponse:
    if not (file.content_type or "").startswith("audio/"):
        raise HTTPException(status_code=400, detail="Unsupported audio format.")

    data = await file.read(storage.max_bytes + 1)
    try:
        stored = await asyncio.to_thread(storage.save, call_id, file.filename or "", data)
    except RecordingTooLargeError as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc

    LOGGER.info("Stored recording %s for call %s (%d bytes)", stored.filename, call_id, stored.size_bytes)
    return RecordingUploadResponse(
        call_id=call_id,
        filename=stored.filename,
        size_bytes=stored.size_bytes,
    )
