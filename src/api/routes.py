"""FastAPI routes for reply audio and the Twilio webhooks."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from api.dependencies import get_orchestrator
from api.twilio_routes import router as twilio_router

LOGGER = logging.getLogger(__name__)

router = APIRouter()
router.include_router(twilio_router)


@router.get("/audio/{blob_id}", name="get_reply_audio")
async def get_reply_audio(
    blob_id: str,
    orchestrator=Depends(get_orchestrator),
) -> Response:
    key = blob_id.removesuffix(".mp3")
    blob = await orchestrator.store.get(key)
    if blob is None:
        LOGGER.warning("Reply audio not found: %s", key)
        raise HTTPException(status_code=404, detail="Audio not found")

    LOGGER.info("Serving reply audio %s (%d bytes)", key, len(blob.audio))
    return Response(content=blob.audio, media_type=blob.media_type)
