from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from fastapi import APIRouter, File, HTTPException, UploadFile

from utils.stt import transcribe_audio

logger = logging.getLogger(__name__)

router = APIRouter()

AUDIO_SUFFIXES = {".wav", ".webm", ".ogg", ".mp3", ".m4a", ".flac"}


@router.post("/stt")
async def stt_transcribe(audio: UploadFile = File(...)):
    """Transcribe one uploaded recording outside of a review session."""
    if not audio.filename:
        raise HTTPException(status_code=400, detail="Audio file is required")
    suffix = Path(audio.filename).suffix.lower() or ".webm"
    if suffix not in AUDIO_SUFFIXES:
        raise HTTPException(status_code=400, detail=f"Unsupported audio type: {suffix}")
    data = await audio.read()
    if not data:
        raise HTTPException(status_code=400, detail="Audio file is empty")
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp.write(data)
        temp_path = Path(tmp.name)
    try:
        text = await transcribe_audio(temp_path)
    except RuntimeError as exc:
        logger.warning("Transcription of %s failed: %s", audio.filename, exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        temp_path.unlink(missing_ok=True)
    return {"text": text}
