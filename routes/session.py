from __future__ import annotations

import uuid
from pathlib import Path

from fastapi import APIRouter, Body, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from db import database
from models.command import SelectImage
from utils.ollama import IMAGE_SUFFIXES
from utils.session import SessionController

router = APIRouter()


def get_controller(request: Request) -> SessionController:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Session is not running")
    return controller


@router.post("/commands")
async def post_command(payload: dict = Body(...), controller: SessionController = Depends(get_controller)):
    """Accept one command from the conversational agent or the UI."""
    ack = await controller.submit(payload)
    status_code = 200 if ack.result == "OK" else 400
    return JSONResponse(ack.model_dump(), status_code=status_code)


@router.get("")
async def get_session(controller: SessionController = Depends(get_controller)):
    return controller.snapshot().model_dump(mode="json")


@router.post("/image")
async def upload_image(
    image: UploadFile = File(...),
    controller: SessionController = Depends(get_controller),
):
    """Store an uploaded image and select it for analysis."""
    suffix = Path(image.filename or "").suffix.lower()
    if suffix not in IMAGE_SUFFIXES:
        raise HTTPException(status_code=400, detail="Unsupported image type")
    data = await image.read()
    if not data:
        raise HTTPException(status_code=400, detail="Image file is empty")
    upload_dir = database.CONFIG_DIR / "uploads"
    upload_dir.mkdir(parents=True, exist_ok=True)
    path = upload_dir / f"{uuid.uuid4().hex}{suffix}"
    path.write_bytes(data)
    ack = await controller.handle(SelectImage(image_path=str(path)))
    return {"ack": ack.model_dump(), "image_path": str(path)}
