import logging
import sqlite3

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from db.database import get_db
from models.deck import DeckCreate
from utils import storage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
async def list_decks(conn=Depends(get_db)):
    """List all decks with their card counts."""
    decks = storage.get_decks(conn)
    return [
        {"id": deck.id, "name": deck.name, "card_count": len(storage.get_cards_for_deck(conn, deck.id))}
        for deck in decks
    ]


@router.post("/", status_code=201)
async def create_deck(deck: DeckCreate, conn=Depends(get_db)):
    name = deck.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    try:
        created = storage.create_deck(conn, name)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=400, detail="Deck with this name already exists")
    return created.model_dump()


@router.delete("/{deck_id}")
async def delete_deck(deck_id: int, conn=Depends(get_db)):
    if not storage.delete_deck(conn, deck_id):
        raise HTTPException(status_code=404, detail="Deck not found")
    return {"deleted": deck_id}


@router.get("/{deck_id}/cards")
async def list_cards(deck_id: int, conn=Depends(get_db)):
    if storage.get_deck(conn, deck_id) is None:
        raise HTTPException(status_code=404, detail="Deck not found")
    return [card.model_dump(mode="json") for card in storage.get_cards_for_deck(conn, deck_id)]


@router.post("/import", status_code=201)
async def import_deck(
    name: str = Form(..., description="Deck name"),
    file: UploadFile = File(...),
    conn=Depends(get_db),
):
    """Create a deck from an uploaded .csv or .txt file of question,answer[,explanation] lines."""
    if not name.strip():
        raise HTTPException(status_code=400, detail="Name is required")
    raw = await file.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="File must be UTF-8 text")
    try:
        deck, count = storage.import_deck_from_csv(conn, name.strip(), content)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=400, detail="Deck with this name already exists")
    logger.info("Imported %d cards into deck %r", count, deck.name)
    return {"deck": deck.model_dump(), "imported": count}
