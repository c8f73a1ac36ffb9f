from pydantic import BaseModel, Field
from typing import Optional
from datetime import date
from enum import Enum

class CardState(str, Enum):
    NEW = "NEW"
    LEARNING = "LEARNING"
    REVIEW = "REVIEW"
    RELEARNING = "RELEARNING"

class CardBase(BaseModel):
    deck_id: int
    question: str
    answer: str
    explanation: Optional[str] = None

class CardCreate(CardBase):
    difficulty: float = Field(default=3.0, ge=1, le=10)

class Card(CardBase):
    id: int
    due_date: date
    stability: float = 0.0
    difficulty: float = 3.0
    lapses: int = 0
    reps: int = 0
    state: CardState = CardState.NEW

    class Config:
        from_attributes = True
