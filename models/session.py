from pydantic import BaseModel
from typing import List, Literal, Optional
from enum import Enum

from .card import Card
from .goal import StudyGoal

class SessionState(str, Enum):
    IDLE = "IDLE"
    AWAITING_COMMAND = "AWAITING_COMMAND"
    READING_QUESTION = "READING_QUESTION"
    AWAITING_ANSWER_REVEAL = "AWAITING_ANSWER_REVEAL"
    READING_ANSWER = "READING_ANSWER"
    AWAITING_RATING = "AWAITING_RATING"
    PROCESSING = "PROCESSING"
    CONVERSATION = "CONVERSATION"
    EDITING_CARD = "EDITING_CARD"
    SHOWING_DECKS = "SHOWING_DECKS"
    IMPORTING_DECK = "IMPORTING_DECK"
    SHOWING_CARD_STATS = "SHOWING_CARD_STATS"
    GENERATING_IMAGE = "GENERATING_IMAGE"
    ANALYZING_IMAGE = "ANALYZING_IMAGE"
    TRANSCRIBING_AUDIO = "TRANSCRIBING_AUDIO"
    SMART_GENERATION = "SMART_GENERATION"
    ANALYZING_TEXT = "ANALYZING_TEXT"
    ERROR = "ERROR"

# Views that take over the screen; conversation is not offered from these.
SECONDARY_VIEW_STATES = frozenset({
    SessionState.EDITING_CARD,
    SessionState.SHOWING_DECKS,
    SessionState.IMPORTING_DECK,
    SessionState.SHOWING_CARD_STATS,
    SessionState.GENERATING_IMAGE,
    SessionState.ANALYZING_IMAGE,
    SessionState.TRANSCRIBING_AUDIO,
    SessionState.SMART_GENERATION,
    SessionState.ANALYZING_TEXT,
})

class TranscriptMessage(BaseModel):
    source: Literal["user", "assistant"]
    text: str

class GoalProgress(BaseModel):
    goal: StudyGoal
    progress: int

class SessionSnapshot(BaseModel):
    state: SessionState
    status_text: str
    current_card: Optional[Card] = None
    card_to_edit: Optional[Card] = None
    card_for_stats: Optional[Card] = None
    is_card_flipped: bool = False
    queue_length: int = 0
    session_progress_count: int = 0
    goal_progress: Optional[GoalProgress] = None
    transcripts: List[TranscriptMessage] = []
    card_explanation: Optional[str] = None
    generated_image: Optional[str] = None
    image_to_analyze: Optional[str] = None
    analysis_result: Optional[str] = None
    is_recording: bool = False
    is_transcribing: bool = False
    transcription_result: Optional[str] = None
    text_analysis_result: Optional[str] = None
