from .deck import Deck, DeckCreate
from .card import Card, CardCreate, CardState
from .review import Rating
from .goal import StudyGoal, StudyProgress
from .session import SessionState, TranscriptMessage, SessionSnapshot

__all__ = [
    'Deck', 'DeckCreate', 'Card', 'CardCreate', 'CardState', 'Rating',
    'StudyGoal', 'StudyProgress', 'SessionState', 'TranscriptMessage', 'SessionSnapshot',
]
