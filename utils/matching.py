from typing import Iterable, Optional

from Levenshtein import ratio as lev_ratio

from config import load_config
from models.deck import Deck

DEFAULT_DECK_NAME_THRESHOLD = 0.85


def resolve_deck(decks: Iterable[Deck], spoken_name: str, threshold: Optional[float] = None) -> Optional[Deck]:
    """Find the deck a (possibly mis-transcribed) spoken name refers to."""
    wanted = (spoken_name or "").strip().lower()
    if not wanted:
        return None
    decks = list(decks)
    for deck in decks:
        if deck.name.lower() == wanted:
            return deck
    if threshold is None:
        threshold = load_config()["matching"].get("deck_name_threshold", DEFAULT_DECK_NAME_THRESHOLD)
    best: Optional[Deck] = None
    best_score = 0.0
    for deck in decks:
        score = lev_ratio(deck.name.lower(), wanted)
        if score > best_score:
            best, best_score = deck, score
    if best is not None and best_score >= threshold:
        return best
    return None
