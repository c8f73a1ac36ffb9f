"""FSRS-style scheduling for self-graded flashcard reviews.

``compute_next_review`` is pure: it never reads the clock and never mutates
its input. Elapsed time since the last review is not tracked, so every
review is assumed to happen on its due date and retrievability is the
on-time value of the forgetting curve.
"""
import math
from datetime import date, datetime, timedelta
from typing import Union

from models.card import Card, CardState
from models.review import Rating

# FSRS-4.5 default weights.
W = (
    0.89, 1.37, 4.04, 9.48,  # initial stability for AGAIN, HARD, GOOD, EASY
    4.55, 0.48,              # initial difficulty and its slope
    0.9,                     # difficulty change per review
    0.0,
    1.62, 0.1, 0.95,         # success stability growth
    1.95, 0.21, 0.89, 0.04,  # post-lapse stability
    0.2272, 2.99,            # HARD penalty (<1) and EASY bonus (>1)
)

INITIAL_DIFFICULTY = W[4]
INITIAL_DIFFICULTY_SLOPE = W[5]
DIFFICULTY_DELTA = W[6]
HARD_MULTIPLIER = W[15]
EASY_MULTIPLIER = W[16]
TARGET_RETENTION = 0.9
MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0
MIN_STABILITY = 1.0
# Formula input floor for cards that reach review with no stability at all.
STABILITY_EPSILON = 0.1


def initial_stability(rating: Rating) -> float:
    return W[int(rating) - 1]


def clamp_difficulty(value: float) -> float:
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, value))


def day_start(moment: Union[date, datetime]) -> date:
    """Drop the time of day."""
    if isinstance(moment, datetime):
        return moment.date()
    return moment


def add_days(moment: Union[date, datetime], days: float) -> date:
    return day_start(moment) + timedelta(days=round(days))


def retrievability(elapsed_days: float, stability: float) -> float:
    """Recall probability after ``elapsed_days`` for a card of ``stability``."""
    if stability <= 0:
        return TARGET_RETENTION
    return math.exp(math.log(TARGET_RETENTION) * elapsed_days / stability)


def on_time_retrievability(stability: float) -> float:
    return retrievability(stability, stability)


def stability_after_lapse(difficulty: float, stability: float, r: float) -> float:
    return (
        W[11]
        * math.pow(difficulty, -W[12])
        * (math.pow(stability + 1, W[13]) - 1)
        * math.exp((1 - r) * W[14])
    )


def stability_after_success(difficulty: float, stability: float, r: float) -> float:
    """Stability after a GOOD recall. Never below ``stability`` for difficulty <= 10."""
    stability = max(stability, STABILITY_EPSILON)
    growth = (
        math.exp(W[8])
        * (11 - difficulty)
        * math.pow(stability, -W[9])
        * (math.exp((1 - r) * W[10]) - 1)
    )
    return stability * (1 + growth)


def compute_next_review(card: Card, rating: Rating, now: Union[date, datetime]) -> Card:
    """Return a copy of ``card`` rescheduled for ``rating`` given at ``now``."""
    rating = Rating(rating)
    if card.state == CardState.NEW:
        return _schedule_new(card, rating, now)
    r = on_time_retrievability(card.stability)
    if card.state in (CardState.LEARNING, CardState.RELEARNING):
        return _schedule_learning(card, rating, now, r)
    return _schedule_review(card, rating, now, r)


def _schedule_new(card: Card, rating: Rating, now) -> Card:
    stability = initial_stability(rating)
    difficulty = clamp_difficulty(INITIAL_DIFFICULTY - INITIAL_DIFFICULTY_SLOPE * (rating - 3))
    if rating >= Rating.GOOD:
        state = CardState.REVIEW
        due = add_days(now, stability)
    else:
        state = CardState.LEARNING
        due = add_days(now, 1)
    return card.model_copy(update={
        "reps": 1,
        "lapses": 0,
        "stability": stability,
        "difficulty": difficulty,
        "state": state,
        "due_date": due,
    })


def _schedule_learning(card: Card, rating: Rating, now, r: float) -> Card:
    if rating <= Rating.HARD:
        # Not learned yet; try again tomorrow.
        return card.model_copy(update={"due_date": add_days(now, 1)})
    graduated = card.model_copy(update={"state": CardState.REVIEW})
    return _schedule_review(graduated, rating, now, r)


def _schedule_review(card: Card, rating: Rating, now, r: float) -> Card:
    if rating == Rating.AGAIN:
        stability = stability_after_lapse(card.difficulty, card.stability, r)
        return card.model_copy(update={
            "lapses": card.lapses + 1,
            "state": CardState.RELEARNING,
            "stability": max(MIN_STABILITY, stability),
            "due_date": add_days(now, 1),
        })

    difficulty = clamp_difficulty(card.difficulty - DIFFICULTY_DELTA * (rating - 3))
    stability = stability_after_success(difficulty, card.stability, r)
    if rating == Rating.HARD:
        stability *= HARD_MULTIPLIER
    elif rating == Rating.EASY:
        stability *= EASY_MULTIPLIER
    stability = max(MIN_STABILITY, stability)
    return card.model_copy(update={
        "reps": card.reps + 1,
        "difficulty": difficulty,
        "stability": stability,
        "state": CardState.REVIEW,
        "due_date": add_days(now, stability),
    })
