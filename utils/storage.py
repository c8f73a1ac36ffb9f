from __future__ import annotations

import csv
import io
import logging
from datetime import date
from typing import List, Optional

from models.card import Card, CardState
from models.deck import Deck
from utils.fsrs import day_start

logger = logging.getLogger(__name__)

CARD_COLUMNS = "id, deck_id, question, answer, explanation, due_date, stability, difficulty, lapses, reps, state"


def _card_from_row(row) -> Card:
    return Card.model_validate(dict(row))


def get_decks(conn) -> List[Deck]:
    cursor = conn.cursor()
    cursor.execute("SELECT id, name FROM decks ORDER BY id")
    return [Deck.model_validate(dict(row)) for row in cursor.fetchall()]


def get_deck(conn, deck_id: int) -> Optional[Deck]:
    cursor = conn.cursor()
    cursor.execute("SELECT id, name FROM decks WHERE id = ?", (deck_id,))
    row = cursor.fetchone()
    return Deck.model_validate(dict(row)) if row else None


def create_deck(conn, name: str) -> Deck:
    """Insert a deck, raising ``sqlite3.IntegrityError`` if the name is taken."""
    cursor = conn.cursor()
    cursor.execute("INSERT INTO decks (name) VALUES (?)", (name.strip(),))
    conn.commit()
    return Deck(id=cursor.lastrowid, name=name.strip())


def delete_deck(conn, deck_id: int) -> bool:
    cursor = conn.cursor()
    cursor.execute("DELETE FROM cards WHERE deck_id = ?", (deck_id,))
    cursor.execute("DELETE FROM decks WHERE id = ?", (deck_id,))
    conn.commit()
    return cursor.rowcount > 0


def create_card(
    conn,
    deck_id: int,
    question: str,
    answer: str,
    explanation: Optional[str] = None,
    *,
    difficulty: float = 3.0,
    today: Optional[date] = None,
    commit: bool = True,
) -> Card:
    due = day_start(today or date.today())
    cursor = conn.cursor()
    cursor.execute(
        """
        INSERT INTO cards (deck_id, question, answer, explanation, due_date, difficulty)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (deck_id, question, answer, explanation or None, due.isoformat(), difficulty),
    )
    if commit:
        conn.commit()
    return Card(
        id=cursor.lastrowid,
        deck_id=deck_id,
        question=question,
        answer=answer,
        explanation=explanation or None,
        due_date=due,
        difficulty=difficulty,
        state=CardState.NEW,
    )


def get_card(conn, card_id: int) -> Optional[Card]:
    cursor = conn.cursor()
    cursor.execute(f"SELECT {CARD_COLUMNS} FROM cards WHERE id = ?", (card_id,))
    row = cursor.fetchone()
    return _card_from_row(row) if row else None


def update_card(conn, card: Card) -> bool:
    cursor = conn.cursor()
    cursor.execute(
        """
        UPDATE cards
        SET question = ?, answer = ?, explanation = ?, due_date = ?, stability = ?,
            difficulty = ?, lapses = ?, reps = ?, state = ?
        WHERE id = ?
        """,
        (
            card.question,
            card.answer,
            card.explanation,
            card.due_date.isoformat(),
            card.stability,
            card.difficulty,
            card.lapses,
            card.reps,
            card.state.value,
            card.id,
        ),
    )
    conn.commit()
    return cursor.rowcount > 0


def get_cards_for_deck(conn, deck_id: int) -> List[Card]:
    cursor = conn.cursor()
    cursor.execute(
        f"SELECT {CARD_COLUMNS} FROM cards WHERE deck_id = ? ORDER BY id",
        (deck_id,),
    )
    return [_card_from_row(row) for row in cursor.fetchall()]


def get_due_cards_for_deck(conn, deck_id: int, today: Optional[date] = None) -> List[Card]:
    """Cards of the deck due on or before today, oldest due date first."""
    today = day_start(today or date.today())
    cursor = conn.cursor()
    cursor.execute(
        f"""
        SELECT {CARD_COLUMNS} FROM cards
        WHERE deck_id = ? AND due_date <= ?
        ORDER BY due_date ASC, id ASC
        """,
        (deck_id, today.isoformat()),
    )
    return [_card_from_row(row) for row in cursor.fetchall()]


def get_weakest_card(conn, deck_id: int) -> Optional[Card]:
    """Card with the most lapses; fewer reps wins a tie."""
    cursor = conn.cursor()
    cursor.execute(
        f"""
        SELECT {CARD_COLUMNS} FROM cards
        WHERE deck_id = ?
        ORDER BY lapses DESC, reps ASC, id ASC
        LIMIT 1
        """,
        (deck_id,),
    )
    row = cursor.fetchone()
    return _card_from_row(row) if row else None


def find_cards_by_question(conn, deck_id: int, query: str) -> List[Card]:
    """Case-insensitive substring match on the question text."""
    needle = query.strip().lower()
    return [
        card for card in get_cards_for_deck(conn, deck_id)
        if needle in card.question.lower()
    ]


def _split_csv_line(line: str) -> List[str]:
    delimiter = ";" if line.count(";") > line.count(",") else ","
    row = next(csv.reader(io.StringIO(line), delimiter=delimiter, skipinitialspace=True), [])
    return [part.strip().strip('"') for part in row]


def import_deck_from_csv(conn, deck_name: str, csv_content: str, today: Optional[date] = None) -> tuple[Deck, int]:
    """Create a deck from ``question,answer[,explanation]`` lines.

    Lines may use commas or semicolons. Lines without both a question and an
    answer are skipped. Returns the new deck and the number of cards created.
    """
    deck = create_deck(conn, deck_name)
    created = 0
    for index, line in enumerate(csv_content.splitlines(), start=1):
        if not line.strip():
            continue
        parts = _split_csv_line(line)
        if len(parts) < 2 or not parts[0] or not parts[1]:
            logger.warning("Skipping malformed CSV line %d: %s", index, line)
            continue
        explanation = parts[2] if len(parts) > 2 else None
        create_card(conn, deck.id, parts[0], parts[1], explanation, today=today, commit=False)
        created += 1
    conn.commit()
    return deck, created


def get_setting(conn, key: str, default: Optional[str] = None) -> Optional[str]:
    cursor = conn.cursor()
    cursor.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cursor.fetchone()
    return row["value"] if row else default


def set_setting(conn, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT INTO settings (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (key, value),
    )
    conn.commit()


def get_voice_preference(conn) -> Optional[str]:
    return get_setting(conn, "voice")


def set_voice_preference(conn, voice: str) -> None:
    set_setting(conn, "voice", voice)


def get_conversational_mode(conn) -> bool:
    return get_setting(conn, "conversational_mode", "false") == "true"


def set_conversational_mode(conn, enabled: bool) -> None:
    set_setting(conn, "conversational_mode", "true" if enabled else "false")

