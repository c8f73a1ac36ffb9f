# Demo content inserted the first time the database is created.
import sqlite3

DEMO_DECKS = {
    "World Capitals": [
        ("What is the capital of Japan?", "Tokyo", None, 3),
        ("What is the capital of France?", "Paris", None, 3),
        ("What is the capital of Canada?", "Ottawa", None, 3),
        ("What is the capital of Australia?", "Canberra", None, 3),
        ("What is the capital of Brazil?", "Brasília", None, 3),
    ],
    "Cognitive Biases": [
        (
            "What is Confirmation Bias?",
            "Favoring information that confirms preexisting beliefs.",
            "It is the tendency to search for, interpret, favor, and recall information "
            "that confirms or supports one's preexisting beliefs.",
            5,
        ),
        (
            "What is the Availability Heuristic?",
            "Overestimating the likelihood of events that are more easily recalled.",
            "A mental shortcut that relies on immediate examples that come to mind when "
            "evaluating a specific topic, concept, method or decision.",
            5,
        ),
        (
            "What is the Dunning-Kruger Effect?",
            "When people with low ability at a task overestimate their ability.",
            "People with low ability at a task overestimate their ability, and experts "
            "underestimate their own.",
            5,
        ),
        (
            "What is Survivorship Bias?",
            'Focusing on "survivors" and ignoring failures, leading to skewed conclusions.',
            'The logical error of concentrating on the things that "survived" some process '
            "and overlooking those that did not because of their lack of visibility.",
            5,
        ),
    ],
}

KNOWLEDGE_CHUNKS = [
    "Confirmation Bias is the human tendency to search for, interpret, favor, and recall "
    "information in a way that confirms or supports one's prior beliefs or values. People "
    "display this bias when they gather or remember information selectively, or when they "
    "interpret it in a biased way. For example, a person who believes left-handed people are "
    "more creative may remember many instances of creative left-handed people but forget "
    "examples that do not support this belief. It is a systematic error of inductive reasoning.",
    "The Availability Heuristic is a mental shortcut that relies on immediate examples that "
    "come to a given person's mind when evaluating a specific topic, concept, method, or "
    "decision. If something can be recalled, it must be important, or at least more important "
    "than alternatives which are not as readily recalled. After seeing several news reports "
    "about car thefts, you might judge that vehicle theft is much more common than it is.",
    "The Dunning-Kruger Effect is a cognitive bias in which people with low ability at a task "
    "overestimate their ability. Without the self-awareness of metacognition, people cannot "
    "objectively evaluate their own competence or incompetence. Conversely, highly competent "
    "individuals may underestimate their relative competence.",
    "Survivorship Bias is the logical error of concentrating on the people or things that "
    "survived some process and overlooking those that did not because of their lack of "
    "visibility. During World War II, researchers studied returning bombers to decide where "
    "to add armor; Abraham Wald noted that the planes shot down were missing from the "
    "analysis, so armor belonged where the returning planes were unscathed.",
    "Anchoring Bias is a cognitive bias where an individual depends too heavily on an initial "
    "piece of information offered (the anchor) when making decisions. Once an anchor is set, "
    "other judgments are made by adjusting away from it. The initial price offered for a used "
    "car sets the standard for the rest of the negotiation.",
]

def seed_demo_data(conn: sqlite3.Connection) -> None:
    cursor = conn.cursor()
    for deck_name, cards in DEMO_DECKS.items():
        cursor.execute("INSERT OR IGNORE INTO decks (name) VALUES (?)", (deck_name,))
        deck_id = cursor.execute("SELECT id FROM decks WHERE name = ?", (deck_name,)).fetchone()[0]
        cursor.executemany(
            """
            INSERT INTO cards (deck_id, question, answer, explanation, difficulty)
            VALUES (?, ?, ?, ?, ?)
            """,
            [(deck_id, q, a, e, d) for q, a, e, d in cards],
        )
    cursor.executemany(
        "INSERT INTO knowledge_chunks (text) VALUES (?)",
        [(chunk,) for chunk in KNOWLEDGE_CHUNKS],
    )
