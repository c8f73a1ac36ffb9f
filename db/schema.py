# SQL schema for EchoCards database

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Decks
CREATE TABLE IF NOT EXISTS decks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL COLLATE NOCASE
);

-- Cards (with FSRS fields)
CREATE TABLE IF NOT EXISTS cards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    deck_id INTEGER NOT NULL,
    question TEXT NOT NULL,
    answer TEXT NOT NULL,
    explanation TEXT,
    due_date TEXT NOT NULL DEFAULT (date('now', 'localtime')),
    stability REAL NOT NULL DEFAULT 0,
    difficulty REAL NOT NULL DEFAULT 3 CHECK(difficulty BETWEEN 1 AND 10),
    lapses INTEGER NOT NULL DEFAULT 0 CHECK(lapses >= 0),
    reps INTEGER NOT NULL DEFAULT 0 CHECK(reps >= 0),
    state TEXT NOT NULL DEFAULT 'NEW' CHECK(state IN ('NEW', 'LEARNING', 'REVIEW', 'RELEARNING')),
    FOREIGN KEY (deck_id) REFERENCES decks (id) ON DELETE CASCADE
);

-- Single active study goal with its persisted daily counter
CREATE TABLE IF NOT EXISTS study_progress (
    id INTEGER PRIMARY KEY CHECK(id = 1),
    goal_type TEXT NOT NULL CHECK(goal_type IN ('session', 'daily')),
    goal_target INTEGER NOT NULL CHECK(goal_target > 0),
    progress INTEGER NOT NULL DEFAULT 0,
    date TEXT NOT NULL
);

-- User preferences (voice, conversational mode)
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Reference passages used when generating remediation cards
CREATE TABLE IF NOT EXISTS knowledge_chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    text TEXT NOT NULL
);
"""

# Indexes for performance
INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_cards_deck_due ON cards (deck_id, due_date);
CREATE INDEX IF NOT EXISTS idx_cards_deck_lapses ON cards (deck_id, lapses DESC, reps ASC);
"""
