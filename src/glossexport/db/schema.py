"""Relational schema for the gloss corpus.

Books, verses and words are shared structure. Phrases, glosses, footnotes
and gloss events are scoped to a language through their phrase.
"""

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS languages (
    id INTEGER PRIMARY KEY,
    code TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS books (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS verses (
    id TEXT PRIMARY KEY,
    book_id INTEGER NOT NULL REFERENCES books(id),
    chapter INTEGER NOT NULL,
    number INTEGER NOT NULL,
    UNIQUE(book_id, chapter, number)
);

CREATE TABLE IF NOT EXISTS words (
    id TEXT PRIMARY KEY,
    verse_id TEXT NOT NULL REFERENCES verses(id),
    position INTEGER NOT NULL,
    text TEXT NOT NULL DEFAULT '',
    UNIQUE(verse_id, position)
);

-- phrases: language-scoped grouping of words sharing one gloss
CREATE TABLE IF NOT EXISTS phrases (
    id INTEGER PRIMARY KEY,
    language_id INTEGER NOT NULL REFERENCES languages(id),
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT
);

-- phrase_words: id order is the order words were added to the phrase
CREATE TABLE IF NOT EXISTS phrase_words (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    phrase_id INTEGER NOT NULL REFERENCES phrases(id) ON DELETE CASCADE,
    word_id TEXT NOT NULL REFERENCES words(id),
    UNIQUE(phrase_id, word_id)
);

CREATE TABLE IF NOT EXISTS glosses (
    id INTEGER PRIMARY KEY,
    phrase_id INTEGER NOT NULL REFERENCES phrases(id) ON DELETE CASCADE,
    gloss TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'UNAPPROVED'
        CHECK (state IN ('APPROVED', 'UNAPPROVED'))
);

CREATE TABLE IF NOT EXISTS footnotes (
    id INTEGER PRIMARY KEY,
    phrase_id INTEGER NOT NULL REFERENCES phrases(id) ON DELETE CASCADE,
    content TEXT NOT NULL
);

-- gloss_events: pending-synchronization markers raised on gloss changes
CREATE TABLE IF NOT EXISTS gloss_events (
    id INTEGER PRIMARY KEY,
    phrase_id INTEGER NOT NULL REFERENCES phrases(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    sync_state TEXT NOT NULL DEFAULT 'PENDING'
        CHECK (sync_state IN ('PENDING', 'SYNCED'))
);

CREATE INDEX IF NOT EXISTS idx_verses_book ON verses(book_id);
CREATE INDEX IF NOT EXISTS idx_words_verse ON words(verse_id);
CREATE INDEX IF NOT EXISTS idx_phrases_language ON phrases(language_id);
CREATE INDEX IF NOT EXISTS idx_phrase_words_word ON phrase_words(word_id);
CREATE INDEX IF NOT EXISTS idx_phrase_words_phrase ON phrase_words(phrase_id);
CREATE INDEX IF NOT EXISTS idx_glosses_phrase ON glosses(phrase_id);
CREATE INDEX IF NOT EXISTS idx_footnotes_phrase ON footnotes(phrase_id);
CREATE INDEX IF NOT EXISTS idx_gloss_events_state ON gloss_events(sync_state);
"""


def init_schema(conn) -> None:
    """Create all tables and record the schema version."""
    conn.executescript(SCHEMA_SQL)
    conn.execute(
        "INSERT OR REPLACE INTO schema_meta (key, value) VALUES (?, ?)",
        ("version", str(SCHEMA_VERSION)),
    )
    conn.commit()


def get_schema_version(conn) -> int | None:
    """Get current schema version, or None if not initialized."""
    try:
        cursor = conn.execute("SELECT value FROM schema_meta WHERE key = 'version'")
        row = cursor.fetchone()
        return int(row[0]) if row else None
    except Exception:
        return None
