"""Demo corpus for offline runs and CLI smoke testing.

English has 1 Thessalonians 5:16-17 fully approved with pending changes,
and John 11:35 with one unapproved gloss. Spanish has a single draft gloss.
"""

import sqlite3
import unicodedata

# (id, code, name)
DEMO_LANGUAGES = [
    (1, "eng", "English"),
    (2, "spa", "Spanish"),
]

# (id, name)
DEMO_BOOKS = [
    (43, "John"),
    (52, "1 Thessalonians"),
]

# (id, book_id, chapter, number)
DEMO_VERSES = [
    ("43011035", 43, 11, 35),
    ("52005016", 52, 5, 16),
    ("52005017", 52, 5, 17),
]

# (id, verse_id, position, text)
DEMO_WORDS = [
    ("4301103501", "43011035", 1, "ἐδάκρυσεν"),
    ("4301103502", "43011035", 2, "ὁ"),
    ("4301103503", "43011035", 3, "Ἰησοῦς"),
    ("5200501601", "52005016", 1, "Πάντοτε"),
    ("5200501602", "52005016", 2, "χαίρετε"),
    ("5200501701", "52005017", 1, "ἀδιαλείπτως"),
    ("5200501702", "52005017", 2, "προσεύχεσθε"),
]

# (phrase_id, language_id, [word ids in association order], gloss, state, footnote)
DEMO_PHRASES = [
    (1, 1, ["5200501601"], "always", "APPROVED", None),
    (2, 1, ["5200501602"], "rejoice", "APPROVED", "Present imperative."),
    (3, 1, ["5200501701"], "without ceasing", "APPROVED", None),
    (4, 1, ["5200501702"], "pray", "APPROVED", None),
    (5, 1, ["4301103501"], "wept", "UNAPPROVED", None),
    (6, 1, ["4301103503", "4301103502"], "Jesus", "APPROVED", None),
    (7, 2, ["5200501601"], "siempre", "UNAPPROVED", None),
]

# Phrases with a pending gloss event
DEMO_PENDING_PHRASES = [2, 4, 6, 7]


def _normalize(text: str) -> str:
    return unicodedata.normalize("NFC", text)


def load_demo_data(conn: sqlite3.Connection) -> None:
    """Load the demo corpus into an initialized database."""
    conn.executemany(
        "INSERT OR REPLACE INTO languages (id, code, name) VALUES (?, ?, ?)",
        DEMO_LANGUAGES,
    )
    conn.executemany("INSERT OR REPLACE INTO books (id, name) VALUES (?, ?)", DEMO_BOOKS)
    conn.executemany(
        "INSERT OR REPLACE INTO verses (id, book_id, chapter, number) VALUES (?, ?, ?, ?)",
        DEMO_VERSES,
    )
    conn.executemany(
        "INSERT OR REPLACE INTO words (id, verse_id, position, text) VALUES (?, ?, ?, ?)",
        [(w[0], w[1], w[2], _normalize(w[3])) for w in DEMO_WORDS],
    )
    load_phrases(conn)
    conn.commit()


def load_phrases(conn: sqlite3.Connection) -> None:
    """Load demo phrases with their glosses, footnotes and pending events."""
    for phrase_id, language_id, word_ids, gloss, state, footnote in DEMO_PHRASES:
        conn.execute(
            "INSERT OR REPLACE INTO phrases (id, language_id) VALUES (?, ?)",
            (phrase_id, language_id),
        )
        conn.executemany(
            "INSERT OR IGNORE INTO phrase_words (phrase_id, word_id) VALUES (?, ?)",
            [(phrase_id, word_id) for word_id in word_ids],
        )
        conn.execute(
            "INSERT INTO glosses (phrase_id, gloss, state) VALUES (?, ?, ?)",
            (phrase_id, gloss, state),
        )
        if footnote:
            conn.execute(
                "INSERT INTO footnotes (phrase_id, content) VALUES (?, ?)",
                (phrase_id, footnote),
            )

    conn.executemany(
        "INSERT INTO gloss_events (phrase_id, sync_state) VALUES (?, 'PENDING')",
        [(phrase_id,) for phrase_id in DEMO_PENDING_PHRASES],
    )
