"""Data assembly for books selected for export.

For each selected (language, book) pair this gathers:
- the verse/word structure of the book, in reading order
- one PhraseRecord per live phrase touching the book, with its word ids in
  the order they were added to the phrase and its first approved gloss

Phrases without an approved gloss are left out. When a phrase has several
approved glosses the lowest gloss id wins. A phrase spanning two books is
read for each of them, with the words of the other book marked external.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field

from glossexport.export import BookKey
from glossexport.export.completion import APPROVED

logger = logging.getLogger(__name__)

BOOK_SQL = "SELECT id, name FROM books WHERE id = ?"

BOOK_STRUCTURE_SQL = """
SELECT v.id AS verse_id, v.chapter, v.number, w.id AS word_id, w.position
FROM verses AS v
JOIN words AS w ON w.verse_id = v.id
WHERE v.book_id = ?
ORDER BY v.chapter, v.number, w.position
"""

PHRASE_GLOSSES_SQL = """
SELECT
    ph.id AS phrase_id,
    phw.word_id AS word_id,
    pv.book_id AS word_book_id,
    (
        SELECT g.gloss FROM glosses AS g
        WHERE g.phrase_id = ph.id AND g.state = ?
        ORDER BY g.id
        LIMIT 1
    ) AS gloss,
    (
        SELECT f.content FROM footnotes AS f
        WHERE f.phrase_id = ph.id
        ORDER BY f.id
        LIMIT 1
    ) AS footnote
FROM phrases AS ph
JOIN phrase_words AS phw ON phw.phrase_id = ph.id
LEFT JOIN words AS pw ON pw.id = phw.word_id
LEFT JOIN verses AS pv ON pv.id = pw.verse_id
WHERE ph.language_id = ?
  AND ph.deleted_at IS NULL
  AND ph.id IN (
      SELECT phw2.phrase_id
      FROM phrase_words AS phw2
      JOIN words AS w ON w.id = phw2.word_id
      JOIN verses AS v ON v.id = w.verse_id
      WHERE v.book_id = ?
  )
ORDER BY ph.id, phw.id
"""


@dataclass(frozen=True)
class WordSlot:
    """A word's place in the book structure."""

    word_id: str
    position: int


@dataclass(frozen=True)
class VerseSlot:
    """A verse and its words, ordered by position."""

    verse_id: str
    chapter: int
    number: int
    words: tuple[WordSlot, ...]


@dataclass(frozen=True)
class PhraseRecord:
    """Flat phrase-level export record."""

    phrase_id: int
    word_ids: tuple[str, ...]
    """Word ids in phrase association order."""
    gloss: str
    footnote: str | None = None
    external_word_ids: frozenset[str] = frozenset()
    """Words of the phrase that belong to another book."""


@dataclass
class BookFragment:
    """Everything the DocumentBuilder needs for one (language, book) pair."""

    key: BookKey
    book_name: str
    verses: list[VerseSlot] = field(default_factory=list)
    phrases: list[PhraseRecord] = field(default_factory=list)

    @property
    def word_count(self) -> int:
        return sum(len(v.words) for v in self.verses)


class DataAssembler:
    """Reads the structure and phrase glosses for selected books."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def assemble(self, key: BookKey) -> BookFragment:
        """Assemble the fragment for one (language, book) pair.

        Raises:
            sqlite3.Error: On query failure
            LookupError: If the book does not exist
        """
        book = self._conn.execute(BOOK_SQL, (key.book_id,)).fetchone()
        if book is None:
            raise LookupError(f"Book not found: {key.book_id}")

        fragment = BookFragment(
            key=key,
            book_name=book["name"],
            verses=self.read_structure(key.book_id),
            phrases=self.read_phrases(key),
        )
        logger.debug(
            "Assembled language %s book %s: %d verses, %d words, %d phrases",
            key.language_id,
            key.book_id,
            len(fragment.verses),
            fragment.word_count,
            len(fragment.phrases),
        )
        return fragment

    def read_structure(self, book_id: int) -> list[VerseSlot]:
        """Verses ordered by (chapter, verse), words ordered by position."""
        rows = self._conn.execute(BOOK_STRUCTURE_SQL, (book_id,)).fetchall()

        # Rows arrive in reading order; dicts keep insertion order
        verse_groups: dict[str, list[sqlite3.Row]] = {}
        for row in rows:
            if row["verse_id"] not in verse_groups:
                verse_groups[row["verse_id"]] = []
            verse_groups[row["verse_id"]].append(row)

        return [
            VerseSlot(
                verse_id=verse_id,
                chapter=verse_rows[0]["chapter"],
                number=verse_rows[0]["number"],
                words=tuple(
                    WordSlot(word_id=r["word_id"], position=r["position"])
                    for r in verse_rows
                ),
            )
            for verse_id, verse_rows in verse_groups.items()
        ]

    def read_phrases(self, key: BookKey) -> list[PhraseRecord]:
        """Phrase records for the book, ordered by phrase id."""
        rows = self._conn.execute(
            PHRASE_GLOSSES_SQL, (APPROVED, key.language_id, key.book_id)
        ).fetchall()

        phrase_groups: dict[int, list[sqlite3.Row]] = {}
        for row in rows:
            if row["phrase_id"] not in phrase_groups:
                phrase_groups[row["phrase_id"]] = []
            phrase_groups[row["phrase_id"]].append(row)

        records = []
        for phrase_id, phrase_rows in phrase_groups.items():
            gloss = phrase_rows[0]["gloss"]
            if gloss is None:
                continue
            records.append(
                PhraseRecord(
                    phrase_id=phrase_id,
                    word_ids=tuple(r["word_id"] for r in phrase_rows),
                    gloss=gloss,
                    footnote=phrase_rows[0]["footnote"],
                    external_word_ids=frozenset(
                        r["word_id"]
                        for r in phrase_rows
                        if r["word_book_id"] is not None
                        and r["word_book_id"] != key.book_id
                    ),
                )
            )
        return records
