"""Completion detection.

A (language, book) pair is complete when every word of every verse in the
book is covered by a non-deleted phrase of that language carrying an
approved gloss. A single uncovered or unapproved word disqualifies the
whole pair.

Books without any words never appear in the result: coverage is computed
over the word rows, so an empty book contributes no group to qualify.
"""

from __future__ import annotations

import logging
import sqlite3

from glossexport.export import BookKey

logger = logging.getLogger(__name__)

APPROVED = "APPROVED"

# One row per (language, word): 1 when an approved, live phrase covers it
WORD_COVERAGE_CTE = """
WITH word_coverage AS (
    SELECT
        l.id AS language_id,
        v.book_id AS book_id,
        EXISTS (
            SELECT 1
            FROM phrase_words AS phw
            JOIN phrases AS ph ON ph.id = phw.phrase_id
            JOIN glosses AS g ON g.phrase_id = ph.id
            WHERE phw.word_id = w.id
              AND ph.language_id = l.id
              AND ph.deleted_at IS NULL
              AND g.state = ?
        ) AS covered
    FROM languages AS l
    CROSS JOIN words AS w
    JOIN verses AS v ON v.id = w.verse_id
)
"""

COMPLETED_BOOKS_SQL = (
    WORD_COVERAGE_CTE
    + """
SELECT language_id, book_id
FROM word_coverage
GROUP BY language_id, book_id
HAVING MIN(covered) = 1
ORDER BY language_id, book_id
"""
)

BOOK_PROGRESS_SQL = (
    WORD_COVERAGE_CTE
    + """
SELECT language_id, book_id, SUM(covered) AS approved_count, COUNT(*) AS word_count
FROM word_coverage
GROUP BY language_id, book_id
ORDER BY language_id, book_id
"""
)


class CompletionDetector:
    """Classifies every (language, book) pair as complete or not.

    Usage:
        detector = CompletionDetector(conn)
        complete = detector.detect()
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def detect(self) -> set[BookKey]:
        """Return every complete (language, book) pair in the corpus.

        Raises:
            sqlite3.Error: On any query failure (fatal for the run)
        """
        rows = self._conn.execute(COMPLETED_BOOKS_SQL, (APPROVED,)).fetchall()
        complete = {BookKey(row["language_id"], row["book_id"]) for row in rows}
        logger.debug("Found %d complete (language, book) pairs", len(complete))
        return complete

    def progress(self) -> list[dict]:
        """Per-pair approved/total word counts, for status reporting."""
        rows = self._conn.execute(BOOK_PROGRESS_SQL, (APPROVED,)).fetchall()
        return [
            {
                "language_id": row["language_id"],
                "book_id": row["book_id"],
                "approved_count": row["approved_count"],
                "word_count": row["word_count"],
            }
            for row in rows
        ]
