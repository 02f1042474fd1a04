"""Change tracking and gloss event settlement.

Completeness alone never triggers a write. A complete (language, book)
pair is selected only when at least one PENDING gloss event is attached,
through phrase membership, to a word of that book in that language.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from glossexport.export import BookKey

logger = logging.getLogger(__name__)

PENDING = "PENDING"
SYNCED = "SYNCED"

# Stays under SQLite's host parameter limit
SETTLE_BATCH_SIZE = 500

PENDING_EVENTS_SQL = """
SELECT DISTINCT ge.id AS event_id, ph.language_id AS language_id, v.book_id AS book_id
FROM gloss_events AS ge
JOIN phrases AS ph ON ph.id = ge.phrase_id
JOIN phrase_words AS phw ON phw.phrase_id = ph.id
JOIN words AS w ON w.id = phw.word_id
JOIN verses AS v ON v.id = w.verse_id
WHERE ge.sync_state = ?
ORDER BY ph.language_id, v.book_id, ge.id
"""

SETTLE_EVENTS_SQL = """
UPDATE gloss_events
SET sync_state = ?
WHERE sync_state = ? AND id IN ({placeholders})
"""


@dataclass
class BookChange:
    """A complete book with pending changes, and the events that flagged it."""

    key: BookKey
    event_ids: list[int] = field(default_factory=list)

    @property
    def language_id(self) -> int:
        return self.key.language_id

    @property
    def book_id(self) -> int:
        return self.key.book_id


class ChangeTracker:
    """Narrows complete books to those with unsynced gloss changes."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def pending_events(self) -> dict[BookKey, list[int]]:
        """Map every (language, book) pair to its PENDING event ids."""
        events: dict[BookKey, list[int]] = defaultdict(list)
        for row in self._conn.execute(PENDING_EVENTS_SQL, (PENDING,)):
            # Rows are distinct per book, so a phrase spanning two books flags both
            key = BookKey(row["language_id"], row["book_id"])
            events[key].append(row["event_id"])
        return dict(events)

    def select(self, complete: Iterable[BookKey]) -> list[BookChange]:
        """Return complete pairs that have at least one PENDING event.

        Args:
            complete: Output of CompletionDetector.detect()

        Returns:
            BookChange entries sorted by (language_id, book_id)
        """
        pending = self.pending_events()
        selected = [
            BookChange(key=key, event_ids=pending[key])
            for key in sorted(set(complete))
            if key in pending
        ]
        logger.debug(
            "%d of %d pending pairs are complete", len(selected), len(pending)
        )
        return selected

    def settle(self, event_ids: Iterable[int]) -> int:
        """Mark the given events SYNCED in one transaction.

        Only events still PENDING are touched, so settling twice is harmless.

        Returns:
            Number of events updated
        """
        ids = sorted(set(event_ids))
        updated = 0
        with self._conn:
            for start in range(0, len(ids), SETTLE_BATCH_SIZE):
                batch = ids[start : start + SETTLE_BATCH_SIZE]
                sql = SETTLE_EVENTS_SQL.format(
                    placeholders=", ".join("?" for _ in batch)
                )
                cursor = self._conn.execute(sql, (SYNCED, PENDING, *batch))
                updated += cursor.rowcount
        return updated
