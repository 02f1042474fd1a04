"""Export stages: completion detection, change tracking, assembly, building.

Data flows strictly downstream:
    CompletionDetector -> ChangeTracker -> DataAssembler -> DocumentBuilder

Each stage reads from the relational store (or from the previous stage's
output) and holds no state across runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple


class BookKey(NamedTuple):
    """A (language, book) pair."""

    language_id: int
    book_id: int


@dataclass
class IntegrityError(Exception):
    """Assembled gloss data does not agree with the verse/word structure.

    Raised while building a book's document subtree. The language's write
    is skipped for this run; other languages continue.
    """

    language_id: int
    book_id: int
    problems: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        shown = "; ".join(self.problems[:3])
        more = f" (+{len(self.problems) - 3} more)" if len(self.problems) > 3 else ""
        return (
            f"Integrity error in language {self.language_id}, "
            f"book {self.book_id}: {shown}{more}"
        )


__all__ = [
    "BookKey",
    "IntegrityError",
]
