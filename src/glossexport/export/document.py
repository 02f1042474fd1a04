"""Per-language export document building and merging.

Document shape:
    {
      "language": "eng",
      "books": {
        "52": {
          "name": "1 Thessalonians",
          "verses": [
            {"id": "52005016", "chapter": 5, "verse": 16,
             "words": [{"id": "5200501601", "gloss": "always"}, ...]},
            ...
          ]
        }
      }
    }

Words carry "footnote" when their phrase has one and "linkedWords" (the
other words of the phrase, in phrase order, including words of another
book) when the phrase spans more than one word.

Everything here is pure: identical input yields byte-identical output.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
from typing import Any, Iterable

from glossexport.export import IntegrityError
from glossexport.export.assembler import BookFragment, PhraseRecord

logger = logging.getLogger(__name__)

DOCUMENT_FORMAT_VERSION = 1


def empty_document(language_code: str) -> dict[str, Any]:
    """A document with no books, used when the store has none yet."""
    return {
        "format": DOCUMENT_FORMAT_VERSION,
        "language": language_code,
        "books": {},
    }


def book_key(book_id: int) -> str:
    """Document key for a book (JSON object keys are strings)."""
    return str(book_id)


class DocumentBuilder:
    """Builds nested book subtrees from flat phrase records."""

    def build_book(self, fragment: BookFragment) -> dict[str, Any]:
        """Build the Book -> Verse -> Word subtree for one fragment.

        Raises:
            IntegrityError: If a phrase references a word missing from the
                corpus, or a word of the book has no glossed phrase
        """
        problems: list[str] = []
        by_word = self._index_phrases(fragment, problems)

        verses = []
        for verse in fragment.verses:
            words = []
            for slot in verse.words:
                record = by_word.get(slot.word_id)
                if record is None:
                    problems.append(f"word {slot.word_id} has no approved gloss")
                    continue
                words.append(_word_entry(slot.word_id, record))
            verses.append(
                {
                    "id": verse.verse_id,
                    "chapter": verse.chapter,
                    "verse": verse.number,
                    "words": words,
                }
            )

        if problems:
            raise IntegrityError(
                language_id=fragment.key.language_id,
                book_id=fragment.key.book_id,
                problems=problems,
            )

        return {"name": fragment.book_name, "verses": verses}

    def _index_phrases(
        self, fragment: BookFragment, problems: list[str]
    ) -> dict[str, PhraseRecord]:
        known = {slot.word_id for verse in fragment.verses for slot in verse.words}
        by_word: dict[str, PhraseRecord] = {}
        for record in sorted(fragment.phrases, key=lambda r: r.phrase_id):
            for word_id in record.word_ids:
                if word_id in record.external_word_ids:
                    # Glossed in the other book's subtree
                    continue
                if word_id not in known:
                    problems.append(
                        f"phrase {record.phrase_id} references unknown word {word_id}"
                    )
                elif word_id in by_word:
                    logger.debug(
                        "Word %s already glossed by phrase %s, ignoring phrase %s",
                        word_id,
                        by_word[word_id].phrase_id,
                        record.phrase_id,
                    )
                else:
                    by_word[word_id] = record
        return by_word

    def build_books(self, fragments: Iterable[BookFragment]) -> dict[str, Any]:
        """Build subtrees for several fragments, keyed by book."""
        return {
            book_key(fragment.key.book_id): self.build_book(fragment)
            for fragment in fragments
        }


def _word_entry(word_id: str, record: PhraseRecord) -> dict[str, Any]:
    entry: dict[str, Any] = {"id": word_id, "gloss": record.gloss}
    if record.footnote:
        entry["footnote"] = record.footnote
    if len(record.word_ids) > 1:
        entry["linkedWords"] = [w for w in record.word_ids if w != word_id]
    return entry


def merge_books(
    document: dict[str, Any], books: dict[str, dict[str, Any]]
) -> dict[str, Any]:
    """Return a copy of document with each given book replaced wholesale.

    Books not in `books` are carried over untouched.
    """
    merged = copy.deepcopy(document)
    merged.setdefault("books", {})
    for key, subtree in books.items():
        merged["books"][key] = copy.deepcopy(subtree)
    return merged


def serialize_document(document: dict[str, Any]) -> bytes:
    """Serialize a document to canonical bytes.

    Sorted keys, 2-space indentation, UTF-8 without ASCII escapes and a
    trailing newline, so diffs in the content store stay readable.
    """
    text = json.dumps(document, sort_keys=True, indent=2, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


def document_hash(document: dict[str, Any]) -> str:
    """SHA256 of the canonical serialization."""
    return hashlib.sha256(serialize_document(document)).hexdigest()
