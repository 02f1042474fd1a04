"""Shared fixtures: seeded corpus databases and a fake content store."""

from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass, field
from typing import Callable

import httpx
import pytest

from glossexport.db.connection import get_connection, init_db
from glossexport.sync.client import SyncClient

REPO = "acme/glosses"
TOKEN = "ghp_" + "x" * 36
CONTENTS_PREFIX = f"/repos/{REPO}/contents"
BLOBS_PREFIX = f"/repos/{REPO}/git/blobs/"


class Corpus:
    """Small helper for seeding corpus rows in tests."""

    def __init__(self, conn):
        self.conn = conn
        self._verse_words: dict[str, int] = {}

    def language(self, language_id: int, code: str) -> int:
        self.conn.execute(
            "INSERT INTO languages (id, code, name) VALUES (?, ?, ?)",
            (language_id, code, code.upper()),
        )
        return language_id

    def book(self, book_id: int, name: str) -> int:
        self.conn.execute("INSERT INTO books (id, name) VALUES (?, ?)", (book_id, name))
        return book_id

    def verse(self, verse_id: str, book_id: int, chapter: int, number: int) -> str:
        self.conn.execute(
            "INSERT INTO verses (id, book_id, chapter, number) VALUES (?, ?, ?, ?)",
            (verse_id, book_id, chapter, number),
        )
        return verse_id

    def word(self, word_id: str, verse_id: str, position: int) -> str:
        self.conn.execute(
            "INSERT INTO words (id, verse_id, position, text) VALUES (?, ?, ?, ?)",
            (word_id, verse_id, position, f"w{word_id}"),
        )
        return word_id

    def phrase(
        self,
        language_id: int,
        word_ids: list[str],
        gloss: str | None = None,
        state: str = "APPROVED",
        *,
        deleted: bool = False,
        footnote: str | None = None,
        pending: bool = False,
    ) -> int:
        cursor = self.conn.execute(
            "INSERT INTO phrases (language_id, deleted_at) VALUES (?, ?)",
            (language_id, "2024-01-01T00:00:00Z" if deleted else None),
        )
        phrase_id = cursor.lastrowid
        for word_id in word_ids:
            self.conn.execute(
                "INSERT INTO phrase_words (phrase_id, word_id) VALUES (?, ?)",
                (phrase_id, word_id),
            )
        if gloss is not None:
            self.gloss(phrase_id, gloss, state)
        if footnote:
            self.conn.execute(
                "INSERT INTO footnotes (phrase_id, content) VALUES (?, ?)",
                (phrase_id, footnote),
            )
        if pending:
            self.event(phrase_id)
        return phrase_id

    def gloss(self, phrase_id: int, gloss: str, state: str = "APPROVED") -> None:
        self.conn.execute(
            "INSERT INTO glosses (phrase_id, gloss, state) VALUES (?, ?, ?)",
            (phrase_id, gloss, state),
        )

    def event(self, phrase_id: int, sync_state: str = "PENDING") -> int:
        cursor = self.conn.execute(
            "INSERT INTO gloss_events (phrase_id, sync_state) VALUES (?, ?)",
            (phrase_id, sync_state),
        )
        return cursor.lastrowid

    def approve_all(self, phrase_id: int) -> None:
        self.conn.execute(
            "UPDATE glosses SET state = 'APPROVED' WHERE phrase_id = ?", (phrase_id,)
        )

    def commit(self) -> None:
        self.conn.commit()


@pytest.fixture
def conn(tmp_path):
    """Initialized database connection."""
    connection = get_connection(tmp_path / "glosses.db")
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture
def corpus(conn):
    return Corpus(conn)


@pytest.fixture
def en_b1(corpus):
    """Language "en" with book B1: two verses of two words each.

    w1-w3 are glossed and approved; w4 has no gloss. Returns the corpus
    with attribute `ids` describing the seeded rows.
    """
    corpus.language(1, "en")
    corpus.book(1, "B1")
    corpus.verse("v1", 1, 1, 1)
    corpus.verse("v2", 1, 1, 2)
    corpus.word("w1", "v1", 1)
    corpus.word("w2", "v1", 2)
    corpus.word("w3", "v2", 1)
    corpus.word("w4", "v2", 2)
    p1 = corpus.phrase(1, ["w1"], "in the beginning")
    p2 = corpus.phrase(1, ["w2"], "created")
    p3 = corpus.phrase(1, ["w3"], "God")
    corpus.commit()
    corpus.ids = {"language": 1, "book": 1, "phrases": [p1, p2, p3]}
    return corpus


def git_blob_sha(data: bytes) -> str:
    return hashlib.sha1(b"blob %d\0" % len(data) + data).hexdigest()


def _wrapped_base64(data: bytes) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    # GitHub wraps content at 60 columns
    return "\n".join(encoded[i : i + 60] for i in range(0, len(encoded), 60)) + "\n"


@dataclass
class FakeContentStore:
    """In-memory stand-in for the GitHub contents API.

    Files are keyed by repository path. Revision tokens are git blob
    shas, so identical content yields identical tokens.
    Paths in `large_paths` are served the way GitHub serves files over
    1 MB: no inline content, bytes only through the blobs API.
    """

    files: dict[str, bytes] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)
    before_put: Callable[["FakeContentStore", str], None] | None = None
    fail_paths: dict[str, int] = field(default_factory=dict)
    large_paths: set[str] = field(default_factory=set)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.startswith(BLOBS_PREFIX):
            return self._get_blob(request.url.path[len(BLOBS_PREFIX) :])
        path = request.url.path[len(CONTENTS_PREFIX) :].strip("/")

        if path in self.fail_paths:
            return httpx.Response(self.fail_paths[path], json={"message": "boom"})
        if request.method == "GET":
            return self._get(path)
        if request.method == "PUT":
            return self._put(path, json.loads(request.content))
        return httpx.Response(405, json={"message": "Method not allowed"})

    def _get(self, path: str) -> httpx.Response:
        if path in self.files:
            data = self.files[path]
            if path in self.large_paths:
                content, encoding = "", "none"
            else:
                content, encoding = _wrapped_base64(data), "base64"
            return httpx.Response(
                200,
                json={
                    "type": "file",
                    "name": path.rsplit("/", 1)[-1],
                    "path": path,
                    "sha": git_blob_sha(data),
                    "size": len(data),
                    "content": content,
                    "encoding": encoding,
                },
            )

        prefix = f"{path}/" if path else ""
        children = {}
        for stored in self.files:
            if stored.startswith(prefix):
                rest = stored[len(prefix) :]
                name = rest.split("/", 1)[0]
                kind = "dir" if "/" in rest else "file"
                children[name] = kind
        if not children and path:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(
            200,
            json=[
                {"name": name, "path": prefix + name, "sha": "0" * 40, "type": kind}
                for name, kind in sorted(children.items())
            ],
        )

    def _get_blob(self, sha: str) -> httpx.Response:
        for data in self.files.values():
            if git_blob_sha(data) == sha:
                return httpx.Response(
                    200,
                    json={
                        "sha": sha,
                        "size": len(data),
                        "content": _wrapped_base64(data),
                        "encoding": "base64",
                    },
                )
        return httpx.Response(404, json={"message": "Not Found"})

    def _put(self, path: str, body: dict) -> httpx.Response:
        if self.before_put is not None:
            self.before_put(self, path)

        existing = self.files.get(path)
        if existing is not None:
            if "sha" not in body:
                return httpx.Response(
                    422, json={"message": 'Invalid request.\n\n"sha" wasn\'t supplied.'}
                )
            current = git_blob_sha(existing)
            if body["sha"] != current:
                return httpx.Response(
                    409,
                    json={"message": f"{path} does not match {body['sha']}"},
                )
        elif "sha" in body:
            return httpx.Response(409, json={"message": f"{path} does not exist"})

        data = base64.b64decode(body["content"])
        self.files[path] = data
        return httpx.Response(
            201 if existing is None else 200,
            json={
                "content": {"name": path.rsplit("/", 1)[-1], "path": path, "sha": git_blob_sha(data)},
                "commit": {"sha": "c" * 40, "message": body["message"]},
            },
        )

    # Test helpers

    def put_document(self, path: str, document: dict) -> None:
        self.files[path] = json.dumps(document).encode("utf-8")

    def document(self, path: str) -> dict:
        return json.loads(self.files[path])

    @property
    def puts(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "PUT"]


@pytest.fixture
def store():
    return FakeContentStore()


@pytest.fixture
def make_client(store):
    """Factory for SyncClients talking to the fake store."""
    clients = []

    def _make(**kwargs) -> SyncClient:
        options = {"retry_delay": 0.0, "max_attempts": 3}
        options.update(kwargs)
        client = SyncClient(
            token=TOKEN,
            repo=REPO,
            http_client=httpx.Client(transport=httpx.MockTransport(store.handler)),
            **options,
        )
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client._http.close()
