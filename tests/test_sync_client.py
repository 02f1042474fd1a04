"""Tests for the content store client."""

from __future__ import annotations

import base64
import json
import time

import httpx
import pytest

from glossexport.export.document import empty_document
from glossexport.sync.client import (
    API_VERSION,
    ConflictError,
    ConflictExhaustedError,
    RemoteReadError,
    RemoteWriteError,
    SyncClient,
    SyncTimeoutError,
)
from glossexport.sync.models import (
    ContentFile,
    DecodeError,
    decode_document,
    decode_model,
)

from conftest import REPO, TOKEN, git_blob_sha

PATH = "en/glosses.json"


def _book(name: str, gloss: str = "word") -> dict:
    return {
        "name": name,
        "verses": [
            {"id": "v1", "chapter": 1, "verse": 1, "words": [{"id": "w1", "gloss": gloss}]}
        ],
    }


class TestHeaders:
    """Requests carry the store's auth and API headers."""

    def test_headers_sent(self, store, make_client):
        make_client().read("en")

        request = store.requests[0]
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        assert request.headers["Accept"] == "application/vnd.github+json"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-GitHub-Api-Version"] == API_VERSION
        assert request.url.path == f"/repos/{REPO}/contents/{PATH}"

    def test_branch_is_sent_as_ref(self, store, make_client):
        make_client(branch="data").read("en")

        assert store.requests[0].url.params["ref"] == "data"

    def test_base_path_prefixes_document(self, make_client):
        client = make_client(base_path="/exports/")

        assert client.document_path("en") == "exports/en/glosses.json"


class TestRead:
    """Tests for reading documents and revision tokens."""

    def test_missing_document_reads_empty(self, make_client):
        remote = make_client().read("en")

        assert remote.revision is None
        assert not remote.exists
        assert remote.document == empty_document("en")

    def test_existing_document_and_token(self, store, make_client):
        store.put_document(PATH, {"language": "en", "books": {"1": _book("B1")}})

        remote = make_client().read("en")

        assert remote.exists
        assert len(remote.revision) == 40
        assert remote.document["books"]["1"]["name"] == "B1"

    def test_server_error_is_read_error(self, store, make_client):
        store.fail_paths[PATH] = 500

        with pytest.raises(RemoteReadError):
            make_client().read("en")

    def test_wrong_language_in_document_is_decode_error(self, store, make_client):
        store.put_document(PATH, {"language": "fr", "books": {}})

        with pytest.raises(DecodeError):
            make_client().read("en")

    def test_malformed_document_is_decode_error(self, store, make_client):
        store.files[PATH] = b"not json"

        with pytest.raises(DecodeError):
            make_client().read("en")

    def test_transport_error_is_read_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = SyncClient(
            token=TOKEN,
            repo=REPO,
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        with pytest.raises(RemoteReadError):
            client.read("en")

    def test_null_error_message_is_read_error(self):
        def handler(request):
            return httpx.Response(500, json={"message": None})

        client = SyncClient(
            token=TOKEN,
            repo=REPO,
            http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        with pytest.raises(RemoteReadError):
            client.read("en")

    def test_expired_deadline_raises_timeout(self, store, make_client):
        with pytest.raises(SyncTimeoutError):
            make_client().read("en", deadline=time.monotonic() - 1)
        assert store.requests == []


class TestLargeFiles:
    """Files over 1 MB come without inline content and are read as blobs."""

    def test_read_falls_back_to_blob(self, store, make_client):
        store.put_document(PATH, {"language": "en", "books": {"1": _book("B1")}})
        store.large_paths.add(PATH)

        remote = make_client().read("en")

        assert remote.document["books"]["1"] == _book("B1")
        assert remote.revision == git_blob_sha(store.files[PATH])
        assert store.requests[1].url.path == f"/repos/{REPO}/git/blobs/{remote.revision}"

    def test_sync_updates_large_document(self, store, make_client):
        store.put_document(PATH, {"language": "en", "books": {"1": _book("B1")}})
        store.large_paths.add(PATH)

        result = make_client().sync_books("en", {"2": _book("B2")})

        assert result.written
        assert result.attempts == 1
        assert set(store.document(PATH)["books"]) == {"1", "2"}

    def test_missing_blob_is_read_error(self, store, make_client):
        store.put_document(PATH, {"language": "en", "books": {}})
        store.large_paths.add(PATH)
        store._get_blob = lambda sha: httpx.Response(404, json={"message": "Not Found"})

        with pytest.raises(RemoteReadError, match="blob"):
            make_client().read("en")


class TestWrite:
    """Tests for conditional writes."""

    def test_create_then_update(self, store, make_client):
        client = make_client()
        document = {"language": "en", "books": {"1": _book("B1")}}

        first = client.write("en", document, None)
        document["books"]["2"] = _book("B2")
        second = client.write("en", document, first)

        assert first != second
        assert set(store.document(PATH)["books"]) == {"1", "2"}

    def test_stale_token_is_conflict(self, store, make_client):
        store.put_document(PATH, {"language": "en", "books": {}})

        with pytest.raises(ConflictError):
            make_client().write("en", empty_document("en"), "f" * 40)

    def test_missing_token_for_existing_document_is_conflict(self, store, make_client):
        store.put_document(PATH, {"language": "en", "books": {}})

        with pytest.raises(ConflictError):
            make_client().write("en", empty_document("en"), None)

    def test_other_rejection_is_write_error(self, store, make_client):
        store.fail_paths[PATH] = 403

        with pytest.raises(RemoteWriteError):
            make_client().write("en", empty_document("en"), None)

    def test_content_is_base64_json(self, store, make_client):
        make_client(branch="data").write("en", empty_document("en"), None, message="hi")

        body = json.loads(store.puts[0].content)
        assert body["message"] == "hi"
        assert body["branch"] == "data"
        assert "sha" not in body
        assert json.loads(base64.b64decode(body["content"])) == empty_document("en")


class TestSyncBooks:
    """Tests for the read-merge-write loop."""

    def test_creates_document(self, store, make_client):
        result = make_client().sync_books("en", {"1": _book("B1")})

        assert result.written
        assert result.attempts == 1
        assert store.document(PATH)["books"]["1"] == _book("B1")

    def test_round_trip_matches_input(self, make_client):
        client = make_client()
        books = {"1": _book("B1", "in the beginning")}

        client.sync_books("en", books)
        remote = client.read("en")

        assert remote.document["books"] == books

    def test_unchanged_document_is_not_rewritten(self, store, make_client):
        client = make_client()
        client.sync_books("en", {"1": _book("B1")})

        result = client.sync_books("en", {"1": _book("B1")})

        assert not result.written
        assert len(store.puts) == 1

    def test_conflict_retries_and_keeps_concurrent_books(self, store, make_client):
        store.put_document(PATH, {"language": "en", "books": {"1": _book("B1")}})
        calls = []

        def concurrent_writer(fake, path):
            # Another writer adds book 2 just before our first PUT lands
            if not calls:
                document = fake.document(path)
                document["books"]["2"] = _book("B2")
                fake.put_document(path, document)
            calls.append(path)

        store.before_put = concurrent_writer

        result = make_client().sync_books("en", {"3": _book("B3")})

        assert result.written
        assert result.attempts == 2
        assert set(store.document(PATH)["books"]) == {"1", "2", "3"}

    def test_conflicts_exhaust_attempts(self, store, make_client):
        store.put_document(PATH, {"language": "en", "books": {}})
        counter = iter(range(100))

        def always_conflict(fake, path):
            fake.put_document(path, {"language": "en", "books": {}, "n": next(counter)})

        store.before_put = always_conflict

        with pytest.raises(ConflictExhaustedError) as exc_info:
            make_client(max_attempts=3).sync_books("en", {"1": _book("B1")})

        assert exc_info.value.attempts == 3
        assert len(store.puts) == 3


class TestListLanguageFolders:
    """Tests for directory listing."""

    def test_lists_only_directories(self, store, make_client):
        store.put_document("en/glosses.json", {"language": "en", "books": {}})
        store.put_document("es/glosses.json", {"language": "es", "books": {}})
        store.files["README.md"] = b"readme"

        assert make_client().list_language_folders() == ["en", "es"]

    def test_empty_repository(self, make_client):
        assert make_client().list_language_folders() == []


class TestDecoding:
    """Typed decoding fails closed."""

    def test_content_file_missing_sha(self):
        with pytest.raises(DecodeError):
            decode_model(
                ContentFile,
                {"type": "file", "name": "x", "path": "x", "content": "", "encoding": "base64"},
                "content",
            )

    def test_unsupported_encoding(self):
        content = ContentFile(
            type="file", name="x", path="x", sha="s", content="", encoding="none"
        )

        with pytest.raises(DecodeError):
            content.decoded_bytes()

    def test_books_must_be_mapping(self):
        with pytest.raises(DecodeError):
            decode_document(b'{"language": "en", "books": []}', "en")
