"""Content store client with optimistic concurrency.

The store is a GitHub repository reached through the REST contents API.
Each language has a folder holding one document file; the file's blob sha
is the revision token. Writes carry the sha read before the merge and are
rejected with 409 when someone else wrote in between.

Protocol per language (sync_books):
    read -> merge -> conditional write
    on conflict: wait, re-read, re-merge, retry (bounded by max_attempts)
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from glossexport.export.document import (
    document_hash,
    empty_document,
    merge_books,
    serialize_document,
)
from glossexport.sync.models import (
    Blob,
    ContentFile,
    DecodeError,
    ErrorResponse,
    SyncError,
    WriteResponse,
    decode_document,
    decode_listing,
    decode_model,
)

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
DEFAULT_API_URL = "https://api.github.com"


class RemoteReadError(SyncError):
    """The store could not be read (unreachable or unexpected status)."""

    pass


class RemoteWriteError(SyncError):
    """A write failed for a reason other than a stale revision token."""

    pass


class ConflictError(SyncError):
    """The revision token sent with a write is no longer current."""

    pass


class ConflictExhaustedError(SyncError):
    """Every write attempt for a language hit a conflict."""

    def __init__(self, language_code: str, attempts: int):
        self.language_code = language_code
        self.attempts = attempts
        super().__init__(
            f"Gave up writing {language_code} after {attempts} conflicting attempts"
        )


class SyncTimeoutError(SyncError):
    """The run deadline passed before or during a request."""

    pass


@dataclass
class RemoteDocument:
    """A stored document and its revision token (None when not yet stored)."""

    language_code: str
    document: dict[str, Any]
    revision: str | None

    @property
    def exists(self) -> bool:
        return self.revision is not None


@dataclass
class SyncResult:
    """Outcome of a successful sync_books call."""

    language_code: str
    revision: str | None
    attempts: int
    written: bool
    books: list[str] = field(default_factory=list)


class SyncClient:
    """Reads and conditionally writes per-language documents.

    Usage:
        with SyncClient(token=token, repo="owner/glosses") as client:
            result = client.sync_books("eng", {"52": subtree})
    """

    def __init__(
        self,
        *,
        token: str,
        repo: str,
        api_url: str = DEFAULT_API_URL,
        branch: str | None = None,
        base_path: str = "",
        document_name: str = "glosses.json",
        request_timeout: float = 30.0,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        http_client: httpx.Client | None = None,
    ):
        self._token = token
        self._repo = repo
        self._api_url = api_url.rstrip("/")
        self._branch = branch
        self._base_path = base_path.strip("/")
        self._document_name = document_name
        self._request_timeout = request_timeout
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client()

    @classmethod
    def from_settings(cls, settings, token: str, http_client: httpx.Client | None = None):
        """Create a client from Settings."""
        return cls(
            token=token,
            repo=settings.repo,
            api_url=settings.api_url,
            branch=settings.branch,
            base_path=settings.base_path,
            document_name=settings.document_name,
            request_timeout=settings.request_timeout,
            max_attempts=settings.max_attempts,
            retry_delay=settings.retry_delay,
            http_client=http_client,
        )

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "SyncClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "Content-Type": "application/json",
            "X-GitHub-Api-Version": API_VERSION,
        }

    def document_path(self, language_code: str) -> str:
        parts = [self._base_path, language_code, self._document_name]
        return "/".join(p for p in parts if p)

    def _contents_url(self, path: str) -> str:
        return f"{self._api_url}/repos/{self._repo}/contents/{path}"

    def _timeout(self, deadline: float | None) -> float:
        if deadline is None:
            return self._request_timeout
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise SyncTimeoutError("Run deadline exceeded")
        return min(self._request_timeout, remaining)

    def _send(
        self,
        method: str,
        path: str,
        *,
        deadline: float | None,
        error_cls: type[SyncError],
        url: str | None = None,
        **kwargs,
    ) -> httpx.Response:
        params = None
        if url is None:
            url = self._contents_url(path)
            if self._branch and method == "GET":
                params = {"ref": self._branch}
        try:
            return self._http.request(
                method,
                url,
                headers=self.headers,
                params=params,
                timeout=self._timeout(deadline),
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise SyncTimeoutError(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise error_cls(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _json(response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"{what} response is not JSON: {e}") from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(payload, dict):
            try:
                return decode_model(ErrorResponse, payload, "error response").message
            except DecodeError:
                return response.text[:200]
        return str(payload)[:200]

    # ------------------------------------------------------------------
    # Store operations
    # ------------------------------------------------------------------

    def list_language_folders(self, deadline: float | None = None) -> list[str]:
        """Names of the language folders present in the store."""
        response = self._send(
            "GET", self._base_path, deadline=deadline, error_cls=RemoteReadError
        )
        if response.status_code == 404:
            return []
        if response.status_code != 200:
            raise RemoteReadError(
                f"Listing returned {response.status_code}: {self._error_message(response)}"
            )
        entries = decode_listing(self._json(response, "Listing"))
        return sorted(entry.name for entry in entries if entry.type == "dir")

    def read(self, language_code: str, deadline: float | None = None) -> RemoteDocument:
        """Read a language's document and its revision token.

        A missing document reads as an empty one with revision None.

        Raises:
            RemoteReadError: Store unreachable or unexpected status
            DecodeError: Response or document malformed
            SyncTimeoutError: Deadline passed
        """
        path = self.document_path(language_code)
        response = self._send("GET", path, deadline=deadline, error_cls=RemoteReadError)

        if response.status_code == 404:
            return RemoteDocument(language_code, empty_document(language_code), None)
        if response.status_code != 200:
            raise RemoteReadError(
                f"Reading {path} returned {response.status_code}: "
                f"{self._error_message(response)}"
            )

        payload = self._json(response, f"Read {path}")
        content = decode_model(ContentFile, payload, f"content response for {path}")
        if content.is_inline:
            raw = content.decoded_bytes()
        else:
            logger.debug("%s is too large for inline content, reading blob", path)
            raw = self._read_blob(content.sha, deadline)
        document = decode_document(raw, language_code)
        return RemoteDocument(language_code, document, content.sha)

    def _read_blob(self, sha: str, deadline: float | None) -> bytes:
        """Fetch file bytes through the git blobs API (files up to 100 MB)."""
        path = f"git/blobs/{sha}"
        response = self._send(
            "GET",
            path,
            deadline=deadline,
            error_cls=RemoteReadError,
            url=f"{self._api_url}/repos/{self._repo}/{path}",
        )
        if response.status_code != 200:
            raise RemoteReadError(
                f"Reading blob {sha} returned {response.status_code}: "
                f"{self._error_message(response)}"
            )
        payload = self._json(response, f"Blob {sha}")
        return decode_model(Blob, payload, f"blob {sha}").decoded_bytes()

    def write(
        self,
        language_code: str,
        document: dict[str, Any],
        expected_revision: str | None,
        *,
        message: str | None = None,
        deadline: float | None = None,
    ) -> str:
        """Write a document if the stored revision still matches.

        Args:
            expected_revision: Token from the read this write is based on,
                or None to create the document

        Returns:
            The new revision token

        Raises:
            ConflictError: The stored revision changed since the read
            RemoteWriteError: Any other rejection
            SyncTimeoutError: Deadline passed
        """
        path = self.document_path(language_code)
        body: dict[str, Any] = {
            "message": message or _commit_message(language_code),
            "content": base64.b64encode(serialize_document(document)).decode("ascii"),
        }
        if expected_revision is not None:
            body["sha"] = expected_revision
        if self._branch:
            body["branch"] = self._branch

        response = self._send(
            "PUT", path, deadline=deadline, error_cls=RemoteWriteError, json=body
        )

        if response.status_code in (200, 201):
            payload = self._json(response, f"Write {path}")
            return decode_model(WriteResponse, payload, f"write response for {path}").content.sha

        error = self._error_message(response)
        if response.status_code in (409, 412) or (
            response.status_code == 422 and "sha" in error.lower()
        ):
            raise ConflictError(f"Revision conflict writing {path}: {error}")
        raise RemoteWriteError(f"Writing {path} returned {response.status_code}: {error}")

    def sync_books(
        self,
        language_code: str,
        books: dict[str, dict[str, Any]],
        deadline: float | None = None,
    ) -> SyncResult:
        """Merge book subtrees into a language's document and write it.

        Each attempt re-reads the document so books written by others in
        the meantime are preserved. No write is made when the merge leaves
        the stored document unchanged.

        Raises:
            ConflictExhaustedError: Every attempt conflicted
            RemoteReadError, RemoteWriteError, DecodeError, SyncTimeoutError
        """
        book_ids = sorted(books)
        for attempt in range(1, self._max_attempts + 1):
            current = self.read(language_code, deadline=deadline)
            merged = merge_books(current.document, books)

            if current.exists and serialize_document(merged) == serialize_document(
                current.document
            ):
                logger.info("Document for %s already up to date", language_code)
                return SyncResult(language_code, current.revision, attempt, False, book_ids)

            try:
                revision = self.write(
                    language_code, merged, current.revision, deadline=deadline
                )
            except ConflictError as e:
                logger.warning(
                    "Attempt %d/%d for %s conflicted: %s",
                    attempt,
                    self._max_attempts,
                    language_code,
                    e,
                )
                if attempt < self._max_attempts and self._retry_delay > 0:
                    time.sleep(min(self._retry_delay * attempt, self._timeout(deadline)))
                continue

            logger.info(
                "Wrote %s (%d book(s)) at revision %s, content %s",
                language_code,
                len(book_ids),
                revision,
                document_hash(merged)[:12],
            )
            return SyncResult(language_code, revision, attempt, True, book_ids)

        raise ConflictExhaustedError(language_code, self._max_attempts)


def _commit_message(language_code: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"Update {language_code} glosses at {stamp}"
