"""Typed decoding of content store API payloads.

Every response body goes through a pydantic model. Missing or ill-typed
fields raise DecodeError instead of surfacing as None further down.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class SyncError(Exception):
    """Base class for content store failures."""

    pass


class DecodeError(SyncError):
    """A response or stored document did not have the expected shape."""

    pass


class DirectoryEntry(BaseModel):
    """One entry of a contents API directory listing."""

    model_config = ConfigDict(extra="ignore")

    name: str
    path: str
    sha: str
    type: Literal["file", "dir", "symlink", "submodule"]


class ContentFile(BaseModel):
    """A single file from the contents API."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["file"]
    name: str
    path: str
    sha: str
    content: str
    encoding: str

    @property
    def is_inline(self) -> bool:
        """False for files over 1 MB, whose bytes must be fetched as a blob."""
        return self.encoding != "none"

    def decoded_bytes(self) -> bytes:
        return _decode_base64(self.content, self.encoding, self.path)


class Blob(BaseModel):
    """A git blob, used for files too large to be returned inline."""

    model_config = ConfigDict(extra="ignore")

    sha: str
    content: str
    encoding: str

    def decoded_bytes(self) -> bytes:
        return _decode_base64(self.content, self.encoding, f"blob {self.sha}")


def _decode_base64(content: str, encoding: str, where: str) -> bytes:
    if encoding != "base64":
        raise DecodeError(f"Unsupported content encoding {encoding!r} for {where}")
    try:
        # GitHub wraps base64 content at 60 columns
        return base64.b64decode(content.replace("\n", ""), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 content for {where}: {e}") from e


class CommitContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str
    sha: str


class WriteResponse(BaseModel):
    """Response body of a successful contents PUT."""

    model_config = ConfigDict(extra="ignore")

    content: CommitContent


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str = ""
    documentation_url: str | None = None


class LanguageDocument(BaseModel):
    """Top-level shape of a stored per-language document.

    Book subtrees are validated only as mappings; books this run does not
    touch are carried over exactly as stored.
    """

    model_config = ConfigDict(extra="allow")

    format: int = 1
    language: str
    books: dict[str, dict[str, Any]] = Field(default_factory=dict)


def decode_model(model: type[BaseModel], payload: Any, what: str):
    """Validate payload against model, raising DecodeError on mismatch."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise DecodeError(f"Malformed {what}: {e}") from e


def decode_listing(payload: Any) -> list[DirectoryEntry]:
    if not isinstance(payload, list):
        raise DecodeError(
            f"Malformed directory listing: expected a list, got {type(payload).__name__}"
        )
    return [decode_model(DirectoryEntry, item, "directory entry") for item in payload]


def decode_document(raw: bytes, language_code: str) -> dict[str, Any]:
    """Decode stored document bytes into a validated plain dict.

    Raises:
        DecodeError: If the bytes are not JSON, the shape is wrong, or the
            document belongs to a different language
    """
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Stored document for {language_code} is not JSON: {e}") from e

    document = decode_model(LanguageDocument, payload, f"document for {language_code}")
    if document.language != language_code:
        raise DecodeError(
            f"Stored document language {document.language!r} "
            f"does not match folder {language_code!r}"
        )
    return payload
