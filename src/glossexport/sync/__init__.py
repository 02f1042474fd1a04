"""Remote content store access.

Provides:
- SyncClient: read / conditional write / bounded read-merge-write retry
- Typed payload decoding (pydantic) that fails closed
- Bearer credential lookup and log scrubbing
"""

from __future__ import annotations

from glossexport.sync.client import (
    ConflictError,
    ConflictExhaustedError,
    RemoteDocument,
    RemoteReadError,
    RemoteWriteError,
    SyncClient,
    SyncResult,
    SyncTimeoutError,
)
from glossexport.sync.models import DecodeError, SyncError

__all__ = [
    "SyncClient",
    "SyncResult",
    "RemoteDocument",
    "SyncError",
    "ConflictError",
    "ConflictExhaustedError",
    "DecodeError",
    "RemoteReadError",
    "RemoteWriteError",
    "SyncTimeoutError",
]
