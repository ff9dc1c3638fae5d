"""Content-addressable store contract and the in-memory implementation.

The registry and orchestrator never talk to a storage provider directly
— they talk to this interface. Adding a provider means implementing the
Protocol, with zero changes to the request lifecycle.

Contract:
- upload(package) is idempotent. Identical bytes yield the identical
  content id and are stored once.
- Every failure raises StorageUploadError. An implementation must never
  return a placeholder id for content it did not store.
"""

from __future__ import annotations

import hashlib
import threading
from typing import Dict, Protocol, runtime_checkable

from mintgate.errors import StorageUploadError
from mintgate.models.document import StorageReference


@runtime_checkable
class ContentAddressableStore(Protocol):
    """Immutable content storage keyed by content identifier."""

    def upload(self, package: bytes) -> StorageReference:
        """Store bytes and return their reference."""
        ...

    def pin(self, content_id: str) -> None:
        """Protect stored content from eviction."""
        ...


class InMemoryContentStore:
    """Process-local content store. Content id = "sha256:<hex>".

    Usage:
        store = InMemoryContentStore()
        ref = store.upload(b"...")
        store.pin(ref.content_id)
    """

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._pinned: set[str] = set()
        self._lock = threading.Lock()

    def upload(self, package: bytes) -> StorageReference:
        if not isinstance(package, (bytes, bytearray)):
            raise StorageUploadError("Package must be bytes")
        content_id = "sha256:" + hashlib.sha256(package).hexdigest()
        with self._lock:
            if content_id not in self._blobs:
                self._blobs[content_id] = bytes(package)
        return StorageReference(content_id=content_id, byte_size=len(package))

    def pin(self, content_id: str) -> None:
        with self._lock:
            if content_id not in self._blobs:
                raise StorageUploadError(f"Cannot pin unknown content: {content_id}")
            self._pinned.add(content_id)

    def get(self, content_id: str) -> bytes:
        with self._lock:
            blob = self._blobs.get(content_id)
        if blob is None:
            raise KeyError(content_id)
        return blob

    def is_pinned(self, content_id: str) -> bool:
        with self._lock:
            return content_id in self._pinned

    @property
    def object_count(self) -> int:
        with self._lock:
            return len(self._blobs)
