"""Artifact stores — where parent and attachment artifacts are recorded.

The orchestrator talks to an ArtifactStore through two calls, one per
artifact kind. Implementations raise MintgateError subclasses:
NetworkError / StorageUploadError for transient trouble (retried),
ArtifactCreationError for anything that a retry will not fix.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, runtime_checkable
from uuid import uuid4

from mintgate.errors import ArtifactCreationError
from mintgate.models.artifact import (
    ArtifactInput,
    ArtifactRecord,
    AttachmentArtifactInput,
    AttachmentArtifactRecord,
)


@runtime_checkable
class ArtifactStore(Protocol):
    def create_parent(
        self,
        request_id: str,
        artifact_input: ArtifactInput,
    ) -> ArtifactRecord:
        ...

    def create_attachment(
        self,
        parent_id: str,
        attachment: AttachmentArtifactInput,
    ) -> AttachmentArtifactRecord:
        ...


class InMemoryArtifactStore:
    """Thread-safe in-memory artifact records.

    Parent creation is idempotent per request id: a second call for the
    same request returns the record created by the first.
    """

    def __init__(self) -> None:
        self._parents: Dict[str, ArtifactRecord] = {}
        self._parent_by_request: Dict[str, str] = {}
        self._children: Dict[str, AttachmentArtifactRecord] = {}
        self._lock = threading.Lock()

    def create_parent(
        self,
        request_id: str,
        artifact_input: ArtifactInput,
        now: Optional[datetime] = None,
    ) -> ArtifactRecord:
        if not artifact_input.content_hash:
            raise ArtifactCreationError(f"Parent artifact for {request_id} has no content hash")
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            existing = self._parent_by_request.get(request_id)
            if existing is not None:
                return self._parents[existing]
            record = ArtifactRecord(
                artifact_id=f"artifact_{uuid4().hex[:12]}",
                request_id=request_id,
                owner=artifact_input.owner,
                content_hash=artifact_input.content_hash,
                storage_ref=artifact_input.storage_ref,
                created_utc=now,
            )
            self._parents[record.artifact_id] = record
            self._parent_by_request[request_id] = record.artifact_id
            return record

    def create_attachment(
        self,
        parent_id: str,
        attachment: AttachmentArtifactInput,
        now: Optional[datetime] = None,
    ) -> AttachmentArtifactRecord:
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            if parent_id not in self._parents:
                raise ArtifactCreationError(f"Unknown parent artifact: {parent_id}")
            record = AttachmentArtifactRecord(
                artifact_id=f"artifact_{uuid4().hex[:12]}",
                parent_id=parent_id,
                attachment_index=attachment.attachment_index,
                content_hash=attachment.content_hash,
                filename=attachment.original_filename,
                created_utc=now,
            )
            self._children[record.artifact_id] = record
            return record

    def get_parent(self, artifact_id: str) -> Optional[ArtifactRecord]:
        with self._lock:
            return self._parents.get(artifact_id)

    def children_of(self, parent_id: str) -> List[AttachmentArtifactRecord]:
        with self._lock:
            return sorted(
                (c for c in self._children.values() if c.parent_id == parent_id),
                key=lambda c: c.attachment_index,
            )

    @property
    def parent_count(self) -> int:
        with self._lock:
            return len(self._parents)
