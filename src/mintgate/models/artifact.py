"""Artifact models — parent/child records and processing outcomes.

A parent ArtifactRecord anchors the whole document. Each attachment
gets its own child record, or a sentinel (None) when its creation
failed. A child failure never rolls back the parent or its siblings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from mintgate.models.document import AuthenticationResult, StorageReference
from mintgate.models.request import RequestStatus


@dataclass(frozen=True)
class AttachmentArtifactInput:
    """What the operator needs to mint one attachment artifact."""
    attachment_index: int
    original_filename: str
    mime_type: str
    file_extension: str
    file_size: int
    content_hash: str
    storage_ref: Optional[StorageReference] = None


@dataclass(frozen=True)
class ArtifactInput:
    """What the operator needs to mint the parent artifact."""
    owner: str
    subject: str
    sender: str
    message_id: str
    content_hash: str
    body_hash: str
    header_set_hash: str
    storage_ref: Optional[StorageReference] = None
    authentication: AuthenticationResult = field(default_factory=AuthenticationResult)
    attachments: tuple[AttachmentArtifactInput, ...] = ()


@dataclass(frozen=True)
class ArtifactRecord:
    artifact_id: str
    request_id: str
    owner: str
    content_hash: str
    storage_ref: Optional[StorageReference]
    created_utc: datetime


@dataclass(frozen=True)
class AttachmentArtifactRecord:
    artifact_id: str
    parent_id: str
    attachment_index: int
    content_hash: str
    filename: str
    created_utc: datetime


@dataclass(frozen=True)
class ChildOutcome:
    """Tagged result of one attachment attempt: an id, or an error."""
    index: int
    artifact_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.artifact_id is not None

    @staticmethod
    def success(index: int, artifact_id: str) -> ChildOutcome:
        return ChildOutcome(index=index, artifact_id=artifact_id)

    @staticmethod
    def failure(index: int, error: str) -> ChildOutcome:
        return ChildOutcome(index=index, error=error)


@dataclass(frozen=True)
class ProcessingResult:
    """Outcome of AuthorizationRequestRegistry.process.

    success is True whenever the parent artifact was created, even if
    some attachments failed. child_ids holds one entry per attachment,
    None where that attachment failed.
    """
    success: bool
    request_id: str
    status: RequestStatus
    parent_artifact_id: Optional[str] = None
    child_ids: list[Optional[str]] = field(default_factory=list)
    failures: list[ChildOutcome] = field(default_factory=list)
    credits_consumed: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "request_id": self.request_id,
            "status": self.status.value,
            "parent_artifact_id": self.parent_artifact_id,
            "child_ids": list(self.child_ids),
            "failures": [
                {"index": f.index, "error": f.error} for f in self.failures
            ],
            "credits_consumed": self.credits_consumed,
            "error": self.error,
        }
