"""Authorization request models — the request record and its lifecycle.

State machine:
    PENDING → AUTHORIZED → PROCESSED
    PENDING → EXPIRED
    PENDING → CANCELLED

Transitions are monotone: nothing returns to PENDING and nothing
leaves PROCESSED, EXPIRED or CANCELLED. Records are frozen; every
transition produces a new version of the record.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from mintgate.models.document import DocumentDigest, StorageReference


REQUEST_EXPIRY = timedelta(hours=24)


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PROCESSED = "processed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


REQUEST_TRANSITIONS: Dict[RequestStatus, frozenset] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.AUTHORIZED,
        RequestStatus.EXPIRED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.AUTHORIZED: frozenset({RequestStatus.PROCESSED}),
    RequestStatus.PROCESSED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({
    RequestStatus.PROCESSED,
    RequestStatus.EXPIRED,
    RequestStatus.CANCELLED,
})


class RequestEvent(str, enum.Enum):
    """Lifecycle events delivered to the notification hook."""
    CREATED = "created"
    AUTHORIZED = "authorized"
    PROCESSED = "processed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SignatureRecord:
    """Proof that the owner consented to minting. Immutable once created."""
    request_id: str
    signer: str
    signature: str
    verified_utc: datetime


@dataclass(frozen=True)
class AuthorizationRequest:
    """A pending intent to mint artifacts from a document.

    credit_cost is fixed at creation and never recomputed.
    """
    request_id: str
    owner: str
    token: str
    digest: DocumentDigest
    attachment_count: int
    credit_cost: int
    created_utc: datetime
    expires_utc: datetime
    status: RequestStatus = RequestStatus.PENDING
    storage_ref: Optional[StorageReference] = None
    subject: str = ""
    sender: str = ""
    signature: Optional[SignatureRecord] = None
    parent_artifact_id: Optional[str] = None
    child_artifact_ids: tuple[Optional[str], ...] = ()
    status_changed_utc: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_past_expiry(self, now: datetime) -> bool:
        return now > self.expires_utc

    def can_transition_to(self, target: RequestStatus) -> bool:
        return target in REQUEST_TRANSITIONS.get(self.status, frozenset())

    def transitioned(
        self,
        target: RequestStatus,
        now: datetime,
        **changes: Any,
    ) -> AuthorizationRequest:
        """Return a new version of this request in the target state.

        Raises ValueError on an illegal transition.
        """
        if not self.can_transition_to(target):
            allowed = REQUEST_TRANSITIONS.get(self.status, frozenset())
            raise ValueError(
                f"Invalid request transition: {self.status.value} → {target.value}. "
                f"Allowed: {', '.join(sorted(s.value for s in allowed)) or 'none'}"
            )
        return replace(self, status=target, status_changed_utc=now, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "owner": self.owner,
            "token": self.token,
            "status": self.status.value,
            "attachment_count": self.attachment_count,
            "credit_cost": self.credit_cost,
            "created_utc": self.created_utc.isoformat(),
            "expires_utc": self.expires_utc.isoformat(),
            "subject": self.subject,
            "sender": self.sender,
            "digest": self.digest.to_dict(),
            "content_id": self.storage_ref.content_id if self.storage_ref else None,
            "parent_artifact_id": self.parent_artifact_id,
            "child_artifact_ids": list(self.child_artifact_ids),
        }
