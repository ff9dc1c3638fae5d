"""Core data models for mintgate."""

from mintgate.models.artifact import (
    ArtifactInput,
    ArtifactRecord,
    AttachmentArtifactInput,
    AttachmentArtifactRecord,
    ChildOutcome,
    ProcessingResult,
)
from mintgate.models.credit import (
    DEFAULT_CREDIT_COSTS,
    CreditAccount,
    CreditCosts,
    LedgerEntry,
    LedgerEntryKind,
)
from mintgate.models.document import (
    AttachmentPart,
    AuthenticationResult,
    DocumentDigest,
    ParsedDocument,
    StorageReference,
)
from mintgate.models.request import (
    REQUEST_EXPIRY,
    REQUEST_TRANSITIONS,
    AuthorizationRequest,
    RequestEvent,
    RequestStatus,
    SignatureRecord,
)

__all__ = [
    "ArtifactInput",
    "ArtifactRecord",
    "AttachmentArtifactInput",
    "AttachmentArtifactRecord",
    "ChildOutcome",
    "ProcessingResult",
    "DEFAULT_CREDIT_COSTS",
    "CreditAccount",
    "CreditCosts",
    "LedgerEntry",
    "LedgerEntryKind",
    "AttachmentPart",
    "AuthenticationResult",
    "DocumentDigest",
    "ParsedDocument",
    "StorageReference",
    "REQUEST_EXPIRY",
    "REQUEST_TRANSITIONS",
    "AuthorizationRequest",
    "RequestEvent",
    "RequestStatus",
    "SignatureRecord",
]
