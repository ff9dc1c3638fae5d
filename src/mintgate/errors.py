"""Error taxonomy — every failure the pipeline can report has a kind.

Components raise these exceptions. The service facade catches them and
returns a ServiceResult carrying the error kind, so callers can branch
on what went wrong without parsing message strings.

Retryable errors (storage, network) are retried with backoff at the
orchestrator boundary. Everything else signals a caller-side
precondition violation and is surfaced immediately.
"""

from __future__ import annotations

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Machine-readable classification of a MintgateError."""
    VALIDATION = "validation"
    ALREADY_REGISTERED = "already_registered"
    NOT_REGISTERED = "not_registered"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    SIGNATURE_MISMATCH = "signature_mismatch"
    UNAUTHORIZED_CALLER = "unauthorized_caller"
    REQUEST_NOT_FOUND = "request_not_found"
    UNEXPECTED_STATE = "unexpected_state"
    REQUEST_EXPIRED = "request_expired"
    PROCESSING_IN_PROGRESS = "processing_in_progress"
    PARTIAL_PROCESSING = "partial_processing"
    STORAGE_UPLOAD = "storage_upload"
    NETWORK = "network"
    ARTIFACT_CREATION = "artifact_creation"
    DUPLICATE_KEY = "duplicate_key"
    INVARIANT_VIOLATION = "invariant_violation"


class MintgateError(Exception):
    """Base class for all pipeline errors."""
    kind: ErrorKind = ErrorKind.VALIDATION
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MintgateError):
    """Malformed document, empty required hash, or oversized field."""
    kind = ErrorKind.VALIDATION


class AlreadyRegisteredError(MintgateError):
    """The identity already owns a credit account."""
    kind = ErrorKind.ALREADY_REGISTERED


class NotRegisteredError(MintgateError):
    """The identity has no credit account."""
    kind = ErrorKind.NOT_REGISTERED


class InsufficientCreditsError(MintgateError):
    """The balance does not cover the requested amount."""
    kind = ErrorKind.INSUFFICIENT_CREDITS

    def __init__(self, identity: str, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient credits for {identity}. "
            f"Required: {required}, available: {available}"
        )
        self.identity = identity
        self.required = required
        self.available = available


class SignatureMismatchError(MintgateError):
    """The signature does not recover to the request owner."""
    kind = ErrorKind.SIGNATURE_MISMATCH


class UnauthorizedCallerError(MintgateError):
    """The caller lacks the capability for this operation."""
    kind = ErrorKind.UNAUTHORIZED_CALLER


class RequestNotFoundError(MintgateError):
    kind = ErrorKind.REQUEST_NOT_FOUND

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Authorization request not found: {request_id}")
        self.request_id = request_id


class RequestNotInExpectedStateError(MintgateError):
    """A transition was attempted from a state that does not allow it.

    Indicates a stale or duplicate operation. Callers should refetch
    the request rather than retry blindly.
    """
    kind = ErrorKind.UNEXPECTED_STATE

    def __init__(
        self,
        request_id: str,
        expected: str,
        actual: str,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message
            or f"Request {request_id} is {actual}, expected {expected}"
        )
        self.request_id = request_id
        self.expected = expected
        self.actual = actual


class RequestExpiredError(RequestNotInExpectedStateError):
    kind = ErrorKind.REQUEST_EXPIRED

    def __init__(self, request_id: str, actual: str = "expired") -> None:
        super().__init__(
            request_id,
            expected="pending",
            actual=actual,
            message=f"Authorization request has expired: {request_id}",
        )


class ProcessingInProgressError(RequestNotInExpectedStateError):
    """Another process() call already holds the claim on this request."""
    kind = ErrorKind.PROCESSING_IN_PROGRESS

    def __init__(self, request_id: str) -> None:
        super().__init__(
            request_id,
            expected="authorized",
            actual="processing",
            message=f"Request {request_id} is already being processed",
        )


class PartialProcessingError(MintgateError):
    """A single attachment artifact could not be created.

    Never fatal. Recorded as a sentinel entry in the ProcessingResult.
    """
    kind = ErrorKind.PARTIAL_PROCESSING

    def __init__(self, attachment_index: int, reason: str) -> None:
        super().__init__(f"Attachment {attachment_index} failed: {reason}")
        self.attachment_index = attachment_index
        self.reason = reason


class StorageUploadError(MintgateError):
    kind = ErrorKind.STORAGE_UPLOAD
    retryable = True


class NetworkError(MintgateError):
    kind = ErrorKind.NETWORK
    retryable = True


class ArtifactCreationError(MintgateError):
    """The artifact store rejected a record for a non-transient reason."""
    kind = ErrorKind.ARTIFACT_CREATION


class DuplicateKeyError(MintgateError):
    """A unique constraint (request id or token) would be violated."""
    kind = ErrorKind.DUPLICATE_KEY


class RequestIdCollisionError(MintgateError):
    """Request id generation kept colliding. Unrecoverable."""
    kind = ErrorKind.INVARIANT_VIOLATION
