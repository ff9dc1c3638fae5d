"""Authorization request registry — the request lifecycle state machine.

Lifecycle:
    create     → PENDING      (owner registered, balance covers cost; no debit)
    authorize  → AUTHORIZED   (owner signature over the request id; debit)
    process    → PROCESSED    (operator only; parent artifact created)
    cancel     → CANCELLED    (owner only, while PENDING)
    expire     → EXPIRED      (PENDING and past expires_utc; lazy)

Every status change is a compare-and-swap in the RequestStore, so two
operations racing on the same request cannot both win. authorize()
holds the per-request lock across its signature check, debit and
transition: the only caller that debits is the caller that transitions.

Credits are spent at authorize. A later processing failure leaves the
request AUTHORIZED and retryable; nothing is refunded.
"""

from __future__ import annotations

import itertools
import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from web3 import Web3

from mintgate.authorization.notify import Notifier, NullNotifier
from mintgate.authorization.store import RequestStore
from mintgate.credits.ledger import CreditLedger
from mintgate.errors import (
    DuplicateKeyError,
    InsufficientCreditsError,
    MintgateError,
    NotRegisteredError,
    RequestExpiredError,
    RequestIdCollisionError,
    RequestNotInExpectedStateError,
    SignatureMismatchError,
    UnauthorizedCallerError,
    ValidationError,
)
from mintgate.identity.address import normalize_identity, same_identity
from mintgate.identity.signature import SignatureVerifier
from mintgate.models.artifact import ArtifactInput, ChildOutcome, ProcessingResult
from mintgate.models.credit import DEFAULT_CREDIT_COSTS, CreditCosts
from mintgate.models.document import DocumentDigest, StorageReference
from mintgate.models.request import (
    REQUEST_EXPIRY,
    AuthorizationRequest,
    RequestEvent,
    RequestStatus,
    SignatureRecord,
)
from mintgate.persistence.event_log import EventKind, EventLog

logger = logging.getLogger(__name__)

MAX_ID_ATTEMPTS = 3
TOKEN_BYTES = 18


@runtime_checkable
class ArtifactCreator(Protocol):
    """Creates the artifact records for an authorized request."""

    def create_parent(
        self,
        request: AuthorizationRequest,
        artifact_input: ArtifactInput,
    ) -> str:
        """Create the parent artifact. Returns its id; raises MintgateError."""
        ...

    def create_children(
        self,
        request: AuthorizationRequest,
        parent_id: str,
        artifact_input: ArtifactInput,
    ) -> List[ChildOutcome]:
        """Attempt every attachment. Never raises for a single attachment."""
        ...


class AuthorizationRequestRegistry:
    """Creates, authorizes, processes and retires authorization requests.

    Usage:
        registry = AuthorizationRequestRegistry(ledger, operator="0xOp...")
        request = registry.create(owner, digest, attachment_count=2)
        registry.authorize(request.request_id, signature, caller=owner)
        result = registry.process(
            request.request_id, artifact_input,
            caller="0xOp...", creator=orchestrator,
        )
    """

    def __init__(
        self,
        ledger: CreditLedger,
        operator: str,
        store: Optional[RequestStore] = None,
        verifier: Optional[SignatureVerifier] = None,
        costs: CreditCosts = DEFAULT_CREDIT_COSTS,
        notifier: Optional[Notifier] = None,
        event_log: Optional[EventLog] = None,
        max_attachments: int = 20,
        max_subject_length: int = 200,
        expiry: timedelta = REQUEST_EXPIRY,
    ) -> None:
        self._ledger = ledger
        self._operator = normalize_identity(operator)
        self._store = store if store is not None else RequestStore()
        self._verifier = verifier or SignatureVerifier()
        self._costs = costs
        self._notifier = notifier or NullNotifier()
        self._event_log = event_log
        self._max_attachments = max_attachments
        self._max_subject_length = max_subject_length
        self._expiry = expiry
        self._counter = itertools.count(1)
        self._counter_lock = threading.Lock()

    @property
    def operator(self) -> str:
        return self._operator

    @property
    def costs(self) -> CreditCosts:
        return self._costs

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(
        self,
        owner: str,
        digest: DocumentDigest,
        attachment_count: int,
        *,
        storage_ref: Optional[StorageReference] = None,
        subject: str = "",
        sender: str = "",
        now: Optional[datetime] = None,
    ) -> AuthorizationRequest:
        """Open a PENDING request. Checks the balance but does not debit.

        Raises:
            NotRegisteredError: Owner has no credit account.
            InsufficientCreditsError: Balance below the request cost.
            ValidationError: Empty full hash or bad attachment count.
            RequestIdCollisionError: Id generation kept colliding.
        """
        ident = normalize_identity(owner)
        if now is None:
            now = datetime.now(timezone.utc)

        cost = self.check_admission(ident, digest, attachment_count)

        for attempt in range(1, MAX_ID_ATTEMPTS + 1):
            request = AuthorizationRequest(
                request_id=self._next_request_id(ident, digest.full_hash, now),
                owner=ident,
                token=secrets.token_urlsafe(TOKEN_BYTES),
                digest=digest,
                attachment_count=attachment_count,
                credit_cost=cost,
                created_utc=now,
                expires_utc=now + self._expiry,
                storage_ref=storage_ref,
                subject=subject[: self._max_subject_length],
                sender=sender,
                status_changed_utc=now,
            )
            try:
                self._store.insert(request)
            except DuplicateKeyError as e:
                logger.warning(
                    "Request key collision (attempt %d/%d): %s",
                    attempt, MAX_ID_ATTEMPTS, e.message,
                )
                continue
            break
        else:
            raise RequestIdCollisionError(
                f"Could not allocate a unique request id after {MAX_ID_ATTEMPTS} attempts"
            )

        logger.info(
            "Created request %s for %s (cost=%d, attachments=%d)",
            request.request_id, ident, cost, attachment_count,
        )
        self._record(EventKind.REQUEST_CREATED, ident, {
            "request_id": request.request_id,
            "credit_cost": cost,
            "attachment_count": attachment_count,
            "full_hash": digest.full_hash,
        }, now)
        self._notify(request, RequestEvent.CREATED)
        return request

    def check_admission(
        self,
        owner: str,
        digest: DocumentDigest,
        attachment_count: int,
    ) -> int:
        """Run the checks create() applies, without creating anything.

        Returns the credit cost. Callers that must do work before
        create(), such as uploading content, run this first.
        """
        ident = normalize_identity(owner)
        self._validate_digest(digest, attachment_count)
        if not self._ledger.is_registered(ident):
            raise NotRegisteredError(f"Identity not registered: {ident}")

        cost = self._costs.cost_for(attachment_count)
        balance = self._ledger.get_balance(ident)
        if balance < cost:
            raise InsufficientCreditsError(ident, cost, balance)
        return cost

    def authorize(
        self,
        request_id: str,
        signature: str,
        *,
        caller: str,
        now: Optional[datetime] = None,
    ) -> SignatureRecord:
        """Verify the owner's signature, debit the cost, mark AUTHORIZED.

        Checks run in order: request exists, caller is the owner, status
        is PENDING, not past expiry, signature valid, debit succeeds. A
        failing check leaves the request and the balance unchanged,
        except that a request found past its expiry is moved to EXPIRED.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        expired: Optional[AuthorizationRequest] = None
        with self._store.locked(request_id) as request:
            if not same_identity(caller, request.owner):
                raise UnauthorizedCallerError(
                    f"Only the owner may authorize request {request_id}"
                )
            self._require_pending(request)

            if request.is_past_expiry(now):
                expired = self._store.compare_and_set(
                    request_id, RequestStatus.PENDING, RequestStatus.EXPIRED, now,
                )
            else:
                if not self._verifier.verify(request_id, signature, request.owner):
                    raise SignatureMismatchError(
                        f"Signature does not match owner of request {request_id}"
                    )
                self._ledger.debit(
                    request.owner, request.credit_cost, reference=request_id, now=now,
                )
                record = SignatureRecord(
                    request_id=request_id,
                    signer=request.owner,
                    signature=signature,
                    verified_utc=now,
                )
                try:
                    updated = self._store.compare_and_set(
                        request_id, RequestStatus.PENDING, RequestStatus.AUTHORIZED,
                        now, signature=record,
                    )
                except RequestNotInExpectedStateError:
                    self._ledger.deposit(
                        request.owner, request.credit_cost,
                        reference=f"reversal:{request_id}", now=now,
                    )
                    raise

        if expired is not None:
            self._after_expiry(expired, now)
            raise RequestExpiredError(request_id)

        logger.info("Authorized request %s (debited %d)", request_id, updated.credit_cost)
        self._record(EventKind.CREDITS_DEBITED, updated.owner, {
            "request_id": request_id,
            "amount": updated.credit_cost,
        }, now)
        self._record(EventKind.REQUEST_AUTHORIZED, updated.owner, {
            "request_id": request_id,
            "signature": signature,
        }, now)
        self._notify(updated, RequestEvent.AUTHORIZED)
        return record

    def process(
        self,
        request_id: str,
        artifact_input: ArtifactInput,
        *,
        caller: str,
        creator: ArtifactCreator,
        now: Optional[datetime] = None,
    ) -> ProcessingResult:
        """Create the artifacts for an AUTHORIZED request.

        Only the configured operator may call this. A parent failure
        returns success=False and leaves the request AUTHORIZED. Once
        the parent exists the request always ends PROCESSED, with a
        None entry in child_ids for every attachment that failed.

        Raises:
            UnauthorizedCallerError: Caller is not the operator.
            RequestNotInExpectedStateError: Request is not AUTHORIZED.
            ProcessingInProgressError: Another call holds the claim.
        """
        if not same_identity(caller, self._operator):
            raise UnauthorizedCallerError("Only the minting operator may process requests")

        request = self._store.get(request_id)
        self._require_status(request, RequestStatus.AUTHORIZED)
        if len(artifact_input.attachments) != request.attachment_count:
            raise ValidationError(
                f"Request {request_id} has {request.attachment_count} attachments, "
                f"artifact input has {len(artifact_input.attachments)}"
            )

        self._store.claim_processing(request_id)
        try:
            request = self._store.get(request_id)
            self._require_status(request, RequestStatus.AUTHORIZED)

            try:
                parent_id = creator.create_parent(request, artifact_input)
            except MintgateError as e:
                logger.error("Parent artifact failed for %s: %s", request_id, e.message)
                return ProcessingResult(
                    success=False,
                    request_id=request_id,
                    status=RequestStatus.AUTHORIZED,
                    error=e.message,
                )

            outcomes = _by_index(
                creator.create_children(request, parent_id, artifact_input),
                request.attachment_count,
            )
            child_ids = [o.artifact_id for o in outcomes]
            failures = [o for o in outcomes if not o.ok]

            if now is None:
                now = datetime.now(timezone.utc)
            updated = self._store.compare_and_set(
                request_id, RequestStatus.AUTHORIZED, RequestStatus.PROCESSED, now,
                parent_artifact_id=parent_id,
                child_artifact_ids=tuple(child_ids),
            )
        finally:
            self._store.release_processing(request_id)

        for failure in failures:
            logger.warning(
                "Attachment %d of %s failed: %s", failure.index, request_id, failure.error,
            )
            self._record(EventKind.ATTACHMENT_FAILED, self._operator, {
                "request_id": request_id,
                "attachment_index": failure.index,
                "error": failure.error,
            }, now)
        logger.info(
            "Processed request %s (parent=%s, children=%d/%d)",
            request_id, parent_id, len(child_ids) - len(failures), len(child_ids),
        )
        self._record(EventKind.REQUEST_PROCESSED, self._operator, {
            "request_id": request_id,
            "parent_artifact_id": parent_id,
            "child_artifact_ids": child_ids,
        }, now)
        self._notify(updated, RequestEvent.PROCESSED)
        return ProcessingResult(
            success=True,
            request_id=request_id,
            status=updated.status,
            parent_artifact_id=parent_id,
            child_ids=child_ids,
            failures=failures,
            credits_consumed=updated.credit_cost,
        )

    def cancel(
        self,
        request_id: str,
        *,
        caller: str,
        now: Optional[datetime] = None,
    ) -> AuthorizationRequest:
        """Withdraw a PENDING request. Owner only."""
        if now is None:
            now = datetime.now(timezone.utc)
        with self._store.locked(request_id) as request:
            if not same_identity(caller, request.owner):
                raise UnauthorizedCallerError(
                    f"Only the owner may cancel request {request_id}"
                )
            self._require_pending(request)
            updated = self._store.compare_and_set(
                request_id, RequestStatus.PENDING, RequestStatus.CANCELLED, now,
            )
        logger.info("Cancelled request %s", request_id)
        self._record(EventKind.REQUEST_CANCELLED, updated.owner, {
            "request_id": request_id,
        }, now)
        self._notify(updated, RequestEvent.CANCELLED)
        return updated

    def expire_sweep(
        self,
        request_ids: Optional[List[str]] = None,
        *,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Move PENDING requests past their expiry to EXPIRED.

        None sweeps every stored request. Unknown ids and requests in
        any other state are skipped. Returns the ids that expired.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if request_ids is None:
            request_ids = [r.request_id for r in self._store.all()]

        expired: List[str] = []
        for request_id in request_ids:
            candidate = self._store.find(request_id)
            if candidate is None:
                logger.debug("Expire sweep skipped unknown request %s", request_id)
                continue
            if candidate.status != RequestStatus.PENDING or not candidate.is_past_expiry(now):
                continue
            with self._store.locked(request_id) as request:
                if request.status != RequestStatus.PENDING:
                    continue
                updated = self._store.compare_and_set(
                    request_id, RequestStatus.PENDING, RequestStatus.EXPIRED, now,
                )
            self._after_expiry(updated, now)
            expired.append(request_id)
        return expired

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> AuthorizationRequest:
        """Raises RequestNotFoundError for an unknown id."""
        return self._store.get(request_id)

    def find(self, request_id: str) -> Optional[AuthorizationRequest]:
        return self._store.find(request_id)

    def get_by_token(self, token: str) -> Optional[AuthorizationRequest]:
        return self._store.get_by_token(token)

    def list_by_owner(
        self,
        owner: str,
        status: Optional[RequestStatus] = None,
    ) -> List[AuthorizationRequest]:
        ident = normalize_identity(owner)
        requests = self._store.list_by_owner(ident)
        if status is not None:
            requests = [r for r in requests if r.status == status]
        return requests

    def is_valid(self, request_id: str, now: Optional[datetime] = None) -> bool:
        """Exists, not EXPIRED or CANCELLED, and not past expiry."""
        if now is None:
            now = datetime.now(timezone.utc)
        request = self._store.find(request_id)
        if request is None:
            return False
        if request.status in (RequestStatus.EXPIRED, RequestStatus.CANCELLED):
            return False
        return not request.is_past_expiry(now)

    def stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        if now is None:
            now = datetime.now(timezone.utc)
        requests = self._store.all()
        by_status = {s.value: 0 for s in RequestStatus}
        for r in requests:
            by_status[r.status.value] += 1
        return {
            "total": len(requests),
            "by_status": by_status,
            "pending_past_expiry": sum(
                1 for r in requests
                if r.status == RequestStatus.PENDING and r.is_past_expiry(now)
            ),
            "processing": sum(1 for r in requests if self._store.is_processing(r.request_id)),
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _next_request_id(self, owner: str, full_hash: str, now: datetime) -> str:
        with self._counter_lock:
            counter = next(self._counter)
        ts_ns = int(now.timestamp() * 1_000_000_000)
        return Web3.to_hex(Web3.keccak(text=f"{owner}|{full_hash}|{ts_ns}|{counter}"))

    def _validate_digest(self, digest: DocumentDigest, attachment_count: int) -> None:
        if not digest.full_hash:
            raise ValidationError("Document full hash is required")
        if isinstance(attachment_count, bool) or not isinstance(attachment_count, int):
            raise ValidationError(f"Attachment count must be an integer, got {attachment_count!r}")
        if attachment_count < 0 or attachment_count > self._max_attachments:
            raise ValidationError(
                f"Attachment count {attachment_count} outside [0, {self._max_attachments}]"
            )
        if attachment_count != len(digest.attachment_hashes):
            raise ValidationError(
                f"Attachment count {attachment_count} does not match "
                f"{len(digest.attachment_hashes)} attachment hashes"
            )

    @staticmethod
    def _require_pending(request: AuthorizationRequest) -> None:
        if request.status == RequestStatus.EXPIRED:
            raise RequestExpiredError(request.request_id)
        AuthorizationRequestRegistry._require_status(request, RequestStatus.PENDING)

    @staticmethod
    def _require_status(request: AuthorizationRequest, expected: RequestStatus) -> None:
        if request.status != expected:
            raise RequestNotInExpectedStateError(
                request.request_id, expected.value, request.status.value,
            )

    def _after_expiry(self, request: AuthorizationRequest, now: datetime) -> None:
        logger.info("Expired request %s", request.request_id)
        self._record(EventKind.REQUEST_EXPIRED, request.owner, {
            "request_id": request.request_id,
        }, now)
        self._notify(request, RequestEvent.EXPIRED)

    def _record(
        self,
        kind: EventKind,
        actor_id: str,
        payload: Dict[str, Any],
        now: datetime,
    ) -> None:
        if self._event_log is None:
            return
        # Runs after the commit, so a failed write is logged rather than raised.
        try:
            self._event_log.record(kind, actor_id, payload, now)
        except OSError:
            logger.error(
                "Could not record %s event for %s", kind.value, payload.get("request_id"),
                exc_info=True,
            )

    def _notify(self, request: AuthorizationRequest, event: RequestEvent) -> None:
        try:
            self._notifier.notify(request.owner, request.request_id, event)
        except Exception:
            logger.warning(
                "Notifier failed for %s (%s)", request.request_id, event.value,
                exc_info=True,
            )


def _by_index(outcomes: List[ChildOutcome], count: int) -> List[ChildOutcome]:
    """One outcome per attachment index, in index order."""
    indexed = {o.index: o for o in outcomes}
    return [
        indexed.get(i) or ChildOutcome.failure(i, "No outcome reported")
        for i in range(count)
    ]
