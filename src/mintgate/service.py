"""Mintgate service — unified facade for the minting pipeline.

This is the primary interface for programmatic access to mintgate.
It wires the subsystems together:
- Accounts and credits (register, deposit, balance)
- Document intake (hash, upload attachments, upload + pin package,
  open an authorization request)
- Authorization (owner signature, debit)
- Processing (operator only, parent + attachment artifacts)
- Housekeeping (cancel, expiry sweep, queries, status)

All operations return a ServiceResult. Pipeline errors become
success=False with the error kind attached, so callers can branch on
what went wrong. A request id collision is an internal fault and is
raised instead.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from mintgate import __version__
from mintgate.authorization.notify import Notifier
from mintgate.authorization.registry import AuthorizationRequestRegistry
from mintgate.config import MintgateConfig
from mintgate.content.hasher import ContentHasher
from mintgate.content.package import build_content_package, serialize_package
from mintgate.credits.ledger import CreditLedger
from mintgate.errors import (
    ErrorKind,
    MintgateError,
    RequestExpiredError,
    RequestIdCollisionError,
)
from mintgate.identity.address import normalize_identity
from mintgate.minting.artifact_store import ArtifactStore, InMemoryArtifactStore
from mintgate.minting.chain import ChainArtifactStore
from mintgate.minting.orchestrator import MintingOrchestrator, build_artifact_input
from mintgate.models.document import ParsedDocument, StorageReference
from mintgate.models.request import RequestStatus
from mintgate.persistence.event_log import EventKind, EventLog
from mintgate.retry import create_retry_policy
from mintgate.storage.base import ContentAddressableStore, InMemoryContentStore
from mintgate.storage.pinata import PinataContentStore

logger = logging.getLogger(__name__)

_FINISHED = frozenset({
    RequestStatus.PROCESSED,
    RequestStatus.EXPIRED,
    RequestStatus.CANCELLED,
})


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    data: dict[str, Any] = field(default_factory=dict)


def _failure(error: MintgateError) -> ServiceResult:
    return ServiceResult(success=False, errors=[error.message], error_kind=error.kind)


class MintgateService:
    """Unified minting pipeline facade.

    Usage:
        config = MintgateConfig.from_env()
        service = MintgateService(config)

        service.register_account(owner)
        service.deposit_credits(owner, 10)

        result = service.submit_document(owner, raw_email_bytes)
        request_id = result.data["request_id"]

        # The owner signs request_id in their wallet
        service.authorize_request(request_id, signature, caller=owner)
        service.process_request(request_id, caller=config.operator_address)

    Backends default from configuration: Pinata when credentials are
    set (in-memory otherwise), and on-chain anchoring when an RPC URL
    and private key are set (in-memory otherwise).
    """

    def __init__(
        self,
        config: MintgateConfig,
        ledger: Optional[CreditLedger] = None,
        content_store: Optional[ContentAddressableStore] = None,
        artifact_store: Optional[ArtifactStore] = None,
        event_log: Optional[EventLog] = None,
        notifier: Optional[Notifier] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        errors = config.validate()
        if errors:
            raise ValueError(f"Invalid configuration: {'; '.join(errors)}")
        self._config = config
        self._sleep = sleep
        self._hasher = ContentHasher()
        self._ledger = ledger if ledger is not None else CreditLedger()
        self._event_log = event_log if event_log is not None else EventLog(config.event_log_path)
        self._content_store = content_store or _default_content_store(config)
        self._artifact_store = artifact_store or _default_artifact_store(config)
        self._registry = AuthorizationRequestRegistry(
            self._ledger,
            config.operator_address,
            costs=config.credit_costs,
            notifier=notifier,
            event_log=self._event_log,
            max_attachments=config.max_attachments,
            max_subject_length=config.max_subject_length,
            expiry=config.request_expiry,
        )
        self._orchestrator = MintingOrchestrator(
            self._registry,
            self._artifact_store,
            max_attempts=config.retry_attempts,
            max_delay_seconds=config.retry_max_delay_seconds,
            max_workers=config.attachment_workers,
            sleep=sleep,
        )
        # Parsed documents kept from submission until processed.
        self._documents: Dict[str, Tuple[ParsedDocument, List[StorageReference]]] = {}
        self._documents_lock = threading.Lock()

    @property
    def registry(self) -> AuthorizationRequestRegistry:
        return self._registry

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    # ------------------------------------------------------------------
    # Accounts and credits
    # ------------------------------------------------------------------

    def register_account(
        self,
        identity: str,
        metadata: Optional[dict[str, Any]] = None,
        initial_balance: int = 0,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Open the credit account for an identity."""
        try:
            account_id = self._ledger.register(identity, metadata, initial_balance, now)
            ident = normalize_identity(identity)
        except MintgateError as e:
            return _failure(e)
        logger.info("Registered account %s for %s", account_id, ident)
        self._record(EventKind.ACCOUNT_REGISTERED, ident, {
            "account_id": account_id,
            "initial_balance": initial_balance,
        }, now)
        return ServiceResult(success=True, data={
            "account_id": account_id,
            "identity": ident,
            "balance": initial_balance,
        })

    def deposit_credits(
        self,
        identity: str,
        amount: int,
        reference: str = "",
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            balance = self._ledger.deposit(identity, amount, reference, now)
            ident = normalize_identity(identity)
        except MintgateError as e:
            return _failure(e)
        self._record(EventKind.CREDITS_DEPOSITED, ident, {
            "amount": amount,
            "balance": balance,
            "reference": reference,
        }, now)
        return ServiceResult(success=True, data={"identity": ident, "balance": balance})

    def get_balance(self, identity: str) -> ServiceResult:
        try:
            balance = self._ledger.get_balance(identity)
            ident = normalize_identity(identity)
        except MintgateError as e:
            return _failure(e)
        return ServiceResult(success=True, data={"identity": ident, "balance": balance})

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------

    def submit_document(
        self,
        owner: str,
        raw: bytes,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Hash, store and open an authorization request for a document.

        Every check create() applies runs before anything is uploaded,
        so a rejected document leaves nothing in the store. Uploads are
        retried on transient storage errors.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        try:
            parsed = self._hasher.hash_document(raw)
            ident = normalize_identity(owner)
            self._registry.check_admission(ident, parsed.digest, parsed.attachment_count)

            attachment_refs = [self._upload(part.content) for part in parsed.attachments]
            package = build_content_package(parsed, attachment_refs, now)
            ref = self._upload(serialize_package(package))
            self._pin(ref.content_id)
            self._record(EventKind.DOCUMENT_UPLOADED, ident, {
                "content_id": ref.content_id,
                "byte_size": ref.byte_size,
                "full_hash": parsed.digest.full_hash,
                "package_hash": package["verification"]["packageHash"],
            }, now)

            request = self._registry.create(
                ident,
                parsed.digest,
                parsed.attachment_count,
                storage_ref=ref,
                subject=parsed.subject,
                sender=parsed.sender,
                now=now,
            )
        except RequestIdCollisionError:
            raise
        except MintgateError as e:
            return _failure(e)

        with self._documents_lock:
            self._documents[request.request_id] = (parsed, attachment_refs)
        return ServiceResult(success=True, data={
            "request_id": request.request_id,
            "token": request.token,
            "credit_cost": request.credit_cost,
            "expires_utc": request.expires_utc.isoformat(),
            "content_id": ref.content_id,
        })

    def authorize_request(
        self,
        request_id: str,
        signature: str,
        caller: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            record = self._registry.authorize(request_id, signature, caller=caller, now=now)
            balance = self._ledger.get_balance(record.signer)
        except RequestExpiredError as e:
            self._release_document(request_id)
            return _failure(e)
        except MintgateError as e:
            return _failure(e)
        return ServiceResult(success=True, data={
            "request_id": request_id,
            "status": RequestStatus.AUTHORIZED.value,
            "signer": record.signer,
            "balance": balance,
        })

    def process_request(
        self,
        request_id: str,
        caller: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Create the artifacts for an authorized request (operator only)."""
        with self._documents_lock:
            document = self._documents.get(request_id)
        try:
            request = self._registry.get(request_id)
            if document is None:
                return ServiceResult(
                    success=False,
                    errors=[f"No submitted document held for request {request_id}"],
                    error_kind=ErrorKind.VALIDATION,
                )
            parsed, attachment_refs = document
            artifact_input = build_artifact_input(request, parsed, attachment_refs)
            result = self._orchestrator.process(
                request_id, artifact_input, caller=caller, now=now,
            )
        except MintgateError as e:
            return _failure(e)

        if not result.success:
            return ServiceResult(
                success=False,
                errors=[result.error or "Parent artifact creation failed"],
                error_kind=ErrorKind.ARTIFACT_CREATION,
                data=result.to_dict(),
            )
        self._release_document(request_id)
        return ServiceResult(success=True, data=result.to_dict())

    def cancel_request(
        self,
        request_id: str,
        caller: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            request = self._registry.cancel(request_id, caller=caller, now=now)
        except MintgateError as e:
            return _failure(e)
        self._release_document(request_id)
        return ServiceResult(success=True, data=request.to_dict())

    def expire_requests(
        self,
        request_ids: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        expired = self._registry.expire_sweep(
            list(request_ids) if request_ids is not None else None, now=now,
        )
        self._release_finished_documents()
        return ServiceResult(success=True, data={"expired": expired})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: str) -> ServiceResult:
        try:
            request = self._registry.get(request_id)
        except MintgateError as e:
            return _failure(e)
        return ServiceResult(success=True, data=request.to_dict())

    def list_requests(
        self,
        owner: str,
        status: Optional[RequestStatus] = None,
    ) -> ServiceResult:
        try:
            requests = self._registry.list_by_owner(owner, status)
        except MintgateError as e:
            return _failure(e)
        return ServiceResult(success=True, data={
            "requests": [r.to_dict() for r in requests],
        })

    def status(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Return system-wide status summary."""
        return {
            "version": __version__,
            "operator": self._registry.operator,
            "accounts": self._ledger.account_count,
            "requests": self._registry.stats(now),
            "events": self._event_log.count,
            "held_documents": len(self._documents),
            "backends": {
                "content_store": type(self._content_store).__name__,
                "artifact_store": type(self._artifact_store).__name__,
            },
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _record(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        now: Optional[datetime],
    ) -> None:
        try:
            self._event_log.record(kind, actor_id, payload, now)
        except OSError:
            logger.error("Could not record %s event for %s", kind.value, actor_id, exc_info=True)

    def _release_document(self, request_id: str) -> None:
        with self._documents_lock:
            self._documents.pop(request_id, None)

    def _release_finished_documents(self) -> None:
        """Drop held documents whose request can no longer be processed."""
        with self._documents_lock:
            held = list(self._documents)
        for request_id in held:
            request = self._registry.find(request_id)
            if request is None or request.status in _FINISHED:
                self._release_document(request_id)

    def _upload(self, content: bytes) -> StorageReference:
        for attempt in self._policy():
            with attempt:
                ref = self._content_store.upload(content)
        return ref

    def _pin(self, content_id: str) -> None:
        for attempt in self._policy():
            with attempt:
                self._content_store.pin(content_id)

    def _policy(self):
        return create_retry_policy(
            max_attempts=self._config.retry_attempts,
            max_delay_seconds=self._config.retry_max_delay_seconds,
            sleep=self._sleep,
        )


def _default_content_store(config: MintgateConfig) -> ContentAddressableStore:
    if config.has_pinata_credentials:
        return PinataContentStore(
            config.pinata_api_key,
            config.pinata_secret_key,
            base_url=config.pinata_base_url,
        )
    return InMemoryContentStore()


def _default_artifact_store(config: MintgateConfig) -> ArtifactStore:
    if config.has_chain_credentials:
        return ChainArtifactStore.connect(config.rpc_url, config.private_key, config.chain_id)
    return InMemoryArtifactStore()
