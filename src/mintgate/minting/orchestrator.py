"""Minting orchestrator — turns an AUTHORIZED request into artifacts.

The orchestrator is the ArtifactCreator the registry calls from
process(). It owns the I/O policy:
- The parent artifact is retried with backoff on transient errors.
  If it still fails, the registry reports success=False and the
  request stays AUTHORIZED.
- Attachments run concurrently. Each one is isolated: whatever it
  raises becomes a failed ChildOutcome for that index only.
- A request id already in flight here is rejected, so a second
  concurrent call can never create a second set of artifacts.

The debit happened at authorize; nothing here touches the ledger.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from mintgate.authorization.registry import AuthorizationRequestRegistry
from mintgate.errors import PartialProcessingError, ProcessingInProgressError
from mintgate.minting.artifact_store import ArtifactStore
from mintgate.models.artifact import (
    ArtifactInput,
    AttachmentArtifactInput,
    ChildOutcome,
    ProcessingResult,
)
from mintgate.models.document import ParsedDocument, StorageReference
from mintgate.models.request import AuthorizationRequest
from mintgate.retry import create_retry_policy

logger = logging.getLogger(__name__)


class MintingOrchestrator:
    """Drives registry.process() with real artifact creation.

    Usage:
        orchestrator = MintingOrchestrator(registry, InMemoryArtifactStore())
        result = orchestrator.process(request_id, artifact_input, caller=operator)
        result.child_ids  # e.g. ["artifact_a", None, "artifact_c"]
    """

    def __init__(
        self,
        registry: AuthorizationRequestRegistry,
        artifact_store: ArtifactStore,
        max_attempts: int = 5,
        max_delay_seconds: float = 30.0,
        max_workers: int = 4,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._registry = registry
        self._artifacts = artifact_store
        self._max_attempts = max_attempts
        self._max_delay_seconds = max_delay_seconds
        self._max_workers = max_workers
        self._sleep = sleep
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def process(
        self,
        request_id: str,
        artifact_input: ArtifactInput,
        *,
        caller: str,
        now: Optional[datetime] = None,
    ) -> ProcessingResult:
        """Process one request. Raises ProcessingInProgressError on overlap."""
        with self._lock:
            if request_id in self._in_flight:
                raise ProcessingInProgressError(request_id)
            self._in_flight.add(request_id)
        try:
            return self._registry.process(
                request_id, artifact_input, caller=caller, creator=self, now=now,
            )
        finally:
            with self._lock:
                self._in_flight.discard(request_id)

    def is_in_flight(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._in_flight

    def create_parent(
        self,
        request: AuthorizationRequest,
        artifact_input: ArtifactInput,
    ) -> str:
        for attempt in self._policy():
            with attempt:
                record = self._artifacts.create_parent(request.request_id, artifact_input)
        return record.artifact_id

    def create_children(
        self,
        request: AuthorizationRequest,
        parent_id: str,
        artifact_input: ArtifactInput,
    ) -> List[ChildOutcome]:
        attachments = artifact_input.attachments
        if not attachments:
            return []
        workers = min(self._max_workers, len(attachments))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mintgate-child") as pool:
            futures = [
                pool.submit(self._create_child, parent_id, attachment)
                for attachment in attachments
            ]
            return [f.result() for f in futures]

    def _create_child(
        self,
        parent_id: str,
        attachment: AttachmentArtifactInput,
    ) -> ChildOutcome:
        index = attachment.attachment_index
        try:
            for attempt in self._policy():
                with attempt:
                    record = self._artifacts.create_attachment(parent_id, attachment)
        except Exception as e:
            error = PartialProcessingError(index, str(e) or type(e).__name__)
            return ChildOutcome.failure(index, error.message)
        return ChildOutcome.success(index, record.artifact_id)

    def _policy(self):
        return create_retry_policy(
            max_attempts=self._max_attempts,
            max_delay_seconds=self._max_delay_seconds,
            sleep=self._sleep,
        )


def build_artifact_input(
    request: AuthorizationRequest,
    parsed: ParsedDocument,
    attachment_refs: Optional[Sequence[Optional[StorageReference]]] = None,
) -> ArtifactInput:
    """Assemble the operator's input for a request from its parsed document.

    Raises ValueError if the document is not the one the request was
    created from.
    """
    if parsed.digest.full_hash != request.digest.full_hash:
        raise ValueError(
            f"Document hash {parsed.digest.full_hash} does not match "
            f"request {request.request_id}"
        )
    refs = list(attachment_refs) if attachment_refs is not None else [None] * len(parsed.attachments)
    attachments = tuple(
        AttachmentArtifactInput(
            attachment_index=part.index,
            original_filename=part.filename,
            mime_type=part.content_type,
            file_extension=part.file_extension,
            file_size=part.size,
            content_hash=part.content_hash,
            storage_ref=ref,
        )
        for part, ref in zip(parsed.attachments, refs)
    )
    return ArtifactInput(
        owner=request.owner,
        subject=request.subject,
        sender=parsed.sender,
        message_id=parsed.message_id,
        content_hash=parsed.digest.full_hash,
        body_hash=parsed.digest.body_hash,
        header_set_hash=parsed.digest.header_set_hash,
        storage_ref=request.storage_ref,
        authentication=parsed.authentication,
        attachments=attachments,
    )
