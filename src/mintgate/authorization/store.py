"""Request store — keyed storage for authorization requests.

The store is the single source of truth for request state. It enforces:
- Unique request ids and unique tokens. A token is never reissued,
  even after its request reaches a terminal state.
- Compare-and-swap transitions: a status change only applies if the
  stored record is still in the expected state.
- At most one processing claim per request.

Records are frozen; a transition replaces the stored version. Callers
that need a multi-step check (authorize: signature, debit, transition)
hold the per-request lock from locked() for the whole sequence.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from mintgate.errors import (
    DuplicateKeyError,
    ProcessingInProgressError,
    RequestExpiredError,
    RequestNotFoundError,
    RequestNotInExpectedStateError,
)
from mintgate.models.request import AuthorizationRequest, RequestStatus


class RequestStore:
    """In-memory, thread-safe request store with unique indices."""

    def __init__(self) -> None:
        self._requests: Dict[str, AuthorizationRequest] = {}
        self._by_token: Dict[str, str] = {}
        self._request_locks: Dict[str, threading.Lock] = {}
        self._processing: set[str] = set()
        self._lock = threading.RLock()

    def insert(self, request: AuthorizationRequest) -> None:
        """Add a new request.

        Raises:
            DuplicateKeyError: If the id or the token is already taken.
        """
        with self._lock:
            if request.request_id in self._requests:
                raise DuplicateKeyError(f"Request id already exists: {request.request_id}")
            if request.token in self._by_token:
                raise DuplicateKeyError("Request token already issued")
            self._requests[request.request_id] = request
            self._by_token[request.token] = request.request_id
            self._request_locks[request.request_id] = threading.Lock()

    def get(self, request_id: str) -> AuthorizationRequest:
        with self._lock:
            request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def find(self, request_id: str) -> Optional[AuthorizationRequest]:
        with self._lock:
            return self._requests.get(request_id)

    def get_by_token(self, token: str) -> Optional[AuthorizationRequest]:
        with self._lock:
            request_id = self._by_token.get(token)
            return self._requests.get(request_id) if request_id else None

    def list_by_owner(self, owner: str) -> List[AuthorizationRequest]:
        with self._lock:
            return sorted(
                (r for r in self._requests.values() if r.owner == owner),
                key=lambda r: r.created_utc,
            )

    def all(self) -> List[AuthorizationRequest]:
        with self._lock:
            return list(self._requests.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    @contextmanager
    def locked(self, request_id: str) -> Iterator[AuthorizationRequest]:
        """Hold the per-request lock; yields the current record.

        Raises:
            RequestNotFoundError: If the request does not exist.
        """
        with self._lock:
            lock = self._request_locks.get(request_id)
        if lock is None:
            raise RequestNotFoundError(request_id)
        with lock:
            yield self.get(request_id)

    def compare_and_set(
        self,
        request_id: str,
        expected: RequestStatus,
        target: RequestStatus,
        now: datetime,
        **changes: Any,
    ) -> AuthorizationRequest:
        """Transition expected → target, only if the stored status is expected.

        Returns the new stored version.

        Raises:
            RequestNotFoundError: Unknown id.
            RequestExpiredError: The stored status is EXPIRED.
            RequestNotInExpectedStateError: Any other status mismatch.
        """
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise RequestNotFoundError(request_id)
            if current.status != expected:
                if current.status == RequestStatus.EXPIRED:
                    raise RequestExpiredError(request_id)
                raise RequestNotInExpectedStateError(
                    request_id, expected.value, current.status.value,
                )
            updated = current.transitioned(target, now, **changes)
            self._requests[request_id] = updated
            return updated

    def claim_processing(self, request_id: str) -> None:
        """Mark the request as being processed.

        Raises:
            ProcessingInProgressError: If another caller holds the claim.
        """
        with self._lock:
            if request_id not in self._requests:
                raise RequestNotFoundError(request_id)
            if request_id in self._processing:
                raise ProcessingInProgressError(request_id)
            self._processing.add(request_id)

    def release_processing(self, request_id: str) -> None:
        with self._lock:
            self._processing.discard(request_id)

    def is_processing(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._processing
