"""Tests for the authorization request registry — lifecycle invariants."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from mintgate.authorization import (
    AuthorizationRequestRegistry,
    CallbackNotifier,
    RequestStore,
)
from mintgate.credits import CreditLedger
from mintgate.errors import (
    InsufficientCreditsError,
    NotRegisteredError,
    ProcessingInProgressError,
    RequestExpiredError,
    RequestIdCollisionError,
    RequestNotFoundError,
    RequestNotInExpectedStateError,
    SignatureMismatchError,
    StorageUploadError,
    UnauthorizedCallerError,
    ValidationError,
)
from mintgate.identity import sign_request
from mintgate.models import (
    ArtifactInput,
    AttachmentArtifactInput,
    ChildOutcome,
    DocumentDigest,
    RequestEvent,
    RequestStatus,
)
from mintgate.persistence import EventKind, EventLog


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _digest(attachments: int = 2, full_hash: str = "f" * 64) -> DocumentDigest:
    return DocumentDigest(
        body_hash="b" * 64,
        full_hash=full_hash,
        header_set_hash="c" * 64,
        attachment_hashes=tuple(f"{i:064x}" for i in range(attachments)),
    )


def _artifact_input(owner: str, attachments: int = 2) -> ArtifactInput:
    return ArtifactInput(
        owner=owner,
        subject="Quarterly report",
        sender="alice@example.com",
        message_id="<msg-001@example.com>",
        content_hash="f" * 64,
        body_hash="b" * 64,
        header_set_hash="c" * 64,
        attachments=tuple(
            AttachmentArtifactInput(
                attachment_index=i,
                original_filename=f"file{i}.pdf",
                mime_type="application/pdf",
                file_extension="pdf",
                file_size=10,
                content_hash=f"{i:064x}",
            )
            for i in range(attachments)
        ),
    )


class _Creator:
    """Scripted ArtifactCreator."""

    def __init__(self, fail_parent: bool = False, failing_children=()) -> None:
        self.fail_parent = fail_parent
        self.failing_children = set(failing_children)
        self.parent_calls = 0

    def create_parent(self, request, artifact_input) -> str:
        self.parent_calls += 1
        if self.fail_parent:
            raise StorageUploadError("content store unavailable")
        return f"parent-{self.parent_calls}"

    def create_children(self, request, parent_id, artifact_input):
        return [
            ChildOutcome.failure(a.attachment_index, "rejected")
            if a.attachment_index in self.failing_children
            else ChildOutcome.success(a.attachment_index, f"child-{a.attachment_index}")
            for a in artifact_input.attachments
        ]


@pytest.fixture
def owner(owner_account) -> str:
    return owner_account.address


@pytest.fixture
def operator(operator_account) -> str:
    return operator_account.address


@pytest.fixture
def ledger(owner) -> CreditLedger:
    ledger = CreditLedger()
    ledger.register(owner, initial_balance=10)
    return ledger


@pytest.fixture
def registry(ledger, operator) -> AuthorizationRequestRegistry:
    return AuthorizationRequestRegistry(ledger, operator)


def _authorized(registry, owner_account, attachments: int = 2):
    request = registry.create(owner_account.address, _digest(attachments), attachments, now=_now())
    registry.authorize(
        request.request_id,
        sign_request(request.request_id, owner_account.key),
        caller=owner_account.address,
        now=_now(),
    )
    return request


class TestCreate:
    def test_create_pending_request(self, registry, ledger, owner) -> None:
        request = registry.create(owner, _digest(2), 2, subject="Hello", now=_now())
        assert request.status == RequestStatus.PENDING
        assert request.credit_cost == 8
        assert request.owner == owner
        assert request.expires_utc == _now() + timedelta(hours=24)
        assert ledger.get_balance(owner) == 10

    def test_request_id_is_32_byte_hex(self, registry, owner) -> None:
        request = registry.create(owner, _digest(0), 0, now=_now())
        assert request.request_id.startswith("0x")
        assert len(request.request_id) == 66
        assert request.token

    def test_owner_normalized(self, registry, owner) -> None:
        request = registry.create(owner.lower(), _digest(0), 0, now=_now())
        assert request.owner == owner

    def test_subject_truncated(self, registry, owner) -> None:
        request = registry.create(owner, _digest(0), 0, subject="x" * 500, now=_now())
        assert len(request.subject) == 200

    def test_unregistered_owner(self, registry, other_account) -> None:
        with pytest.raises(NotRegisteredError):
            registry.create(other_account.address, _digest(0), 0, now=_now())

    def test_insufficient_balance(self, registry, owner) -> None:
        # 4 attachments cost 12 > 10
        with pytest.raises(InsufficientCreditsError):
            registry.create(owner, _digest(4), 4, now=_now())

    def test_empty_full_hash(self, registry, owner) -> None:
        with pytest.raises(ValidationError):
            registry.create(owner, _digest(0, full_hash=""), 0, now=_now())

    def test_attachment_count_must_match_digest(self, registry, owner) -> None:
        with pytest.raises(ValidationError):
            registry.create(owner, _digest(2), 1, now=_now())

    def test_attachment_count_capped(self, ledger, operator, owner) -> None:
        registry = AuthorizationRequestRegistry(ledger, operator, max_attachments=1)
        with pytest.raises(ValidationError):
            registry.create(owner, _digest(2), 2, now=_now())

    def test_concurrent_creates_have_distinct_ids(self, registry, owner) -> None:
        ids = []
        lock = threading.Lock()
        barrier = threading.Barrier(10)

        def create() -> None:
            barrier.wait()
            request = registry.create(owner, _digest(0), 0, now=_now())
            with lock:
                ids.append(request.request_id)

        threads = [threading.Thread(target=create) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(set(ids)) == 10

    def test_id_collision_never_overwrites(self, registry, owner) -> None:
        fixed = "0x" + "11" * 32
        registry._next_request_id = lambda *args: fixed
        first = registry.create(owner, _digest(0), 0, now=_now())
        with pytest.raises(RequestIdCollisionError):
            registry.create(owner, _digest(0), 0, now=_now())
        assert registry.get(fixed) == first

    def test_token_collision_detected(self, registry, owner, monkeypatch) -> None:
        monkeypatch.setattr(
            "mintgate.authorization.registry.secrets.token_urlsafe", lambda n: "same-token",
        )
        registry.create(owner, _digest(0), 0, now=_now())
        with pytest.raises(RequestIdCollisionError):
            registry.create(owner, _digest(0), 0, now=_now())


class TestAuthorize:
    def test_authorize_debits_once(self, registry, ledger, owner_account) -> None:
        request = registry.create(owner_account.address, _digest(2), 2, now=_now())
        record = registry.authorize(
            request.request_id,
            sign_request(request.request_id, owner_account.key),
            caller=owner_account.address,
            now=_now(),
        )
        assert record.signer == owner_account.address
        assert ledger.get_balance(owner_account.address) == 2
        stored = registry.get(request.request_id)
        assert stored.status == RequestStatus.AUTHORIZED
        assert stored.signature == record

    def test_unknown_request(self, registry, owner) -> None:
        with pytest.raises(RequestNotFoundError):
            registry.authorize("0x" + "00" * 32, "0x", caller=owner, now=_now())

    def test_only_owner_may_authorize(self, registry, owner_account, other_account) -> None:
        request = registry.create(owner_account.address, _digest(0), 0, now=_now())
        with pytest.raises(UnauthorizedCallerError):
            registry.authorize(
                request.request_id,
                sign_request(request.request_id, other_account.key),
                caller=other_account.address,
                now=_now(),
            )

    def test_signature_mismatch_changes_nothing(self, registry, ledger, owner_account, other_account) -> None:
        request = registry.create(owner_account.address, _digest(0), 0, now=_now())
        with pytest.raises(SignatureMismatchError):
            registry.authorize(
                request.request_id,
                sign_request(request.request_id, other_account.key),
                caller=owner_account.address,
                now=_now(),
            )
        assert registry.get(request.request_id).status == RequestStatus.PENDING
        assert ledger.get_balance(owner_account.address) == 10

    def test_authorize_after_expiry(self, registry, ledger, owner_account) -> None:
        request = registry.create(owner_account.address, _digest(0), 0, now=_now())
        late = _now() + timedelta(hours=24, seconds=1)
        with pytest.raises(RequestExpiredError):
            registry.authorize(
                request.request_id,
                sign_request(request.request_id, owner_account.key),
                caller=owner_account.address,
                now=late,
            )
        assert registry.get(request.request_id).status == RequestStatus.EXPIRED
        assert ledger.get_balance(owner_account.address) == 10

    def test_authorize_exactly_at_expiry_allowed(self, registry, owner_account) -> None:
        request = registry.create(owner_account.address, _digest(0), 0, now=_now())
        registry.authorize(
            request.request_id,
            sign_request(request.request_id, owner_account.key),
            caller=owner_account.address,
            now=request.expires_utc,
        )
        assert registry.get(request.request_id).status == RequestStatus.AUTHORIZED

    def test_second_authorize_fails_without_debit(self, registry, ledger, owner_account) -> None:
        request = _authorized(registry, owner_account)
        with pytest.raises(RequestNotInExpectedStateError):
            registry.authorize(
                request.request_id,
                sign_request(request.request_id, owner_account.key),
                caller=owner_account.address,
                now=_now(),
            )
        assert ledger.get_balance(owner_account.address) == 2

    def test_authorize_cancelled_request(self, registry, ledger, owner_account) -> None:
        request = registry.create(owner_account.address, _digest(0), 0, now=_now())
        registry.cancel(request.request_id, caller=owner_account.address, now=_now())
        with pytest.raises(RequestNotInExpectedStateError) as exc_info:
            registry.authorize(
                request.request_id,
                sign_request(request.request_id, owner_account.key),
                caller=owner_account.address,
                now=_now(),
            )
        assert exc_info.value.actual == "cancelled"
        assert ledger.get_balance(owner_account.address) == 10

    def test_authorize_swept_request(self, registry, owner_account) -> None:
        request = registry.create(owner_account.address, _digest(0), 0, now=_now())
        registry.expire_sweep(now=_now() + timedelta(days=2))
        with pytest.raises(RequestExpiredError):
            registry.authorize(
                request.request_id,
                sign_request(request.request_id, owner_account.key),
                caller=owner_account.address,
                now=_now(),
            )

    def test_balance_spent_since_create(self, registry, ledger, owner_account) -> None:
        request = registry.create(owner_account.address, _digest(2), 2, now=_now())
        ledger.debit(owner_account.address, 5)
        with pytest.raises(InsufficientCreditsError):
            registry.authorize(
                request.request_id,
                sign_request(request.request_id, owner_account.key),
                caller=owner_account.address,
                now=_now(),
            )
        assert registry.get(request.request_id).status == RequestStatus.PENDING
        assert ledger.get_balance(owner_account.address) == 5

    def test_concurrent_authorize_exactly_one_wins(self, registry, ledger, owner_account) -> None:
        request = registry.create(owner_account.address, _digest(2), 2, now=_now())
        signature = sign_request(request.request_id, owner_account.key)
        wins = []
        losses = []
        barrier = threading.Barrier(8)

        def attempt() -> None:
            barrier.wait()
            try:
                registry.authorize(
                    request.request_id, signature, caller=owner_account.address, now=_now(),
                )
                wins.append(1)
            except RequestNotInExpectedStateError:
                losses.append(1)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(wins) == 1
        assert len(losses) == 7
        assert ledger.get_balance(owner_account.address) == 2


class TestProcess:
    def test_partial_attachment_failure(self, registry, owner_account, operator) -> None:
        request = _authorized(registry, owner_account)
        result = registry.process(
            request.request_id,
            _artifact_input(owner_account.address, 2),
            caller=operator,
            creator=_Creator(failing_children={0}),
            now=_now(),
        )
        assert result.success
        assert result.status == RequestStatus.PROCESSED
        assert result.child_ids == [None, "child-1"]
        assert [f.index for f in result.failures] == [0]
        assert result.credits_consumed == 8

    def test_one_of_three_attachments_fails(self, ledger, operator, owner_account) -> None:
        ledger.deposit(owner_account.address, 10)
        registry = AuthorizationRequestRegistry(ledger, operator)
        request = _authorized(registry, owner_account, attachments=3)
        result = registry.process(
            request.request_id,
            _artifact_input(owner_account.address, 3),
            caller=operator,
            creator=_Creator(failing_children={1}),
            now=_now(),
        )
        assert result.success
        assert result.child_ids == ["child-0", None, "child-2"]
        assert registry.get(request.request_id).child_artifact_ids == ("child-0", None, "child-2")

    def test_parent_failure_keeps_authorized(self, registry, owner_account, operator) -> None:
        request = _authorized(registry, owner_account)
        result = registry.process(
            request.request_id,
            _artifact_input(owner_account.address),
            caller=operator,
            creator=_Creator(fail_parent=True),
            now=_now(),
        )
        assert not result.success
        assert result.status == RequestStatus.AUTHORIZED
        assert "content store unavailable" in result.error
        assert registry.get(request.request_id).status == RequestStatus.AUTHORIZED

        retry = registry.process(
            request.request_id,
            _artifact_input(owner_account.address),
            caller=operator,
            creator=_Creator(),
            now=_now(),
        )
        assert retry.success
        assert registry.get(request.request_id).status == RequestStatus.PROCESSED

    def test_only_operator_may_process(self, registry, owner_account) -> None:
        request = _authorized(registry, owner_account)
        with pytest.raises(UnauthorizedCallerError):
            registry.process(
                request.request_id,
                _artifact_input(owner_account.address),
                caller=owner_account.address,
                creator=_Creator(),
            )

    def test_pending_request_cannot_be_processed(self, registry, owner_account, operator) -> None:
        request = registry.create(owner_account.address, _digest(2), 2, now=_now())
        with pytest.raises(RequestNotInExpectedStateError):
            registry.process(
                request.request_id,
                _artifact_input(owner_account.address),
                caller=operator,
                creator=_Creator(),
            )

    def test_processed_request_cannot_be_reprocessed(self, registry, owner_account, operator) -> None:
        request = _authorized(registry, owner_account)
        creator = _Creator()
        registry.process(
            request.request_id, _artifact_input(owner_account.address),
            caller=operator, creator=creator,
        )
        with pytest.raises(RequestNotInExpectedStateError):
            registry.process(
                request.request_id, _artifact_input(owner_account.address),
                caller=operator, creator=creator,
            )
        assert creator.parent_calls == 1

    def test_claimed_request_rejected(self, ledger, operator, owner_account) -> None:
        store = RequestStore()
        registry = AuthorizationRequestRegistry(ledger, operator, store=store)
        request = _authorized(registry, owner_account)
        store.claim_processing(request.request_id)
        with pytest.raises(ProcessingInProgressError):
            registry.process(
                request.request_id, _artifact_input(owner_account.address),
                caller=operator, creator=_Creator(),
            )

    def test_claim_released_after_processing(self, ledger, operator, owner_account) -> None:
        store = RequestStore()
        registry = AuthorizationRequestRegistry(ledger, operator, store=store)
        request = _authorized(registry, owner_account)
        registry.process(
            request.request_id, _artifact_input(owner_account.address, 2),
            caller=operator, creator=_Creator(fail_parent=True),
        )
        assert not store.is_processing(request.request_id)

    def test_attachment_input_must_match_request(self, registry, owner_account, operator) -> None:
        request = _authorized(registry, owner_account)
        with pytest.raises(ValidationError):
            registry.process(
                request.request_id, _artifact_input(owner_account.address, 1),
                caller=operator, creator=_Creator(),
            )


class TestCancel:
    def test_owner_cancels_pending(self, registry, owner_account) -> None:
        request = registry.create(owner_account.address, _digest(0), 0, now=_now())
        cancelled = registry.cancel(request.request_id, caller=owner_account.address, now=_now())
        assert cancelled.status == RequestStatus.CANCELLED

    def test_non_owner_cannot_cancel(self, registry, owner_account, other_account) -> None:
        request = registry.create(owner_account.address, _digest(0), 0, now=_now())
        with pytest.raises(UnauthorizedCallerError):
            registry.cancel(request.request_id, caller=other_account.address)

    def test_authorized_request_cannot_be_cancelled(self, registry, owner_account) -> None:
        request = _authorized(registry, owner_account)
        with pytest.raises(RequestNotInExpectedStateError):
            registry.cancel(request.request_id, caller=owner_account.address)


class TestExpireSweep:
    def test_expires_only_pending_past_expiry(self, ledger, operator, owner_account) -> None:
        ledger.deposit(owner_account.address, 20)
        registry = AuthorizationRequestRegistry(ledger, operator)
        pending = registry.create(owner_account.address, _digest(0), 0, now=_now())
        fresh = registry.create(
            owner_account.address, _digest(0), 0, now=_now() + timedelta(hours=12),
        )
        authorized = _authorized(registry, owner_account, attachments=0)
        cancelled = registry.create(owner_account.address, _digest(0), 0, now=_now())
        registry.cancel(cancelled.request_id, caller=owner_account.address, now=_now())

        expired = registry.expire_sweep(now=_now() + timedelta(hours=25))

        assert expired == [pending.request_id]
        assert registry.get(pending.request_id).status == RequestStatus.EXPIRED
        assert registry.get(fresh.request_id).status == RequestStatus.PENDING
        assert registry.get(authorized.request_id).status == RequestStatus.AUTHORIZED
        assert registry.get(cancelled.request_id).status == RequestStatus.CANCELLED

    def test_explicit_ids_and_unknown_ids(self, registry, owner_account) -> None:
        request = registry.create(owner_account.address, _digest(0), 0, now=_now())
        expired = registry.expire_sweep(
            ["0x" + "99" * 32, request.request_id], now=_now() + timedelta(days=1, seconds=1),
        )
        assert expired == [request.request_id]

    def test_sweep_is_idempotent(self, registry, owner_account) -> None:
        registry.create(owner_account.address, _digest(0), 0, now=_now())
        later = _now() + timedelta(days=2)
        assert len(registry.expire_sweep(now=later)) == 1
        assert registry.expire_sweep(now=later) == []


class TestQueries:
    def test_get_by_token(self, registry, owner) -> None:
        request = registry.create(owner, _digest(0), 0, now=_now())
        assert registry.get_by_token(request.token) == request
        assert registry.get_by_token("unknown") is None

    def test_get_unknown_raises(self, registry) -> None:
        with pytest.raises(RequestNotFoundError):
            registry.get("0x" + "00" * 32)

    def test_list_by_owner_with_status(self, registry, owner_account) -> None:
        first = registry.create(owner_account.address, _digest(0), 0, now=_now())
        second = registry.create(owner_account.address, _digest(0), 0, now=_now())
        registry.cancel(second.request_id, caller=owner_account.address, now=_now())
        assert {r.request_id for r in registry.list_by_owner(owner_account.address)} == {
            first.request_id, second.request_id,
        }
        pending = registry.list_by_owner(owner_account.address, RequestStatus.PENDING)
        assert [r.request_id for r in pending] == [first.request_id]

    def test_is_valid(self, registry, owner_account) -> None:
        request = registry.create(owner_account.address, _digest(0), 0, now=_now())
        assert registry.is_valid(request.request_id, now=_now())
        assert not registry.is_valid(request.request_id, now=_now() + timedelta(days=2))
        assert not registry.is_valid("0x" + "00" * 32, now=_now())
        registry.cancel(request.request_id, caller=owner_account.address, now=_now())
        assert not registry.is_valid(request.request_id, now=_now())

    def test_stats(self, registry, owner_account) -> None:
        registry.create(owner_account.address, _digest(0), 0, now=_now())
        _authorized(registry, owner_account, attachments=0)
        stats = registry.stats(now=_now() + timedelta(days=2))
        assert stats["total"] == 2
        assert stats["by_status"]["pending"] == 1
        assert stats["by_status"]["authorized"] == 1
        assert stats["pending_past_expiry"] == 1


class TestNotificationsAndEvents:
    def test_notifier_receives_lifecycle_events(self, ledger, operator, owner_account) -> None:
        seen = []
        registry = AuthorizationRequestRegistry(
            ledger, operator, notifier=CallbackNotifier(lambda o, r, e: seen.append(e)),
        )
        request = _authorized(registry, owner_account)
        registry.process(
            request.request_id, _artifact_input(owner_account.address),
            caller=operator, creator=_Creator(),
        )
        assert seen == [RequestEvent.CREATED, RequestEvent.AUTHORIZED, RequestEvent.PROCESSED]

    def test_failing_notifier_does_not_block(self, ledger, operator, owner_account) -> None:
        def explode(owner, request_id, event):
            raise RuntimeError("mail server down")

        registry = AuthorizationRequestRegistry(
            ledger, operator, notifier=CallbackNotifier(explode),
        )
        request = _authorized(registry, owner_account)
        assert registry.get(request.request_id).status == RequestStatus.AUTHORIZED

    def test_event_log_records_transitions(self, ledger, operator, owner_account) -> None:
        log = EventLog()
        registry = AuthorizationRequestRegistry(ledger, operator, event_log=log)
        request = _authorized(registry, owner_account)
        registry.process(
            request.request_id, _artifact_input(owner_account.address),
            caller=operator, creator=_Creator(failing_children={1}),
        )
        kinds = [e.event_kind for e in log.events_for(request.request_id)]
        assert kinds == [
            EventKind.REQUEST_CREATED,
            EventKind.CREDITS_DEBITED,
            EventKind.REQUEST_AUTHORIZED,
            EventKind.ATTACHMENT_FAILED,
            EventKind.REQUEST_PROCESSED,
        ]

    def test_unwritable_event_log_does_not_fail_committed_transition(
        self, ledger, operator, owner_account,
    ) -> None:
        class _FullDiskLog(EventLog):
            def record(self, *args, **kwargs):
                raise OSError(28, "No space left on device")

        registry = AuthorizationRequestRegistry(ledger, operator, event_log=_FullDiskLog())
        request = _authorized(registry, owner_account)
        assert registry.get(request.request_id).status == RequestStatus.AUTHORIZED
        assert ledger.get_balance(owner_account.address) == 2

        result = registry.process(
            request.request_id, _artifact_input(owner_account.address),
            caller=operator, creator=_Creator(),
        )
        assert result.success
        assert registry.get(request.request_id).status == RequestStatus.PROCESSED


def _race(first, second):
    """Start two callables together; return (outcome, outcome) as value or exception."""
    barrier = threading.Barrier(2)
    outcomes = [None, None]

    def run(slot, fn) -> None:
        barrier.wait()
        try:
            outcomes[slot] = fn()
        except Exception as e:
            outcomes[slot] = e

    threads = [
        threading.Thread(target=run, args=(0, first)),
        threading.Thread(target=run, args=(1, second)),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)
    return outcomes


class TestCompetingTransitions:
    ROUNDS = 25

    @pytest.fixture
    def funded(self, operator, owner_account):
        ledger = CreditLedger()
        ledger.register(owner_account.address, initial_balance=8 * self.ROUNDS)
        log = EventLog()
        return AuthorizationRequestRegistry(ledger, operator, event_log=log), ledger, log

    def test_cancel_against_authorize(self, funded, owner_account) -> None:
        registry, ledger, _ = funded
        owner = owner_account.address
        for _ in range(self.ROUNDS):
            request = registry.create(owner, _digest(2), 2, now=_now())
            signature = sign_request(request.request_id, owner_account.key)
            before = ledger.get_balance(owner)

            authorized, cancelled = _race(
                lambda: registry.authorize(request.request_id, signature, caller=owner, now=_now()),
                lambda: registry.cancel(request.request_id, caller=owner, now=_now()),
            )
            status = registry.get(request.request_id).status
            if isinstance(authorized, Exception):
                assert isinstance(authorized, RequestNotInExpectedStateError)
                assert cancelled.status == RequestStatus.CANCELLED
                assert status == RequestStatus.CANCELLED
                assert ledger.get_balance(owner) == before
            else:
                assert isinstance(cancelled, RequestNotInExpectedStateError)
                assert status == RequestStatus.AUTHORIZED
                assert ledger.get_balance(owner) == before - 8

    def test_sweep_against_authorize_near_expiry(self, funded, owner_account) -> None:
        registry, ledger, _ = funded
        owner = owner_account.address
        inside_window = _now() + timedelta(hours=23)
        past_window = _now() + timedelta(hours=25)
        for _ in range(self.ROUNDS):
            request = registry.create(owner, _digest(2), 2, now=_now())
            signature = sign_request(request.request_id, owner_account.key)
            before = ledger.get_balance(owner)

            authorized, swept = _race(
                lambda: registry.authorize(
                    request.request_id, signature, caller=owner, now=inside_window,
                ),
                lambda: registry.expire_sweep([request.request_id], now=past_window),
            )
            status = registry.get(request.request_id).status
            if isinstance(authorized, Exception):
                assert isinstance(authorized, RequestExpiredError)
                assert swept == [request.request_id]
                assert status == RequestStatus.EXPIRED
                assert ledger.get_balance(owner) == before
            else:
                assert swept == []
                assert status == RequestStatus.AUTHORIZED
                assert ledger.get_balance(owner) == before - 8

    def test_sweep_against_late_authorize_expires_once(self, funded, owner_account) -> None:
        registry, ledger, log = funded
        owner = owner_account.address
        late = _now() + timedelta(hours=25)
        for _ in range(self.ROUNDS):
            request = registry.create(owner, _digest(2), 2, now=_now())
            signature = sign_request(request.request_id, owner_account.key)
            before = ledger.get_balance(owner)

            authorized, swept = _race(
                lambda: registry.authorize(request.request_id, signature, caller=owner, now=late),
                lambda: registry.expire_sweep([request.request_id], now=late),
            )
            assert isinstance(authorized, RequestExpiredError)
            assert swept in ([], [request.request_id])
            assert registry.get(request.request_id).status == RequestStatus.EXPIRED
            assert ledger.get_balance(owner) == before
            expired_events = [
                e for e in log.events_for(request.request_id)
                if e.event_kind == EventKind.REQUEST_EXPIRED
            ]
            assert len(expired_events) == 1
