"""Credit ledger — per-identity prepaid balances.

Each identity owns exactly one account. Balances only move through
deposit() and debit(); each movement appends a LedgerEntry, so the
balance history can be audited at any time.

Every read-modify-write runs under a single lock:
- register() checks for an existing account and creates one in the
  same critical section, so two racing registrations cannot both win.
- debit() checks the balance and subtracts in the same critical
  section, so a debit is all-or-nothing.

Storage is in-memory. The append-only entry list is the reconstruction
source if a persistent backend is added later.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from mintgate.errors import (
    AlreadyRegisteredError,
    InsufficientCreditsError,
    NotRegisteredError,
    ValidationError,
)
from mintgate.identity.address import normalize_identity
from mintgate.models.credit import CreditAccount, LedgerEntry, LedgerEntryKind


class CreditLedger:
    """In-memory, thread-safe ledger of prepaid credits.

    Usage:
        ledger = CreditLedger()
        account_id = ledger.register("0xAbc...", {"primary_email": "a@b.c"})
        ledger.deposit("0xAbc...", 10)
        ledger.debit("0xAbc...", 8, reference=request_id)
        ledger.get_balance("0xAbc...")  # 2
    """

    def __init__(self) -> None:
        self._accounts: Dict[str, CreditAccount] = {}
        self._entries: List[LedgerEntry] = []
        self._lock = threading.Lock()

    def register(
        self,
        identity: str,
        metadata: Optional[dict[str, Any]] = None,
        initial_balance: int = 0,
        now: Optional[datetime] = None,
    ) -> str:
        """Create the account for an identity. Returns the account id.

        Raises:
            AlreadyRegisteredError: If the identity already has an account.
            ValidationError: On a malformed identity or negative balance.
        """
        ident = normalize_identity(identity)
        _check_amount(initial_balance, allow_zero=True)
        if now is None:
            now = datetime.now(timezone.utc)

        with self._lock:
            if ident in self._accounts:
                raise AlreadyRegisteredError(f"Identity already registered: {ident}")
            account = CreditAccount(
                account_id=f"acct_{uuid4().hex[:12]}",
                identity=ident,
                balance=initial_balance,
                registered_utc=now,
                metadata=dict(metadata or {}),
            )
            self._accounts[ident] = account
            self._append(ident, LedgerEntryKind.REGISTERED, initial_balance,
                         account.balance, now, account.account_id)
            return account.account_id

    def is_registered(self, identity: str) -> bool:
        try:
            ident = normalize_identity(identity)
        except ValidationError:
            return False
        with self._lock:
            return ident in self._accounts

    def get_account(self, identity: str) -> CreditAccount:
        ident = normalize_identity(identity)
        with self._lock:
            account = self._require(ident)
            return replace(account, metadata=dict(account.metadata))

    def get_balance(self, identity: str) -> int:
        """Current balance.

        Raises:
            NotRegisteredError: If the identity has no account.
        """
        ident = normalize_identity(identity)
        with self._lock:
            return self._require(ident).balance

    def deposit(
        self,
        identity: str,
        amount: int,
        reference: str = "",
        now: Optional[datetime] = None,
    ) -> int:
        """Add credits. Returns the new balance."""
        ident = normalize_identity(identity)
        _check_amount(amount)
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            account = self._require(ident)
            account.balance += amount
            self._append(ident, LedgerEntryKind.DEPOSIT, amount,
                         account.balance, now, reference)
            return account.balance

    def debit(
        self,
        identity: str,
        amount: int,
        reference: str = "",
        now: Optional[datetime] = None,
    ) -> int:
        """Subtract credits atomically. Returns the new balance.

        Raises:
            InsufficientCreditsError: If balance < amount. Nothing is debited.
            NotRegisteredError: If the identity has no account.
        """
        ident = normalize_identity(identity)
        _check_amount(amount)
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            account = self._require(ident)
            if account.balance < amount:
                raise InsufficientCreditsError(ident, amount, account.balance)
            account.balance -= amount
            self._append(ident, LedgerEntryKind.DEBIT, amount,
                         account.balance, now, reference)
            return account.balance

    def entries(self, identity: Optional[str] = None) -> List[LedgerEntry]:
        """Ledger history, optionally for one identity."""
        with self._lock:
            if identity is None:
                return list(self._entries)
            ident = normalize_identity(identity)
            return [e for e in self._entries if e.identity == ident]

    @property
    def account_count(self) -> int:
        with self._lock:
            return len(self._accounts)

    def _require(self, ident: str) -> CreditAccount:
        account = self._accounts.get(ident)
        if account is None:
            raise NotRegisteredError(f"Identity not registered: {ident}")
        return account

    def _append(
        self,
        ident: str,
        kind: LedgerEntryKind,
        amount: int,
        balance_after: int,
        now: datetime,
        reference: str,
    ) -> None:
        self._entries.append(LedgerEntry(
            entry_id=f"entry_{uuid4().hex[:12]}",
            identity=ident,
            kind=kind,
            amount=amount,
            balance_after=balance_after,
            timestamp_utc=now,
            reference=reference,
        ))


def _check_amount(amount: int, allow_zero: bool = False) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"Credit amount must be an integer, got {amount!r}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"Credit amount must be positive, got {amount}")
