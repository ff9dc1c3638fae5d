"""Credit models — accounts, ledger entries, and the cost schedule.

Credits are whole units. No fractional credits, no floats.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class CreditCosts:
    """Deterministic cost schedule for one minting operation.

    cost = base + per_attachment * attachment_count + processing_fee
    """
    base: int = 3
    per_attachment: int = 2
    processing_fee: int = 1

    def cost_for(self, attachment_count: int) -> int:
        if attachment_count < 0:
            raise ValueError("attachment_count must be non-negative")
        return self.base + self.per_attachment * attachment_count + self.processing_fee


DEFAULT_CREDIT_COSTS = CreditCosts()


class LedgerEntryKind(str, enum.Enum):
    REGISTERED = "registered"
    DEPOSIT = "deposit"
    DEBIT = "debit"


@dataclass(frozen=True)
class LedgerEntry:
    """A single balance movement. Appended, never modified."""
    entry_id: str
    identity: str
    kind: LedgerEntryKind
    amount: int
    balance_after: int
    timestamp_utc: datetime
    reference: str = ""


@dataclass
class CreditAccount:
    """Prepaid balance for one identity.

    Mutable, but only the CreditLedger changes the balance.
    """
    account_id: str
    identity: str
    balance: int = 0
    registered_utc: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)
