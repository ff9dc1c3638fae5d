"""Prepaid credits — per-identity balances."""

from mintgate.credits.ledger import CreditLedger

__all__ = ["CreditLedger"]
