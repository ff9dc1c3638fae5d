"""Identity normalization — every identity is an EIP-55 checksummed address."""

from __future__ import annotations

from web3 import Web3

from mintgate.errors import ValidationError


def normalize_identity(value: str) -> str:
    """Return the checksummed form of an Ethereum address.

    Raises ValidationError for anything that is not a 20-byte hex
    address (including mixed-case input with a bad checksum).
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Identity must be a non-empty address string")
    candidate = value.strip()
    if not Web3.is_address(candidate):
        raise ValidationError(f"Invalid Ethereum address format: {value}")
    return Web3.to_checksum_address(candidate)


def same_identity(a: str, b: str) -> bool:
    """Case-insensitive address comparison. Invalid input never matches."""
    try:
        return normalize_identity(a) == normalize_identity(b)
    except ValidationError:
        return False
