"""Identity — address normalization and owner signature verification."""

from mintgate.identity.address import normalize_identity, same_identity
from mintgate.identity.signature import SignatureVerifier, sign_request

__all__ = ["normalize_identity", "same_identity", "SignatureVerifier", "sign_request"]
