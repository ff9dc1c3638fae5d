"""Signature verification — proves the document owner consented to minting.

The signed message is an EIP-191 personal message over the 32 raw bytes
of the request id, exactly what a browser wallet produces for
signMessage(arrayify(requestId)). Nothing else goes into the message:
no block height, no wall-clock time, no late-chosen nonce. The request
id never changes, so a signature computed by the client stays valid for
the whole life of the request.
"""

from __future__ import annotations

import logging
from typing import Union

from eth_account import Account
from eth_account.messages import SignableMessage, encode_defunct
from web3 import Web3

from mintgate.identity.address import same_identity

logger = logging.getLogger(__name__)

REQUEST_ID_BYTES = 32


def request_id_bytes(request_id: str) -> bytes:
    """Decode a 0x-prefixed 32-byte hex request id.

    Raises ValueError if the id is not in that form.
    """
    if not isinstance(request_id, str) or not request_id.startswith("0x"):
        raise ValueError(f"Request id must be 0x-prefixed hex: {request_id!r}")
    raw = bytes.fromhex(request_id[2:])
    if len(raw) != REQUEST_ID_BYTES:
        raise ValueError(
            f"Request id must be {REQUEST_ID_BYTES} bytes, got {len(raw)}"
        )
    return raw


def signing_message(request_id: str) -> SignableMessage:
    """The message an owner signs to authorize a request."""
    return encode_defunct(primitive=request_id_bytes(request_id))


def sign_request(request_id: str, private_key: Union[str, bytes]) -> str:
    """Sign a request id. Returns a 0x-prefixed 65-byte hex signature."""
    signed = Account.sign_message(signing_message(request_id), private_key)
    return Web3.to_hex(signed.signature)


class SignatureVerifier:
    """Stateless signer recovery and owner check.

    verify() never raises. Malformed ids, malformed signatures and
    wrong signers all return False; the caller decides what a mismatch
    means.
    """

    def recover(self, request_id: str, signature: Union[str, bytes]) -> str:
        """Recover the signing address. Raises on malformed input."""
        return Account.recover_message(signing_message(request_id), signature=signature)

    def verify(
        self,
        request_id: str,
        signature: Union[str, bytes],
        claimed_signer: str,
    ) -> bool:
        if not signature:
            return False
        try:
            recovered = self.recover(request_id, signature)
        except Exception as e:
            logger.debug("Signature recovery failed for %s: %s", request_id, e)
            return False
        return same_identity(recovered, claimed_signer)
