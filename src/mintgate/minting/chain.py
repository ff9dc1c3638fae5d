"""On-chain artifact store — anchors artifact hashes on an EVM chain.

Each artifact is a 0-value self-send transaction from the service
account with the artifact's SHA-256 content hash in the data field.
No contract code runs; the chain only witnesses that the hash existed
at that block. The transaction hash is the artifact id.

Sends from one account are serialized so that concurrent attachment
artifacts never reuse a nonce. Each artifact is broadcast at most once:
a receipt timeout leaves the transaction hash on record, and the next
attempt for the same artifact polls that hash instead of sending again.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.exceptions import Web3Exception

from mintgate.errors import ArtifactCreationError, NetworkError
from mintgate.models.artifact import (
    ArtifactInput,
    ArtifactRecord,
    AttachmentArtifactInput,
    AttachmentArtifactRecord,
)

logger = logging.getLogger(__name__)

SEPOLIA_CHAIN_ID = 11155111

_RPC_ERRORS = (Web3Exception, ConnectionError, OSError, ValueError)


class ChainArtifactStore:
    """Anchors parent and attachment hashes as self-send transactions.

    Usage:
        store = ChainArtifactStore.connect(rpc_url, private_key)
        record = store.create_parent(request_id, artifact_input)
        record.artifact_id  # 0x-prefixed transaction hash
    """

    def __init__(
        self,
        w3: Any,
        account: Any,
        chain_id: int = SEPOLIA_CHAIN_ID,
        gas: int = 30_000,
        gas_price_gwei: str = "2",
        receipt_timeout: float = 300.0,
        wait_for_receipt: bool = True,
    ) -> None:
        self._w3 = w3
        self._account = account
        self._chain_id = chain_id
        self._gas = gas
        self._gas_price_gwei = gas_price_gwei
        self._receipt_timeout = receipt_timeout
        self._wait_for_receipt = wait_for_receipt
        self._send_lock = threading.Lock()
        self._records_lock = threading.Lock()
        # Broadcast transactions awaiting a receipt, keyed by artifact.
        self._broadcast: Dict[Tuple[Any, ...], Any] = {}
        self._parents: Dict[str, ArtifactRecord] = {}
        self._children: Dict[Tuple[str, int], AttachmentArtifactRecord] = {}

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        private_key: str,
        chain_id: int = SEPOLIA_CHAIN_ID,
        **kwargs: Any,
    ) -> ChainArtifactStore:
        if not rpc_url or not private_key:
            raise ValueError("RPC URL and private key are required")
        return cls(Web3(HTTPProvider(rpc_url)), Account.from_key(private_key), chain_id, **kwargs)

    @property
    def address(self) -> str:
        return self._account.address

    def create_parent(
        self,
        request_id: str,
        artifact_input: ArtifactInput,
        now: Optional[datetime] = None,
    ) -> ArtifactRecord:
        """Anchor the parent hash once per request id.

        A repeat call returns the confirmed record. If an earlier call
        broadcast the transaction but timed out on the receipt, the same
        transaction is polled again instead of sending a new one.
        """
        with self._records_lock:
            existing = self._parents.get(request_id)
        if existing is not None:
            return existing
        tx_hash = self._anchor(("parent", request_id), artifact_input.content_hash)
        logger.info("Anchored parent artifact for %s in %s", request_id, tx_hash)
        record = ArtifactRecord(
            artifact_id=tx_hash,
            request_id=request_id,
            owner=artifact_input.owner,
            content_hash=artifact_input.content_hash,
            storage_ref=artifact_input.storage_ref,
            created_utc=now or datetime.now(timezone.utc),
        )
        with self._records_lock:
            return self._parents.setdefault(request_id, record)

    def create_attachment(
        self,
        parent_id: str,
        attachment: AttachmentArtifactInput,
        now: Optional[datetime] = None,
    ) -> AttachmentArtifactRecord:
        key = (parent_id, attachment.attachment_index)
        with self._records_lock:
            existing = self._children.get(key)
        if existing is not None:
            return existing
        tx_hash = self._anchor(("attachment",) + key, attachment.content_hash)
        logger.info(
            "Anchored attachment %d of %s in %s",
            attachment.attachment_index, parent_id, tx_hash,
        )
        record = AttachmentArtifactRecord(
            artifact_id=tx_hash,
            parent_id=parent_id,
            attachment_index=attachment.attachment_index,
            content_hash=attachment.content_hash,
            filename=attachment.original_filename,
            created_utc=now or datetime.now(timezone.utc),
        )
        with self._records_lock:
            return self._children.setdefault(key, record)

    @property
    def unconfirmed_count(self) -> int:
        """Transactions broadcast whose receipt has not been seen yet."""
        with self._send_lock:
            return len(self._broadcast)

    def _anchor(self, key: Tuple[Any, ...], content_hash: str) -> str:
        try:
            data = bytes.fromhex(content_hash)
        except ValueError as e:
            raise ArtifactCreationError(f"Content hash is not hex: {content_hash!r}") from e
        if len(data) != 32:
            raise ArtifactCreationError(
                f"Content hash must be 32 bytes, got {len(data)}"
            )

        try:
            with self._send_lock:
                tx_hash = self._broadcast.get(key)
                if tx_hash is None:
                    nonce = self._w3.eth.get_transaction_count(self._account.address, "pending")
                    tx = {
                        "to": self._account.address,
                        "value": 0,
                        "gas": self._gas,
                        "gasPrice": self._w3.to_wei(self._gas_price_gwei, "gwei"),
                        "nonce": nonce,
                        "chainId": self._chain_id,
                        "data": data,
                    }
                    signed = self._account.sign_transaction(tx)
                    tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
                    self._broadcast[key] = tx_hash
                else:
                    logger.info("Polling receipt of earlier anchor %s", Web3.to_hex(tx_hash))
        except _RPC_ERRORS as e:
            raise NetworkError(f"Anchor transaction failed: {e}") from e

        # From here on the transaction is on the wire; a retry must poll, never resend.
        if self._wait_for_receipt:
            try:
                receipt = self._w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self._receipt_timeout,
                )
            except _RPC_ERRORS as e:
                raise NetworkError(
                    f"No receipt yet for anchor {Web3.to_hex(tx_hash)}: {e}"
                ) from e
            if receipt["status"] != 1:
                with self._send_lock:
                    self._broadcast.pop(key, None)
                raise ArtifactCreationError(f"Anchor transaction reverted: {Web3.to_hex(tx_hash)}")
        with self._send_lock:
            self._broadcast.pop(key, None)
        return Web3.to_hex(tx_hash)
