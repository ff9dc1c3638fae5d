"""Pinata-backed content store — IPFS pinning over the Pinata HTTP API.

Uploads go to /pinning/pinFileToIPFS as multipart form data; pinning an
existing CID goes to /pinning/pinByHash. IPFS content addressing gives
idempotency for free: identical bytes hash to the identical CID.

Retries are not done here. Every transport error or non-2xx response
becomes a StorageUploadError, and the orchestrator boundary retries
with backoff.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from mintgate.errors import StorageUploadError
from mintgate.models.document import StorageReference

logger = logging.getLogger(__name__)

PINATA_API_URL = "https://api.pinata.cloud"
PINATA_GATEWAY_URL = "https://gateway.pinata.cloud/ipfs"


class PinataContentStore:
    """ContentAddressableStore backed by Pinata.

    Usage:
        store = PinataContentStore(api_key, secret_key)
        ref = store.upload(package_bytes)
        store.pin(ref.content_id)
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str = PINATA_API_URL,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
        package_name: str = "mintgate-content-package.json",
    ) -> None:
        if not api_key or not secret_key:
            raise ValueError("Pinata API credentials are required")
        self._package_name = package_name
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._headers = {
            "pinata_api_key": api_key,
            "pinata_secret_api_key": secret_key,
        }

    def upload(self, package: bytes) -> StorageReference:
        files = {"file": (self._package_name, bytes(package), "application/json")}
        data = {
            "pinataMetadata": json.dumps({
                "name": self._package_name,
                "keyvalues": {"platform": "mintgate", "type": "content-package"},
            }),
        }
        body = self._post("/pinning/pinFileToIPFS", files=files, data=data)

        content_id = body.get("IpfsHash")
        if not content_id:
            raise StorageUploadError(f"Pinata response missing IpfsHash: {body}")
        size = int(body.get("PinSize", len(package)))
        logger.info("Uploaded %d bytes to Pinata as %s", size, content_id)
        return StorageReference(content_id=content_id, byte_size=size)

    def pin(self, content_id: str) -> None:
        self._post("/pinning/pinByHash", json={"hashToPin": content_id})
        logger.info("Pinned %s", content_id)

    def test_authentication(self) -> bool:
        """Check credentials against /data/testAuthentication."""
        try:
            response = self._client.get(
                "/data/testAuthentication", headers=self._headers,
            )
        except httpx.HTTPError as e:
            logger.warning("Pinata authentication check failed: %s", e)
            return False
        return response.is_success

    @staticmethod
    def gateway_url(content_id: str) -> str:
        return f"{PINATA_GATEWAY_URL}/{content_id}"

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.post(path, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise StorageUploadError(f"Pinata request to {path} failed: {e}") from e

        if not response.is_success:
            raise StorageUploadError(
                f"Pinata request to {path} failed: {response.status_code} - {response.text}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise StorageUploadError(f"Pinata returned invalid JSON from {path}") from e
