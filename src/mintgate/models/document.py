"""Document models — parsed email, attachment parts, digests, storage refs.

Everything here is immutable. A DocumentDigest is computed once from
the raw bytes and never recomputed for the same logical document.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class DocumentDigest:
    """Canonical hashes of a document and its parts (lowercase hex SHA-256)."""
    body_hash: str
    full_hash: str
    header_set_hash: str
    attachment_hashes: tuple[str, ...] = ()

    @property
    def attachment_count(self) -> int:
        return len(self.attachment_hashes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "body_hash": self.body_hash,
            "full_hash": self.full_hash,
            "header_set_hash": self.header_set_hash,
            "attachment_hashes": list(self.attachment_hashes),
        }


@dataclass(frozen=True)
class StorageReference:
    """Opaque handle returned by a content-addressable store."""
    content_id: str
    byte_size: int


@dataclass(frozen=True)
class AuthenticationResult:
    """Sender authentication verdicts as recorded by the receiving MTA."""
    spf_pass: bool = False
    dkim_valid: bool = False
    dmarc_pass: bool = False
    dkim_signature: str = ""
    received_chain: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "spfPass": self.spf_pass,
            "dkimValid": self.dkim_valid,
            "dmarcPass": self.dmarc_pass,
            "dkimSignature": self.dkim_signature,
            "receivedChain": list(self.received_chain),
        }


@dataclass(frozen=True)
class AttachmentPart:
    """One attachment extracted from a document."""
    index: int
    filename: str
    content_type: str
    content: bytes = field(repr=False)
    content_hash: str

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def file_extension(self) -> str:
        if "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[1].lower()


@dataclass(frozen=True)
class ParsedDocument:
    """A parsed email with its digest.

    Produced by ContentHasher. The raw bytes are kept so the content
    package can preserve the document exactly as received.
    """
    message_id: str
    subject: str
    sender: str
    recipients: tuple[str, ...]
    date: Optional[datetime]
    body_text: str
    body_html: str
    headers: dict[str, str]
    attachments: tuple[AttachmentPart, ...]
    authentication: AuthenticationResult
    digest: DocumentDigest
    raw: bytes = field(repr=False, default=b"")

    @property
    def attachment_count(self) -> int:
        return len(self.attachments)
