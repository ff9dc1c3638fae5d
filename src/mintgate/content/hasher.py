"""Content hasher — parses a raw email and computes its canonical digest.

Pure and deterministic: the same bytes always produce the same
ParsedDocument and DocumentDigest. No I/O, no clock reads. A missing
Message-ID is derived from the Date header (or the Unix epoch), never
from the current time.

Hash definitions (SHA-256, lowercase hex):
    body_hash        = H(text_body + html_body)
    full_hash        = H("{message_id}|{from}|{subject}|{text_body[:1000]}")
    header_set_hash  = H(compact JSON of the lowercased header map, keys sorted)
    attachment hash  = H(attachment bytes)
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parseaddr, parsedate_to_datetime
from typing import Optional, Union

from mintgate.errors import ValidationError
from mintgate.models.document import (
    AttachmentPart,
    AuthenticationResult,
    DocumentDigest,
    ParsedDocument,
)


FULL_HASH_BODY_CHARS = 1000
DEFAULT_SUBJECT = "No Subject"
GENERATED_ID_DOMAIN = "mintgate.local"


def sha256_hex(content: Union[bytes, str]) -> str:
    """SHA-256 of bytes, or of a string's UTF-8 encoding."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def compute_full_hash(message_id: str, sender: str, subject: str, body_text: str) -> str:
    key = f"{message_id}|{sender}|{subject}|{body_text[:FULL_HASH_BODY_CHARS]}"
    return sha256_hex(key)


def compute_header_set_hash(headers: dict[str, str]) -> str:
    canonical = json.dumps(
        headers, sort_keys=True, separators=(",", ":"), ensure_ascii=False,
    )
    return sha256_hex(canonical)


class ContentHasher:
    """Turns raw document bytes into a ParsedDocument with its digest.

    Usage:
        hasher = ContentHasher()
        parsed = hasher.hash_document(raw_bytes)
        parsed.digest.full_hash
    """

    def __init__(self) -> None:
        self._parser = BytesParser(policy=policy.default)

    def hash_document(self, raw: bytes) -> ParsedDocument:
        """Parse and hash a raw RFC 5322 document.

        Raises:
            ValidationError: If the input is empty or not a usable email.
        """
        if not isinstance(raw, (bytes, bytearray)):
            raise ValidationError("Document must be raw bytes")
        if not raw.strip():
            raise ValidationError("Document is empty")

        msg = self._parser.parsebytes(bytes(raw))
        if not list(msg.keys()):
            raise ValidationError("Document has no parseable header block")

        sender = _extract_sender(msg)
        recipients = _extract_recipients(msg)
        headers = _extract_headers(msg)
        date = _extract_date(msg)
        body_text, body_html, attachments = _walk_parts(msg)

        raw_subject = str(msg.get("subject", "") or "").strip()
        if not raw_subject and not body_text and not body_html:
            raise ValidationError("Document has no subject and no body")
        subject = raw_subject or DEFAULT_SUBJECT

        message_id = str(msg.get("message-id", "") or "").strip()
        if not message_id:
            message_id = _generate_message_id(date, sender)

        digest = DocumentDigest(
            body_hash=sha256_hex(body_text + body_html),
            full_hash=compute_full_hash(message_id, sender, subject, body_text),
            header_set_hash=compute_header_set_hash(headers),
            attachment_hashes=tuple(a.content_hash for a in attachments),
        )

        return ParsedDocument(
            message_id=message_id,
            subject=subject,
            sender=sender,
            recipients=recipients,
            date=date,
            body_text=body_text,
            body_html=body_html,
            headers=headers,
            attachments=tuple(attachments),
            authentication=_extract_authentication(msg, headers),
            digest=digest,
            raw=bytes(raw),
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _extract_sender(msg: EmailMessage) -> str:
    _, address = parseaddr(str(msg.get("from", "") or ""))
    if not address or "@" not in address:
        raise ValidationError("Document has no valid From address")
    return address


def _extract_recipients(msg: EmailMessage) -> tuple[str, ...]:
    values = [str(v) for v in msg.get_all("to", []) + msg.get_all("cc", [])]
    return tuple(addr or name for name, addr in getaddresses(values) if addr or name)


def _extract_headers(msg: EmailMessage) -> dict[str, str]:
    headers: dict[str, str] = {}
    for key, value in msg.items():
        name = key.lower()
        text = str(value)
        headers[name] = f"{headers[name]}, {text}" if name in headers else text
    return headers


def _extract_date(msg: EmailMessage) -> Optional[datetime]:
    value = msg.get("date")
    if not value:
        return None
    try:
        return parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        return None


def _walk_parts(msg: EmailMessage) -> tuple[str, str, list[AttachmentPart]]:
    body_text = ""
    body_html = ""
    attachments: list[AttachmentPart] = []

    for part in msg.walk():
        if part.is_multipart():
            continue
        disposition = part.get_content_disposition()
        filename = part.get_filename()
        content_type = part.get_content_type()

        if disposition == "attachment" or filename:
            content = part.get_payload(decode=True) or b""
            attachments.append(AttachmentPart(
                index=len(attachments),
                filename=filename or "unknown",
                content_type=content_type or "application/octet-stream",
                content=content,
                content_hash=sha256_hex(content),
            ))
        elif content_type == "text/plain" and not body_text:
            body_text = _decode_text(part)
        elif content_type == "text/html" and not body_html:
            body_html = _decode_text(part)

    return body_text, body_html, attachments


def _decode_text(part: EmailMessage) -> str:
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def _extract_authentication(
    msg: EmailMessage, headers: dict[str, str],
) -> AuthenticationResult:
    spf = headers.get("received-spf", "").lower()
    results = headers.get("authentication-results", "").lower()
    return AuthenticationResult(
        spf_pass="pass" in spf,
        dkim_valid="dkim=pass" in results,
        dmarc_pass="dmarc=pass" in results,
        dkim_signature=headers.get("dkim-signature", ""),
        received_chain=tuple(str(r) for r in msg.get_all("received", []) if str(r)),
    )


def _generate_message_id(date: Optional[datetime], sender: str) -> str:
    epoch_ms = int(date.timestamp() * 1000) if date is not None else 0
    return f"generated.{epoch_ms}.{sha256_hex(sender)[:8]}@{GENERATED_ID_DOMAIN}"
