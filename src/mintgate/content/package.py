"""Content package — the immutable JSON bundle uploaded to the content store.

The package preserves the raw document exactly as received alongside
the parsed, searchable form, and carries its own verification hashes:

    rawContentHash    = H(raw bytes)
    parsedContentHash = H(canonical JSON of parsedDocument)
    packageHash       = H(canonical JSON of the package with packageHash = "")

Canonical JSON: sorted keys, compact separators, UTF-8.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from mintgate import __version__
from mintgate.content.hasher import sha256_hex
from mintgate.models.document import ParsedDocument, StorageReference


PLATFORM_NAME = "mintgate"


def canonical_json(data: Any) -> bytes:
    """Serialize to canonical JSON bytes (sorted keys, compact, UTF-8)."""
    return json.dumps(
        data, sort_keys=True, separators=(",", ":"), ensure_ascii=False,
    ).encode("utf-8")


def build_content_package(
    parsed: ParsedDocument,
    attachment_refs: Optional[Sequence[Optional[StorageReference]]] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Assemble the content package for a parsed document.

    attachment_refs, if given, must align with parsed.attachments by
    index; each entry is the storage reference of that attachment's
    bytes (or None if they were not uploaded separately).
    """
    if now is None:
        now = datetime.now(timezone.utc)
    refs = list(attachment_refs) if attachment_refs is not None else []
    if refs and len(refs) != len(parsed.attachments):
        raise ValueError(
            f"attachment_refs has {len(refs)} entries, "
            f"document has {len(parsed.attachments)} attachments"
        )

    parsed_section = {
        "messageId": parsed.message_id,
        "subject": parsed.subject,
        "from": parsed.sender,
        "to": list(parsed.recipients),
        "date": parsed.date.isoformat() if parsed.date else None,
        "bodyText": parsed.body_text,
        "bodyHtml": parsed.body_html,
        "headers": dict(parsed.headers),
        "authenticationResult": parsed.authentication.to_dict(),
        "hashes": {
            "bodyHash": parsed.digest.body_hash,
            "fullHash": parsed.digest.full_hash,
            "headerSetHash": parsed.digest.header_set_hash,
        },
    }

    attachments = []
    for part in parsed.attachments:
        ref = refs[part.index] if refs else None
        attachments.append({
            "filename": part.filename,
            "contentType": part.content_type,
            "size": part.size,
            "contentHash": part.content_hash,
            "storageRef": ref.content_id if ref is not None else None,
        })

    raw_hash = sha256_hex(parsed.raw)
    package: dict[str, Any] = {
        "rawDocument": {
            "content": parsed.raw.decode("utf-8", errors="replace"),
            "contentHash": raw_hash,
        },
        "parsedDocument": parsed_section,
        "attachments": attachments,
        "metadata": {
            "createdAt": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "totalSize": len(parsed.raw),
            "platform": PLATFORM_NAME,
            "version": __version__,
        },
        "verification": {
            "rawContentHash": raw_hash,
            "parsedContentHash": sha256_hex(canonical_json(parsed_section)),
            "packageHash": "",
        },
    }
    package["verification"]["packageHash"] = sha256_hex(canonical_json(package))
    return package


def verify_package_hash(package: dict[str, Any]) -> bool:
    """Recompute packageHash and compare it to the stored value."""
    stored = package.get("verification", {}).get("packageHash", "")
    blank = json.loads(canonical_json(package))
    blank["verification"]["packageHash"] = ""
    return bool(stored) and stored == sha256_hex(canonical_json(blank))


def serialize_package(package: dict[str, Any]) -> bytes:
    return canonical_json(package)
