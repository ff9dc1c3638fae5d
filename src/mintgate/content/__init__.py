"""Document content — parsing, canonical hashing, and package assembly."""

from mintgate.content.hasher import ContentHasher, sha256_hex
from mintgate.content.package import build_content_package, serialize_package

__all__ = [
    "ContentHasher",
    "sha256_hex",
    "build_content_package",
    "serialize_package",
]
