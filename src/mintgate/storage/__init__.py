"""Content-addressable storage backends."""

from mintgate.storage.base import ContentAddressableStore, InMemoryContentStore
from mintgate.storage.pinata import PinataContentStore

__all__ = ["ContentAddressableStore", "InMemoryContentStore", "PinataContentStore"]
