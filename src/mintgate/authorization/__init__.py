"""Authorization requests — the signed-consent gate in front of minting."""

from mintgate.authorization.notify import CallbackNotifier, Notifier, NullNotifier
from mintgate.authorization.registry import ArtifactCreator, AuthorizationRequestRegistry
from mintgate.authorization.store import RequestStore

__all__ = [
    "ArtifactCreator",
    "AuthorizationRequestRegistry",
    "CallbackNotifier",
    "Notifier",
    "NullNotifier",
    "RequestStore",
]
