"""Notification hook for request lifecycle events.

The registry calls notify() after each successful transition. Delivery
is best-effort: the registry logs a failing notifier and carries on.
"""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from mintgate.models.request import RequestEvent


@runtime_checkable
class Notifier(Protocol):
    def notify(self, owner: str, request_id: str, event: RequestEvent) -> None:
        ...


class NullNotifier:
    """Discards every event."""

    def notify(self, owner: str, request_id: str, event: RequestEvent) -> None:
        return None


class CallbackNotifier:
    """Adapts a plain callable to the Notifier protocol.

    Usage:
        seen = []
        notifier = CallbackNotifier(lambda o, r, e: seen.append((r, e)))
    """

    def __init__(self, callback: Callable[[str, str, RequestEvent], None]) -> None:
        self._callback = callback

    def notify(self, owner: str, request_id: str, event: RequestEvent) -> None:
        self._callback(owner, request_id, event)
