"""Audit persistence — append-only event log."""

from mintgate.persistence.event_log import EventKind, EventLog, EventRecord

__all__ = ["EventKind", "EventLog", "EventRecord"]
