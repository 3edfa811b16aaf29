"""Persistence layer — record store, content store, and event log."""

from achievements.persistence.content_store import ContentStore
from achievements.persistence.event_log import EventKind, EventLog, EventRecord
from achievements.persistence.record_store import RecordStore

__all__ = ["ContentStore", "EventKind", "EventLog", "EventRecord", "RecordStore"]
