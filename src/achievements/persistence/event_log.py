"""Append-only submission event log — the optional true audit trail.

Snapshot history (see ``achievements.history``) is derived from the
mutable fields of one record and therefore forgets intermediate steps:
a rejection followed by resubmission and verification leaves no trace of
the rejection. When a service is wired with an EventLog, every committed
transition is also appended here, and history can be read from the log
instead. The log never decides workflow state; the record store does.

Events are immutable once written. Each carries a SHA-256 hash over its
canonical JSON so a persisted log can be verified on load.
"""

from __future__ import annotations

import enum
import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from achievements.persistence.serialization import format_ts, parse_ts

# Fields covered by event_hash, in their serialized form
_HASHED_FIELDS = ("event_id", "event_kind", "timestamp_utc", "actor_id", "record_id", "payload")


class EventKind(str, enum.Enum):
    """Classification of submission lifecycle events."""
    DRAFT_CREATED = "draft-created"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    REJECTED = "rejected"
    DELETED = "deleted"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the submission log."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    record_id: str
    payload: dict[str, Any]
    event_hash: str  # SHA-256 of canonical JSON

    @property
    def timestamp(self) -> datetime:
        return parse_ts(self.timestamp_utc)

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        record_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        fields = {
            "event_id": event_id,
            "event_kind": event_kind.value,
            "timestamp_utc": format_ts(timestamp_utc or datetime.now(timezone.utc)),
            "actor_id": actor_id,
            "record_id": record_id,
            "payload": payload,
        }
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=fields["timestamp_utc"],
            actor_id=actor_id,
            record_id=record_id,
            payload=payload,
            event_hash=_canonical_hash(fields),
        )


class EventLog:
    """Append-only event log with optional JSONL file persistence.

    Usage:
        log = EventLog(Path("data/history.jsonl"))
        log.append(EventRecord.create("EVT-00000001", EventKind.SUBMITTED, ...))
        trail = log.events_for("ACH-00000001")
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path
        self._lock = threading.Lock()

        if storage_path is not None and storage_path.exists():
            self._load(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event; written to disk before it becomes visible.

        Raises ValueError on a duplicate event_id (replay protection) and
        OSError if the file write fails.
        """
        with self._lock:
            if event.event_id in self._event_ids:
                raise ValueError(f"Duplicate event ID: {event.event_id}")
            if self._storage_path is not None:
                self._storage_path.parent.mkdir(parents=True, exist_ok=True)
                line = json.dumps(_event_to_dict(event), sort_keys=True, ensure_ascii=False)
                with self._storage_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            self._events.append(event)
            self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        with self._lock:
            snapshot = list(self._events)
        return [e for e in snapshot if kind is None or e.event_kind == kind]

    def events_for(self, record_id: str) -> list[EventRecord]:
        """Return every event of one submission in append order."""
        return [e for e in self.events() if e.record_id == record_id]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _load(self, path: Path) -> None:
        """Replay a JSONL file. Fail-closed on tampering or duplicates."""
        with path.open("r", encoding="utf-8") as f:
            lines = [(n, line.strip()) for n, line in enumerate(f, 1)]
        for line_num, line in lines:
            if not line:
                continue
            data = json.loads(line)
            if data["event_id"] in self._event_ids:
                raise ValueError(
                    f"Duplicate event ID on recovery (line {line_num}): {data['event_id']}"
                )
            computed = _canonical_hash(data)
            if data["event_hash"] != computed:
                raise ValueError(
                    f"Integrity check failed (line {line_num}): event {data['event_id']} "
                    f"stored hash {data['event_hash']} != computed {computed}"
                )
            event = _event_from_dict(data)
            self._events.append(event)
            self._event_ids.add(event.event_id)


def _event_to_dict(event: EventRecord) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "event_kind": event.event_kind.value,
        "timestamp_utc": event.timestamp_utc,
        "actor_id": event.actor_id,
        "record_id": event.record_id,
        "payload": event.payload,
        "event_hash": event.event_hash,
    }


def _event_from_dict(data: dict[str, Any]) -> EventRecord:
    return EventRecord(
        event_id=data["event_id"],
        event_kind=EventKind(data["event_kind"]),
        timestamp_utc=data["timestamp_utc"],
        actor_id=data["actor_id"],
        record_id=data["record_id"],
        payload=data["payload"],
        event_hash=data["event_hash"],
    )


def _canonical_hash(fields: dict[str, Any]) -> str:
    canonical = json.dumps(
        {key: fields[key] for key in _HASHED_FIELDS},
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"
