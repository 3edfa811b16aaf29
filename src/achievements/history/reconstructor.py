"""History reconstruction — an ordered audit trail for one submission.

Two sources, never mixed:

SNAPSHOT (default)
    Derived from the timestamp fields of the current record alone. Cheap
    and always available, but lossy: a record that was rejected, then
    resubmitted and verified, shows only created → submitted → verified.
    The rejection is gone because its fields were overwritten.

LOG
    Read from the append-only EventLog, when the service is wired with
    one. Every committed transition appears, including the ones snapshot
    history forgets.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from achievements.models.submission import SubmissionRecord, SubmissionStatus
from achievements.persistence.event_log import EventKind, EventLog


class HistoryMode(str, enum.Enum):
    SNAPSHOT = "snapshot"
    LOG = "log"


class HistoryEventKind(str, enum.Enum):
    DRAFT_CREATED = "draft-created"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    REJECTED = "rejected"
    DELETED = "deleted"


@dataclass(frozen=True)
class HistoryEvent:
    """One entry in a submission's audit trail."""
    kind: HistoryEventKind
    timestamp: datetime
    actor_id: Optional[str] = None
    rejection_note: Optional[str] = None
    description: str = ""


_DESCRIPTIONS = {
    HistoryEventKind.DRAFT_CREATED: "Achievement created as draft",
    HistoryEventKind.SUBMITTED: "Achievement submitted for verification",
    HistoryEventKind.VERIFIED: "Achievement verified",
    HistoryEventKind.REJECTED: "Achievement rejected",
    HistoryEventKind.DELETED: "Achievement deleted",
}

_FROM_LOG = {
    EventKind.DRAFT_CREATED: HistoryEventKind.DRAFT_CREATED,
    EventKind.SUBMITTED: HistoryEventKind.SUBMITTED,
    EventKind.VERIFIED: HistoryEventKind.VERIFIED,
    EventKind.REJECTED: HistoryEventKind.REJECTED,
    EventKind.DELETED: HistoryEventKind.DELETED,
}


def _event(
    kind: HistoryEventKind,
    timestamp: datetime,
    actor_id: Optional[str] = None,
    note: Optional[str] = None,
) -> HistoryEvent:
    return HistoryEvent(
        kind=kind,
        timestamp=timestamp,
        actor_id=actor_id,
        rejection_note=note,
        description=_DESCRIPTIONS[kind],
    )


class HistoryReconstructor:
    """Builds history lists. Pure; reads only what it is given."""

    @staticmethod
    def reconstruct(record: SubmissionRecord) -> list[HistoryEvent]:
        """Derive events from a record snapshot in lifecycle order.

        - draft-created at created_at, always.
        - submitted at submitted_at, if set.
        - verified / rejected at decided_at, only if set and the status
          still says so (a resubmitted record keeps decided_at from the
          rejection but no longer shows it).
        - deleted at updated_at, if status is deleted.
        """
        events = [_event(HistoryEventKind.DRAFT_CREATED, record.created_at)]

        if record.submitted_at is not None:
            events.append(_event(HistoryEventKind.SUBMITTED, record.submitted_at))

        if record.decided_at is not None:
            if record.status == SubmissionStatus.VERIFIED:
                events.append(_event(
                    HistoryEventKind.VERIFIED, record.decided_at, record.decided_by,
                ))
            elif record.status == SubmissionStatus.REJECTED:
                events.append(_event(
                    HistoryEventKind.REJECTED,
                    record.decided_at,
                    record.decided_by,
                    record.rejection_note,
                ))

        if record.status == SubmissionStatus.DELETED:
            events.append(_event(HistoryEventKind.DELETED, record.updated_at))

        return events

    @staticmethod
    def from_log(record_id: str, event_log: EventLog) -> list[HistoryEvent]:
        """Every logged transition of ``record_id`` in append order."""
        history: list[HistoryEvent] = []
        for entry in event_log.events_for(record_id):
            history.append(_event(
                _FROM_LOG[entry.event_kind],
                entry.timestamp,
                entry.actor_id,
                entry.payload.get("rejection_note"),
            ))
        return history
