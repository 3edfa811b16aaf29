"""Submission state machine — the only authority on legal transitions.

    draft ──submit──► submitted ──verify──► verified
      │                 │  ▲
    delete            reject │ resubmit
      ▼                 ▼  │
    deleted           rejected

Pure computation: takes the current record, returns the next one. It
never touches a store; committing the result is the coordinator's job.
Transitions are not idempotent: submitting a submitted record fails.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Optional

from achievements.errors import InvalidTransition, MissingNote
from achievements.models.submission import SubmissionRecord, SubmissionStatus

_S = SubmissionStatus

# (from, to) pairs. Everything else is an InvalidTransition.
TRANSITIONS: frozenset[tuple[SubmissionStatus, SubmissionStatus]] = frozenset({
    (_S.DRAFT, _S.SUBMITTED),
    (_S.REJECTED, _S.SUBMITTED),
    (_S.SUBMITTED, _S.VERIFIED),
    (_S.SUBMITTED, _S.REJECTED),
    (_S.DRAFT, _S.DELETED),
})


class SubmissionStateMachine:
    """Validates and applies submission status transitions."""

    @staticmethod
    def is_legal(current: SubmissionStatus, target: SubmissionStatus) -> bool:
        return (current, target) in TRANSITIONS

    @staticmethod
    def legal_targets(current: SubmissionStatus) -> frozenset[SubmissionStatus]:
        return frozenset(to for frm, to in TRANSITIONS if frm == current)

    @staticmethod
    def apply_transition(
        record: SubmissionRecord,
        target: SubmissionStatus,
        actor_id: str,
        now: datetime,
        note: Optional[str] = None,
    ) -> SubmissionRecord:
        """Return the record as it must look after moving to ``target``.

        Raises:
            MissingNote: target is REJECTED and ``note`` is blank. Checked
                before legality so a bad reject never reads as a
                state problem.
            InvalidTransition: (record.status, target) is not in the table.
        """
        if target == _S.REJECTED and (note is None or not note.strip()):
            raise MissingNote()
        if not SubmissionStateMachine.is_legal(record.status, target):
            raise InvalidTransition(record.status.value, target.value)

        if target == _S.SUBMITTED:
            # Resubmission keeps the earlier decision fields; only the note goes
            return dataclasses.replace(
                record,
                status=target,
                submitted_at=now,
                rejection_note=None,
                updated_at=now,
            )
        if target == _S.VERIFIED:
            return dataclasses.replace(
                record,
                status=target,
                decided_at=now,
                decided_by=actor_id,
                rejection_note=None,
                updated_at=now,
            )
        if target == _S.REJECTED:
            return dataclasses.replace(
                record,
                status=target,
                decided_at=now,
                decided_by=actor_id,
                rejection_note=note.strip(),
                updated_at=now,
            )
        # DELETED: status only
        return dataclasses.replace(record, status=target, updated_at=now)
