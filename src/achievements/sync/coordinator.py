"""Sync coordinator — keeps the record store and content store in agreement.

The record store is authoritative. The content store carries a status
mirror that listings filter on. The coordinator is the only writer of
both and follows one rule throughout: commit the record first, then
propagate to the mirror, and never revert a committed record because
the mirror write failed.

Transition protocol:
1. Load the record (NotFound if absent).
2. The state machine validates and derives the new record. A failure
   here writes nothing.
3. Compare-and-set commit to the record store. Losing a race surfaces as
   InvalidTransition carrying the status that won.
4. Propagate status and the deleted flag to the content store. A failure
   here yields a successful, degraded outcome and the record is queued
   for retry.

Creation protocol:
1. Content is stored provisional (invisible to listings).
2. The record is inserted. If that fails the content stays provisional
   and reconciliation reports it as an orphan. It is never listed and
   never deleted.
3. The content is confirmed. If that fails the record is queued; retry
   or reconciliation confirms it later.

Mirror writes always copy the latest committed record, read under the
coordinator's lock, so a slow propagation can never overwrite a newer
status with an older one.
"""

from __future__ import annotations

import copy
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from achievements.engine.state_machine import SubmissionStateMachine
from achievements.errors import (
    InvalidTransition,
    NotDraft,
    NotFound,
    PreconditionFailed,
    SyncDegraded,
)
from achievements.models.submission import (
    Attachment,
    ContentDraft,
    SubmissionContent,
    SubmissionRecord,
    SubmissionStatus,
)
from achievements.persistence.content_store import ContentStore
from achievements.persistence.event_log import EventKind, EventLog, EventRecord
from achievements.persistence.record_store import RecordStore
from achievements.policy.resolver import SyncPolicy

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

_RECORD_ID = re.compile(r"^ACH-(\d+)$")

_EVENT_FOR_STATUS = {
    SubmissionStatus.SUBMITTED: EventKind.SUBMITTED,
    SubmissionStatus.VERIFIED: EventKind.VERIFIED,
    SubmissionStatus.REJECTED: EventKind.REJECTED,
    SubmissionStatus.DELETED: EventKind.DELETED,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionOutcome:
    """Result of a committed transition. ``sync_degraded`` means the mirror lags."""
    record: SubmissionRecord
    previous_status: SubmissionStatus
    sync_degraded: bool = False
    warning: Optional[str] = None


@dataclass(frozen=True)
class CreationOutcome:
    """Result of a committed creation."""
    record: SubmissionRecord
    content: SubmissionContent
    sync_degraded: bool = False
    warning: Optional[str] = None


@dataclass(frozen=True)
class RetryReport:
    attempted: int
    repaired: list[str] = field(default_factory=list)
    exhausted: list[str] = field(default_factory=list)
    remaining: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReconcileReport:
    """Summary of one reconciliation pass.

    ``repaired``: records whose mirror status was rewritten.
    ``confirmed``: records whose provisional content was made visible.
    ``orphans``: provisional content ids with no owning record.
    ``still_divergent``: records whose mirror could not be fixed this pass.
    """
    checked: int
    repaired: list[str] = field(default_factory=list)
    confirmed: list[str] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    still_divergent: list[str] = field(default_factory=list)


@dataclass
class _PendingSync:
    record_id: str
    content_id: str
    attempts: int = 0
    last_error: str = ""


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class SyncCoordinator:
    """Owns every write to the two stores.

    Usage:
        coordinator = SyncCoordinator(records, contents, resolver.sync_policy())
        created = coordinator.create("STU-1", draft, points=40, actor_id="u-1")
        outcome = coordinator.transition(
            created.record.record_id, SubmissionStatus.SUBMITTED, "u-1",
        )
        if outcome.sync_degraded:
            ...  # record is committed; mirror will catch up
    """

    def __init__(
        self,
        records: RecordStore,
        contents: ContentStore,
        sync_policy: SyncPolicy,
        event_log: Optional[EventLog] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._records = records
        self._contents = contents
        self._policy = sync_policy
        self._event_log = event_log
        self._clock = clock or utc_now

        self._lock = threading.RLock()
        self._pending: dict[str, _PendingSync] = {}
        self._next_record_seq = _highest_record_seq(records) + 1

        self._stop = threading.Event()
        self._reconciler: Optional[threading.Thread] = None

    @property
    def event_log(self) -> Optional[EventLog]:
        return self._event_log

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        owner_id: str,
        draft: ContentDraft,
        points: Optional[int],
        actor_id: str,
    ) -> CreationOutcome:
        """Create content (provisional), then the record, then confirm.

        Raises OSError if either the content or the record could not be
        stored. A failure after the record exists is reported as degraded.
        """
        now = self._clock()
        content = SubmissionContent(
            content_id=uuid.uuid4().hex,
            owner_id=owner_id,
            category=draft.category,
            title=draft.title,
            description=draft.description,
            details=copy.deepcopy(draft.details),
            attachments=list(draft.attachments),
            tags=list(draft.tags),
            points=points,
            created_at=now,
            updated_at=now,
        )
        self._contents.create(content)

        with self._lock:
            record = SubmissionRecord(
                record_id=f"ACH-{self._next_record_seq:08d}",
                owner_id=owner_id,
                content_id=content.content_id,
                status=SubmissionStatus.DRAFT,
                created_at=now,
                updated_at=now,
            )
            try:
                self._records.insert(record)
            except OSError:
                logger.error(
                    "record_insert_failed",
                    owner_id=owner_id,
                    content_id=content.content_id,
                )
                raise
            self._next_record_seq += 1

            warnings: list[str] = []
            try:
                self._contents.confirm(content.content_id)
            except (OSError, KeyError) as e:
                warnings.append(self._degrade(record, e))

            log_warning = self._append_event(EventKind.DRAFT_CREATED, record, actor_id)
            if log_warning:
                warnings.append(log_warning)
            degraded = record.record_id in self._pending

        logger.info(
            "submission_created",
            record_id=record.record_id,
            owner_id=owner_id,
            content_id=content.content_id,
            sync_degraded=degraded,
        )
        stored = self._contents.get(content.content_id) or content
        return CreationOutcome(
            record=record,
            content=stored,
            sync_degraded=degraded,
            warning="; ".join(warnings) or None,
        )

    # ------------------------------------------------------------------
    # Draft edits
    # ------------------------------------------------------------------

    def update_content(
        self,
        record_id: str,
        draft: ContentDraft,
        points: Optional[int],
    ) -> SubmissionContent:
        """Replace authored content. Raises NotFound or NotDraft."""
        with self._lock:
            record = self._require_draft(record_id)
            return self._contents.update_content(
                record.content_id, draft, points, self._clock(),
            )

    def update_attachments(
        self,
        record_id: str,
        attachments: list[Attachment],
    ) -> SubmissionContent:
        """Replace the attachment list. Raises NotFound or NotDraft."""
        with self._lock:
            record = self._require_draft(record_id)
            return self._contents.update_attachments(
                record.content_id, attachments, self._clock(),
            )

    def _require_draft(self, record_id: str) -> SubmissionRecord:
        record = self._records.get(record_id)
        if record is None:
            raise NotFound("submission", record_id)
        if record.status != SubmissionStatus.DRAFT:
            raise NotDraft(record.status.value)
        return record

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        record_id: str,
        target: SubmissionStatus,
        actor_id: str,
        note: Optional[str] = None,
    ) -> TransitionOutcome:
        """Move a record to ``target`` and propagate to the mirror.

        Raises NotFound, InvalidTransition, MissingNote, or OSError when
        the record commit itself fails. Nothing is written in those cases.
        """
        current = self._records.get(record_id)
        if current is None:
            raise NotFound("submission", record_id)

        updated = SubmissionStateMachine.apply_transition(
            current, target, actor_id, self._clock(), note,
        )

        with self._lock:
            try:
                self._records.commit(updated, expected_status=current.status)
            except PreconditionFailed as e:
                logger.info(
                    "transition_lost_race",
                    record_id=record_id,
                    expected=e.expected,
                    actual=e.actual,
                    target=target.value,
                )
                raise InvalidTransition(e.actual, target.value) from e
            except KeyError:
                raise NotFound("submission", record_id) from None

            logger.info(
                "transition_committed",
                record_id=record_id,
                from_status=current.status.value,
                to_status=target.value,
                actor_id=actor_id,
            )

            warnings: list[str] = []
            try:
                self._sync_content(record_id)
            except (OSError, KeyError) as e:
                warnings.append(self._degrade(updated, e))
            else:
                self._pending.pop(record_id, None)

            log_warning = self._append_event(
                _EVENT_FOR_STATUS[target], updated, actor_id, note=updated.rejection_note,
            )
            if log_warning:
                warnings.append(log_warning)
            degraded = record_id in self._pending

        return TransitionOutcome(
            record=updated,
            previous_status=current.status,
            sync_degraded=degraded,
            warning="; ".join(warnings) or None,
        )

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def pending(self) -> list[str]:
        """Record ids whose mirror is known to lag."""
        with self._lock:
            return sorted(self._pending)

    def retry_pending(self) -> RetryReport:
        """Re-propagate queued mirrors. Bounded by ``max_retry_attempts``.

        An item that exhausts its attempts leaves the queue; the next
        reconciliation pass is still able to repair it.
        """
        with self._lock:
            items = list(self._pending.values())
            repaired: list[str] = []
            exhausted: list[str] = []
            for item in items:
                try:
                    self._sync_content(item.record_id)
                except (OSError, KeyError) as e:
                    item.attempts += 1
                    item.last_error = str(e)
                    if item.attempts >= self._policy.max_retry_attempts:
                        del self._pending[item.record_id]
                        exhausted.append(item.record_id)
                        logger.error(
                            "sync_retry_exhausted",
                            record_id=item.record_id,
                            content_id=item.content_id,
                            attempts=item.attempts,
                            error=item.last_error,
                        )
                    continue
                del self._pending[item.record_id]
                repaired.append(item.record_id)
            remaining = sorted(self._pending)

        logger.info(
            "sync_retry_completed",
            attempted=len(items),
            repaired=len(repaired),
            exhausted=len(exhausted),
            remaining=len(remaining),
        )
        return RetryReport(
            attempted=len(items),
            repaired=repaired,
            exhausted=exhausted,
            remaining=remaining,
        )

    def reconcile(self) -> ReconcileReport:
        """Scan every record and bring its content mirror into agreement."""
        checked = 0
        repaired: list[str] = []
        confirmed: list[str] = []
        still_divergent: list[str] = []

        with self._lock:
            for record in self._records.all_records():
                checked += 1
                content = self._contents.get(record.content_id)
                if content is None:
                    still_divergent.append(record.record_id)
                    continue
                try:
                    was_provisional, was_stale = self._sync_content(record.record_id)
                except OSError as e:
                    still_divergent.append(record.record_id)
                    logger.warning(
                        "reconcile_write_failed",
                        record_id=record.record_id,
                        error=str(e),
                    )
                    continue
                self._pending.pop(record.record_id, None)
                if was_provisional:
                    confirmed.append(record.record_id)
                if was_stale:
                    repaired.append(record.record_id)

            orphans = [
                cid for cid in self._contents.provisional_ids()
                if self._records.get_by_content(cid) is None
            ]

        report = ReconcileReport(
            checked=checked,
            repaired=repaired,
            confirmed=confirmed,
            orphans=orphans,
            still_divergent=still_divergent,
        )
        logger.info(
            "reconcile_completed",
            checked=checked,
            repaired=len(repaired),
            confirmed=len(confirmed),
            orphans=len(orphans),
            still_divergent=len(still_divergent),
        )
        return report

    # ------------------------------------------------------------------
    # Background reconciliation
    # ------------------------------------------------------------------

    def start_background_reconciler(self, interval_seconds: Optional[float] = None) -> None:
        """Run ``reconcile`` periodically on a daemon thread."""
        interval = interval_seconds
        if interval is None:
            interval = self._policy.reconcile_interval_seconds
        if self._reconciler is not None and self._reconciler.is_alive():
            return
        self._stop.clear()
        self._reconciler = threading.Thread(
            target=self._reconcile_loop,
            args=(interval,),
            name="achievements-reconciler",
            daemon=True,
        )
        self._reconciler.start()
        logger.info("reconciler_started", interval_seconds=interval)

    def stop_background_reconciler(self, timeout: Optional[float] = 5.0) -> None:
        if self._reconciler is None:
            return
        self._stop.set()
        self._reconciler.join(timeout)
        self._reconciler = None
        logger.info("reconciler_stopped")

    @property
    def reconciler_running(self) -> bool:
        return self._reconciler is not None and self._reconciler.is_alive()

    def _reconcile_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.reconcile()
            except Exception:
                # Keep the thread alive; the next tick tries again
                logger.exception("reconcile_failed")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _sync_content(self, record_id: str) -> tuple[bool, bool]:
        """Copy the latest committed record onto its content document.

        Caller holds ``self._lock``. Returns (confirmed, status_rewritten).
        Raises KeyError if either side is missing, OSError on write failure.
        """
        record = self._records.get(record_id)
        if record is None:
            raise KeyError(record_id)
        content = self._contents.get(record.content_id)
        if content is None:
            raise KeyError(record.content_id)

        confirmed = False
        if content.provisional:
            self._contents.confirm(record.content_id)
            confirmed = True

        deleted = record.status == SubmissionStatus.DELETED
        stale = content.status != record.status or content.is_deleted != deleted
        if stale:
            self._contents.set_status(record.content_id, record.status, record.updated_at)
        return confirmed, stale

    def _degrade(self, record: SubmissionRecord, cause: Exception) -> str:
        degraded = SyncDegraded(record.content_id, cause)
        item = self._pending.get(record.record_id)
        if item is None:
            self._pending[record.record_id] = _PendingSync(
                record_id=record.record_id,
                content_id=record.content_id,
                last_error=str(cause),
            )
        else:
            item.last_error = str(cause)
        logger.warning(
            "sync_degraded",
            record_id=record.record_id,
            content_id=record.content_id,
            status=record.status.value,
            error=str(cause),
        )
        return str(degraded)

    def _append_event(
        self,
        kind: EventKind,
        record: SubmissionRecord,
        actor_id: str,
        note: Optional[str] = None,
    ) -> Optional[str]:
        """Append to the history log, if one is wired. Caller holds the lock.

        The record is already committed, so a failed append only costs the
        log entry. Returns a warning in that case.
        """
        if self._event_log is None:
            return None
        payload = {"status": record.status.value, "owner_id": record.owner_id}
        if note is not None:
            payload["rejection_note"] = note
        event = EventRecord.create(
            event_id=f"EVT-{self._event_log.count + 1:08d}",
            event_kind=kind,
            actor_id=actor_id,
            record_id=record.record_id,
            payload=payload,
            timestamp_utc=record.updated_at,
        )
        try:
            self._event_log.append(event)
        except OSError as e:
            logger.warning(
                "history_append_failed",
                record_id=record.record_id,
                event_kind=kind.value,
                error=str(e),
            )
            return f"History log append failed: {e}"
        return None


def _highest_record_seq(records: RecordStore) -> int:
    """Largest numeric suffix among stored ``ACH-`` record ids, or 0."""
    highest = 0
    for record in records.all_records():
        match = _RECORD_ID.match(record.record_id)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest
