"""Achievement workflow service — unified facade for the workflow engine.

This is the primary interface for programmatic access. It orchestrates:
- Authorization (role table + directory capability + advisor relationship)
- Scoring (points stamped at authoring time, recomputed for reports)
- Submission lifecycle (create, edit, submit, verify, reject, delete)
- Dual-store consistency (record commit, mirror propagation, reconcile)
- History (snapshot-derived, or from the append-only log when wired)
- Reporting (statistics, per-student reports)

Every operation returns a ServiceResult. Engines raise typed
WorkflowErrors; this layer is the only place they are turned into a
result, and the only place that decides what a caller gets to see.
Authorization failures carry a generic message; the concrete reason is
logged. A record committed with a lagging content mirror is a success
carrying ``sync_degraded`` and a warning, never a failure.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from achievements.directory.registry import AcademicDirectory, UserDirectory
from achievements.errors import (
    ErrorKind,
    InvalidTransition,
    NotAuthorized,
    NotDraft,
    NotFound,
    WorkflowError,
)
from achievements.history.reconstructor import HistoryEvent, HistoryMode, HistoryReconstructor
from achievements.models.directory import Action, Actor, Role
from achievements.models.submission import (
    Attachment,
    ContentDraft,
    SubmissionRecord,
    SubmissionStatus,
    SubmissionView,
)
from achievements.persistence.content_store import ContentStore
from achievements.persistence.event_log import EventLog
from achievements.persistence.record_store import RecordStore
from achievements.persistence.serialization import content_to_dict, format_ts, record_to_dict
from achievements.policy.access import AccessEvaluator
from achievements.policy.resolver import PolicyResolver
from achievements.reporting.engine import ReportEngine
from achievements.scoring.engine import ScoringPolicy
from achievements.sync.coordinator import Clock, SyncCoordinator, TransitionOutcome

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None


class WorkflowService:
    """Achievement workflow facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = WorkflowService(resolver, users, academics)

        result = service.create_draft(student, "STU-1", draft)
        record_id = result.data["record_id"]
        service.submit(record_id, student)
        service.reject(record_id, advisor, "Certificate is unreadable")
        service.submit(record_id, student)
        service.verify(record_id, advisor)

    Persistence (optional):
        service = WorkflowService.with_data_dir(resolver, users, academics, data_dir)
        # Records, content and history log are written under data_dir.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        users: UserDirectory,
        academics: AcademicDirectory,
        records: Optional[RecordStore] = None,
        contents: Optional[ContentStore] = None,
        event_log: Optional[EventLog] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._resolver = resolver
        self._users = users
        self._academics = academics
        self._access = AccessEvaluator(resolver, users, academics)
        self._scoring = ScoringPolicy(resolver)
        self._reports = ReportEngine(self._scoring)

        self._records = records if records is not None else RecordStore()
        self._contents = contents if contents is not None else ContentStore()
        self._coordinator = SyncCoordinator(
            self._records,
            self._contents,
            resolver.sync_policy(),
            event_log=event_log,
            clock=clock,
        )

    @classmethod
    def with_data_dir(
        cls,
        resolver: PolicyResolver,
        users: UserDirectory,
        academics: AcademicDirectory,
        data_dir: Path,
        history_log: bool = True,
        clock: Optional[Clock] = None,
    ) -> WorkflowService:
        """Build a service whose stores persist to JSON files in ``data_dir``."""
        return cls(
            resolver,
            users,
            academics,
            records=RecordStore(data_dir / "records.json"),
            contents=ContentStore(data_dir / "contents.json"),
            event_log=EventLog(data_dir / "history.jsonl") if history_log else None,
            clock=clock,
        )

    @property
    def coordinator(self) -> SyncCoordinator:
        return self._coordinator

    # ------------------------------------------------------------------
    # Authoring
    # ------------------------------------------------------------------

    def create_draft(self, actor: Actor, owner_id: str, content: ContentDraft) -> ServiceResult:
        """Create a new submission in DRAFT for student ``owner_id``."""
        return self._run("create_draft", actor, lambda: self._create_draft(actor, owner_id, content))

    def _create_draft(self, actor: Actor, owner_id: str, content: ContentDraft) -> ServiceResult:
        error = _validate_draft(content)
        if error:
            return _invalid(error)

        decision = self._access.can_create_for(actor, owner_id)
        if not decision.allowed:
            raise NotAuthorized(decision.reason.value)
        if self._academics.student(owner_id) is None:
            raise NotFound("student", owner_id)

        points = self._scoring.score(content.category, content.details)
        outcome = self._coordinator.create(owner_id, content, points, actor.user_id)

        data: dict[str, Any] = {
            "record_id": outcome.record.record_id,
            "content_id": outcome.record.content_id,
            "status": outcome.record.status.value,
            "points": points,
        }
        _flag_degraded(data, outcome.sync_degraded, outcome.warning)
        return ServiceResult(success=True, data=data)

    def update_draft(self, record_id: str, actor: Actor, content: ContentDraft) -> ServiceResult:
        """Replace the authored content of a DRAFT submission. Rescored."""
        def op() -> ServiceResult:
            error = _validate_draft(content)
            if error:
                return _invalid(error)
            record = self._authorize(Action.UPDATE_DRAFT, actor, record_id)
            if record.status != SubmissionStatus.DRAFT:
                raise NotDraft(record.status.value)
            points = self._scoring.score(content.category, content.details)
            updated = self._update_content(
                record, lambda: self._coordinator.update_content(record_id, content, points),
            )
            return ServiceResult(success=True, data={
                "record_id": record_id,
                "content_id": updated.content_id,
                "points": updated.points,
            })
        return self._run("update_draft", actor, op)

    def update_attachments(
        self,
        record_id: str,
        actor: Actor,
        attachments: list[Attachment],
    ) -> ServiceResult:
        """Replace the attachment list of a DRAFT submission."""
        def op() -> ServiceResult:
            record = self._authorize(Action.UPDATE_DRAFT, actor, record_id)
            if record.status != SubmissionStatus.DRAFT:
                raise NotDraft(record.status.value)
            updated = self._update_content(
                record, lambda: self._coordinator.update_attachments(record_id, attachments),
            )
            return ServiceResult(success=True, data={
                "record_id": record_id,
                "attachments": len(updated.attachments),
            })
        return self._run("update_attachments", actor, op)

    def _update_content(self, record: SubmissionRecord, write: Callable[[], Any]) -> Any:
        try:
            return write()
        except KeyError:
            raise NotFound("content", record.content_id) from None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(self, record_id: str, actor: Actor) -> ServiceResult:
        """DRAFT → SUBMITTED, or REJECTED → SUBMITTED (resubmission)."""
        return self._run("submit", actor, lambda: self._transition(
            Action.SUBMIT, record_id, actor, SubmissionStatus.SUBMITTED,
        ))

    def verify(self, record_id: str, actor: Actor) -> ServiceResult:
        """SUBMITTED → VERIFIED."""
        return self._run("verify", actor, lambda: self._transition(
            Action.VERIFY, record_id, actor, SubmissionStatus.VERIFIED,
        ))

    def reject(self, record_id: str, actor: Actor, note: str) -> ServiceResult:
        """SUBMITTED → REJECTED. ``note`` must be non-blank."""
        return self._run("reject", actor, lambda: self._transition(
            Action.REJECT, record_id, actor, SubmissionStatus.REJECTED, note,
        ))

    def delete_draft(self, record_id: str, actor: Actor) -> ServiceResult:
        """DRAFT → DELETED. Soft delete; nothing is physically removed."""
        def op() -> ServiceResult:
            try:
                return self._transition(
                    Action.DELETE_DRAFT, record_id, actor, SubmissionStatus.DELETED,
                )
            except InvalidTransition as e:
                raise NotDraft(e.from_status) from e
        return self._run("delete_draft", actor, op)

    def _transition(
        self,
        action: Action,
        record_id: str,
        actor: Actor,
        target: SubmissionStatus,
        note: Optional[str] = None,
    ) -> ServiceResult:
        self._authorize(action, actor, record_id)
        outcome = self._coordinator.transition(record_id, target, actor.user_id, note)
        return ServiceResult(success=True, data=_transition_data(outcome))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_submission(self, record_id: str, actor: Actor) -> ServiceResult:
        """Return the record joined with its content document."""
        def op() -> ServiceResult:
            record = self._load(record_id)
            self._require_view(actor, record.owner_id, record_id)
            content = self._contents.get(record.content_id)
            return ServiceResult(success=True, data={
                "record": record_to_dict(record),
                "content": content_to_dict(content) if content is not None else None,
            })
        return self._run("get_submission", actor, op)

    def get_history(
        self,
        record_id: str,
        actor: Actor,
        mode: HistoryMode = HistoryMode.SNAPSHOT,
    ) -> ServiceResult:
        """Return the submission's audit trail, oldest first."""
        def op() -> ServiceResult:
            record = self._authorize(Action.READ, actor, record_id)
            if mode == HistoryMode.LOG:
                log = self._coordinator.event_log
                if log is None:
                    return _invalid("History log is not configured for this service")
                events = HistoryReconstructor.from_log(record_id, log)
            else:
                events = HistoryReconstructor.reconstruct(record)
            return ServiceResult(success=True, data={
                "record_id": record_id,
                "status": record.status.value,
                "mode": mode.value,
                "events": [_history_to_dict(e) for e in events],
            })
        return self._run("get_history", actor, op)

    def list_submissions(
        self,
        actor: Actor,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[SubmissionStatus] = None,
    ) -> ServiceResult:
        """Paginated listing scoped by role.

        Admin sees everything, an advisor sees their advisees, a student
        sees their own. Provisional and deleted content never appears.
        ``status`` filters on the content mirror.
        """
        def op() -> ServiceResult:
            owner_ids = self._visible_owners(actor)
            default_limit, max_limit = self._resolver.listing_limits()
            size = max(1, min(limit or default_limit, max_limit))
            current_page = max(1, page)

            docs = self._contents.query(owner_ids=owner_ids, status=status)
            views: list[SubmissionView] = []
            for doc in docs:
                record = self._records.get_by_content(doc.content_id)
                if record is not None:
                    views.append(SubmissionView(record=record, content=doc))
            views.sort(key=lambda v: v.record.created_at, reverse=True)

            total = len(views)
            start = (current_page - 1) * size
            items = [
                {
                    **record_to_dict(v.record),
                    "title": v.content.title,
                    "category": v.content.category.value,
                    "points": v.content.points,
                }
                for v in views[start:start + size]
            ]
            return ServiceResult(success=True, data={
                "items": items,
                "page": current_page,
                "limit": size,
                "total": total,
                "total_pages": math.ceil(total / size) if total else 0,
            })
        return self._run("list_submissions", actor, op)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def statistics(self, actor: Actor) -> ServiceResult:
        """System-wide status counts and points. Admin only."""
        def op() -> ServiceResult:
            self._require_identity(actor)
            if actor.role != Role.ADMIN:
                raise NotAuthorized("role-not-permitted")
            stats = self._reports.statistics(self._views(self._records.all_records()))
            return ServiceResult(success=True, data=asdict(stats))
        return self._run("statistics", actor, op)

    def student_report(self, student_id: str, actor: Actor) -> ServiceResult:
        """Counts, points and rates for one student."""
        def op() -> ServiceResult:
            self._require_view(actor, student_id, None)
            student = self._academics.student(student_id)
            if student is None:
                raise NotFound("student", student_id)
            report = self._reports.student_report(
                student, self._views(self._records.by_owners([student_id])),
            )
            return ServiceResult(success=True, data=asdict(report))
        return self._run("student_report", actor, op)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def retry_pending_sync(self) -> ServiceResult:
        """Retry mirror propagation for every queued record."""
        report = self._coordinator.retry_pending()
        return ServiceResult(success=True, data={
            "attempted": report.attempted,
            "repaired": report.repaired,
            "exhausted": report.exhausted,
            "remaining": report.remaining,
        })

    def reconcile(self) -> ServiceResult:
        """Bring every content mirror into agreement with its record."""
        report = self._coordinator.reconcile()
        return ServiceResult(success=True, data={
            "checked": report.checked,
            "repaired": report.repaired,
            "confirmed": report.confirmed,
            "orphans": report.orphans,
            "still_divergent": report.still_divergent,
        })

    def start_reconciler(self, interval_seconds: Optional[float] = None) -> None:
        self._coordinator.start_background_reconciler(interval_seconds)

    def stop_reconciler(self) -> None:
        self._coordinator.stop_background_reconciler()

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        by_status: dict[str, int] = {}
        for record in self._records.all_records():
            by_status[record.status.value] = by_status.get(record.status.value, 0) + 1
        log = self._coordinator.event_log
        return {
            "policy_version": self._resolver.version,
            "records": {
                "total": self._records.count,
                "by_status": by_status,
            },
            "contents": {
                "total": self._contents.count,
                "provisional": len(self._contents.provisional_ids()),
            },
            "sync": {
                "pending": self._coordinator.pending(),
                "reconciler_running": self._coordinator.reconciler_running,
            },
            "history_log": {
                "enabled": log is not None,
                "events": log.count if log is not None else 0,
            },
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(self, operation: str, actor: Actor, op: Callable[[], ServiceResult]) -> ServiceResult:
        """Run ``op`` with the actor bound to the log context; map errors."""
        with structlog.contextvars.bound_contextvars(
            operation=operation,
            actor_id=actor.user_id,
            role=actor.role.value,
        ):
            try:
                return op()
            except WorkflowError as e:
                logger.info("operation_failed", error_kind=e.kind.value if e.kind else None)
                return ServiceResult(success=False, errors=[str(e)], error_kind=e.kind)
            except OSError as e:
                logger.error("persistence_failure", error=str(e))
                return ServiceResult(
                    success=False,
                    errors=[f"Persistence failure: {e}"],
                    error_kind=ErrorKind.PERSISTENCE_FAILURE,
                )

    def _load(self, record_id: str) -> SubmissionRecord:
        record = self._records.get(record_id)
        if record is None:
            raise NotFound("submission", record_id)
        return record

    def _authorize(self, action: Action, actor: Actor, record_id: str) -> SubmissionRecord:
        record = self._load(record_id)
        decision = self._access.can_perform(action, actor, record)
        if not decision.allowed:
            raise NotAuthorized(decision.reason.value)
        return record

    def _require_identity(self, actor: Actor) -> None:
        decision = self._access.check_identity(actor)
        if not decision.allowed:
            logger.info("access_denied", action="identify", reason=decision.reason.value)
            raise NotAuthorized(decision.reason.value)

    def _require_view(self, actor: Actor, student_id: str, record_id: Optional[str]) -> None:
        decision = self._access.can_view_student(actor, student_id)
        if not decision.allowed:
            logger.info(
                "access_denied",
                action="view",
                record_id=record_id,
                student_id=student_id,
                reason=decision.reason.value,
            )
            raise NotAuthorized(decision.reason.value)

    def _visible_owners(self, actor: Actor) -> Optional[list[str]]:
        """Owner ids an actor may list; None means unrestricted."""
        self._require_identity(actor)
        if actor.role == Role.ADMIN:
            return None
        if actor.role == Role.STUDENT:
            student = self._academics.student_by_user(actor.user_id)
            if student is None:
                raise NotFound("student profile", actor.user_id)
            return [student.student_id]
        if actor.role == Role.ADVISOR:
            lecturer = self._academics.lecturer_by_user(actor.user_id)
            if lecturer is None:
                raise NotFound("lecturer profile", actor.user_id)
            return [s.student_id for s in self._academics.advisees(lecturer.lecturer_id)]
        raise NotAuthorized("role-not-permitted")

    def _views(self, records: list[SubmissionRecord]) -> list[SubmissionView]:
        docs = self._contents.get_many(r.content_id for r in records)
        return [SubmissionView(record=r, content=docs.get(r.content_id)) for r in records]


def _validate_draft(content: ContentDraft) -> Optional[str]:
    if not content.title or not content.title.strip():
        return "Title is required"
    return None


def _invalid(message: str) -> ServiceResult:
    return ServiceResult(success=False, errors=[message], error_kind=ErrorKind.INVALID_INPUT)


def _flag_degraded(data: dict[str, Any], degraded: bool, warning: Optional[str]) -> None:
    data["sync_degraded"] = degraded
    if warning:
        data["warning"] = warning


def _transition_data(outcome: TransitionOutcome) -> dict[str, Any]:
    record = outcome.record
    data: dict[str, Any] = {
        "record_id": record.record_id,
        "status": record.status.value,
        "previous_status": outcome.previous_status.value,
        "submitted_at": format_ts(record.submitted_at),
        "decided_at": format_ts(record.decided_at),
        "decided_by": record.decided_by,
        "rejection_note": record.rejection_note,
    }
    _flag_degraded(data, outcome.sync_degraded, outcome.warning)
    return data


def _history_to_dict(event: HistoryEvent) -> dict[str, Any]:
    return {
        "kind": event.kind.value,
        "timestamp": format_ts(event.timestamp),
        "actor_id": event.actor_id,
        "rejection_note": event.rejection_note,
        "description": event.description,
    }
