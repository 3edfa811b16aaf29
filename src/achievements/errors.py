"""Workflow error taxonomy.

Engines raise these; the service layer catches them and converts each to a
ServiceResult carrying the matching ErrorKind. Only the service decides what
a caller gets to see.
"""

from __future__ import annotations

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Machine-readable failure classification on a ServiceResult."""
    INVALID_TRANSITION = "invalid-transition"
    NOT_AUTHORIZED = "not-authorized"
    NOT_FOUND = "not-found"
    MISSING_NOTE = "missing-note"
    NOT_DRAFT = "not-draft"
    INVALID_INPUT = "invalid-input"
    PERSISTENCE_FAILURE = "persistence-failure"


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""
    kind: Optional[ErrorKind] = None


class InvalidTransition(WorkflowError):
    """The record's current status does not permit the requested transition."""
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status} -> {to_status}")


class NotAuthorized(WorkflowError):
    """Role or relationship check failed.

    ``reason`` is for logs only; str(exc) stays generic.
    """
    kind = ErrorKind.NOT_AUTHORIZED

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__("Not authorized")


class NotFound(WorkflowError):
    """An identity did not resolve in the store that owns it."""
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class MissingNote(WorkflowError):
    """Reject was requested without rejection text."""
    kind = ErrorKind.MISSING_NOTE

    def __init__(self) -> None:
        super().__init__("Rejection note is required")


class NotDraft(WorkflowError):
    """A draft-only operation was attempted on a record that left draft."""
    kind = ErrorKind.NOT_DRAFT

    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Only draft submissions can be changed, got {status}")


class PreconditionFailed(WorkflowError):
    """Conditional commit lost: stored status no longer matches expectation."""
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, record_id: str, expected: str, actual: str) -> None:
        self.record_id = record_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Record {record_id} changed concurrently: expected {expected}, found {actual}"
        )


class SyncDegraded(WorkflowError):
    """Record committed but the content mirror could not be updated.

    Never surfaced as an operation failure. Raised inside the coordinator
    and absorbed into a flagged successful outcome.
    """

    def __init__(self, content_id: str, cause: Exception) -> None:
        self.content_id = content_id
        self.cause = cause
        super().__init__(f"Content mirror stale for {content_id}: {cause}")


class ScoringInputIncomplete(WorkflowError):
    """Scoring could not read a required sub-field. Caller falls back."""

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Scoring input incomplete: {field_name}")
