"""Submission record, content document, and attachment data models.

A submission lives in two stores:
- SubmissionRecord: the authoritative workflow record (status, timestamps,
  deciding actor). Owned exclusively by the workflow engine.
- SubmissionContent: the descriptive document (title, details, attachments).
  Authored by the student while the record is DRAFT; read-only afterwards.
  Its ``status`` and ``is_deleted`` fields are a denormalised mirror of the
  record and are never consulted to decide a transition.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class SubmissionStatus(str, enum.Enum):
    """Finite state machine states for a submission lifecycle."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    REJECTED = "rejected"
    DELETED = "deleted"


class AchievementCategory(str, enum.Enum):
    """Kind of achievement being claimed. Drives scoring."""
    COMPETITION = "competition"
    PUBLICATION = "publication"
    CERTIFICATION = "certification"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str) -> AchievementCategory:
        """Map free text to a category; unrecognised values become OTHER."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.OTHER


class CompetitionLevel(str, enum.Enum):
    """Competition scope, used by the scoring table."""
    INTERNATIONAL = "international"
    NATIONAL = "national"
    REGIONAL = "regional"
    LOCAL = "local"


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Attachment:
    """A file attached to a submission (certificate scan, proof, etc.)."""
    file_name: str
    file_url: str
    file_type: str
    uploaded_at: Optional[datetime] = None


@dataclass
class AchievementDetails:
    """Category-specific structured details.

    Every field is optional. Which ones matter depends on the category:
    competition uses ``competition_level`` and ``rank`` for scoring,
    publication and certification carry their own descriptive fields.
    Anything else goes into ``custom_fields``.
    """
    # Competition
    competition_name: Optional[str] = None
    competition_level: Optional[str] = None
    rank: Optional[int] = None
    medal_type: Optional[str] = None

    # Publication
    publication_type: Optional[str] = None
    publication_title: Optional[str] = None
    authors: list[str] = field(default_factory=list)
    publisher: Optional[str] = None
    issn: Optional[str] = None

    # Organisation
    organization_name: Optional[str] = None
    position: Optional[str] = None

    # Certification
    certification_name: Optional[str] = None
    issued_by: Optional[str] = None
    certification_number: Optional[str] = None
    valid_until: Optional[datetime] = None

    # Event
    event_date: Optional[datetime] = None
    location: Optional[str] = None
    organizer: Optional[str] = None

    custom_fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class ContentDraft:
    """Caller-supplied authored fields for creating or updating content."""
    category: AchievementCategory
    title: str
    description: str = ""
    details: AchievementDetails = field(default_factory=AchievementDetails)
    attachments: list[Attachment] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


@dataclass
class SubmissionContent:
    """Content document held in the ContentStore.

    ``provisional`` is True from creation until the owning record exists;
    provisional documents are invisible to listing queries.
    """
    content_id: str
    owner_id: str
    category: AchievementCategory
    title: str
    description: str = ""
    details: AchievementDetails = field(default_factory=AchievementDetails)
    attachments: list[Attachment] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    points: Optional[int] = None

    # Denormalised mirror of SubmissionRecord.status; not authoritative
    status: SubmissionStatus = SubmissionStatus.DRAFT
    is_deleted: bool = False
    provisional: bool = True

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SubmissionRecord:
    """Authoritative workflow record held in the RecordStore.

    Immutable: the state machine derives a new record for every
    transition and the store swaps it in with a conditional commit.

    Invariants (checked by ``invariant_errors``):
    - decided_at and decided_by are both set or both unset.
    - rejection_note is set iff status is REJECTED.
    - submitted_at is set for SUBMITTED, VERIFIED, REJECTED; unset for DRAFT.
    """
    record_id: str
    owner_id: str
    content_id: str
    status: SubmissionStatus
    created_at: datetime
    updated_at: datetime
    submitted_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    rejection_note: Optional[str] = None

    def invariant_errors(self) -> list[str]:
        """Return a list of violated invariants (empty when consistent)."""
        errors: list[str] = []
        if (self.decided_at is None) != (self.decided_by is None):
            errors.append("decided_at and decided_by must be set together")
        if (self.rejection_note is not None) != (self.status == SubmissionStatus.REJECTED):
            errors.append("rejection_note must be set iff status is rejected")
        needs_submitted = self.status in (
            SubmissionStatus.SUBMITTED,
            SubmissionStatus.VERIFIED,
            SubmissionStatus.REJECTED,
        )
        if needs_submitted and self.submitted_at is None:
            errors.append(f"submitted_at required in status {self.status.value}")
        if self.status == SubmissionStatus.DRAFT and self.submitted_at is not None:
            errors.append("submitted_at must be unset in draft")
        return errors


@dataclass(frozen=True)
class SubmissionView:
    """A record joined with its content document for read paths."""
    record: SubmissionRecord
    content: Optional[SubmissionContent]
