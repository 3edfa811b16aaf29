"""JSON (de)serialization for records and content documents."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Optional

from achievements.models.submission import (
    AchievementCategory,
    AchievementDetails,
    Attachment,
    SubmissionContent,
    SubmissionRecord,
    SubmissionStatus,
)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_ts(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    return ts.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def record_to_dict(record: SubmissionRecord) -> dict[str, Any]:
    return {
        "record_id": record.record_id,
        "owner_id": record.owner_id,
        "content_id": record.content_id,
        "status": record.status.value,
        "created_at": format_ts(record.created_at),
        "updated_at": format_ts(record.updated_at),
        "submitted_at": format_ts(record.submitted_at),
        "decided_at": format_ts(record.decided_at),
        "decided_by": record.decided_by,
        "rejection_note": record.rejection_note,
    }


def record_from_dict(data: dict[str, Any]) -> SubmissionRecord:
    return SubmissionRecord(
        record_id=data["record_id"],
        owner_id=data["owner_id"],
        content_id=data["content_id"],
        status=SubmissionStatus(data["status"]),
        created_at=parse_ts(data["created_at"]),
        updated_at=parse_ts(data["updated_at"]),
        submitted_at=parse_ts(data.get("submitted_at")),
        decided_at=parse_ts(data.get("decided_at")),
        decided_by=data.get("decided_by"),
        rejection_note=data.get("rejection_note"),
    )


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

def details_to_dict(details: AchievementDetails) -> dict[str, Any]:
    data = asdict(details)
    for key in ("valid_until", "event_date"):
        data[key] = format_ts(getattr(details, key))
    return data


def details_from_dict(data: dict[str, Any]) -> AchievementDetails:
    values = dict(data)
    for key in ("valid_until", "event_date"):
        values[key] = parse_ts(values.get(key))
    return AchievementDetails(**values)


def content_to_dict(content: SubmissionContent) -> dict[str, Any]:
    return {
        "content_id": content.content_id,
        "owner_id": content.owner_id,
        "category": content.category.value,
        "title": content.title,
        "description": content.description,
        "details": details_to_dict(content.details),
        "attachments": [
            {
                "file_name": a.file_name,
                "file_url": a.file_url,
                "file_type": a.file_type,
                "uploaded_at": format_ts(a.uploaded_at),
            }
            for a in content.attachments
        ],
        "tags": list(content.tags),
        "points": content.points,
        "status": content.status.value,
        "is_deleted": content.is_deleted,
        "provisional": content.provisional,
        "created_at": format_ts(content.created_at),
        "updated_at": format_ts(content.updated_at),
    }


def content_from_dict(data: dict[str, Any]) -> SubmissionContent:
    return SubmissionContent(
        content_id=data["content_id"],
        owner_id=data["owner_id"],
        category=AchievementCategory(data["category"]),
        title=data["title"],
        description=data.get("description", ""),
        details=details_from_dict(data.get("details", {})),
        attachments=[
            Attachment(
                file_name=a["file_name"],
                file_url=a["file_url"],
                file_type=a["file_type"],
                uploaded_at=parse_ts(a.get("uploaded_at")),
            )
            for a in data.get("attachments", [])
        ],
        tags=list(data.get("tags", [])),
        points=data.get("points"),
        status=SubmissionStatus(data["status"]),
        is_deleted=data.get("is_deleted", False),
        provisional=data.get("provisional", False),
        created_at=parse_ts(data.get("created_at")),
        updated_at=parse_ts(data.get("updated_at")),
    )
