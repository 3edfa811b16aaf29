"""Content store — schema-flexible documents describing each submission.

Independently keyed from the record store. Holds what the student authored
(title, category, details, attachments, tags), the derived point value, and
a denormalised mirror of the record status used only to filter read paths.

Lifecycle of a document:
1. ``create`` stores it provisional — invisible to ``query``.
2. ``confirm`` clears the flag once the owning record exists.
3. ``update_content`` / ``update_attachments`` while the mirror says draft.
4. ``set_status`` mirrors every record transition (deleted also sets
   ``is_deleted``). Documents are never physically removed.
"""

from __future__ import annotations

import copy
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from achievements.errors import NotDraft
from achievements.models.submission import (
    Attachment,
    ContentDraft,
    SubmissionContent,
    SubmissionStatus,
)
from achievements.persistence.serialization import content_from_dict, content_to_dict


class ContentStore:
    """Thread-safe keyed store of SubmissionContent documents.

    Returned documents are copies; mutate through the store methods.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._path = storage_path
        self._docs: dict[str, SubmissionContent] = {}
        self._lock = threading.RLock()
        if storage_path is not None and storage_path.exists():
            self._load()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, content: SubmissionContent) -> SubmissionContent:
        """Store a new document in the provisional state."""
        with self._lock:
            if content.content_id in self._docs:
                raise ValueError(f"Content already exists: {content.content_id}")
            doc = copy.deepcopy(content)
            doc.provisional = True
            doc.status = SubmissionStatus.DRAFT
            doc.is_deleted = False
            self._docs[doc.content_id] = doc
            self._save_or_restore(doc.content_id, None)
            return copy.deepcopy(doc)

    def confirm(self, content_id: str) -> None:
        """Make a provisional document visible to listings."""
        with self._lock:
            doc = self._require(content_id)
            if not doc.provisional:
                return
            previous = copy.deepcopy(doc)
            doc.provisional = False
            self._save_or_restore(content_id, previous)

    def update_content(
        self,
        content_id: str,
        draft: ContentDraft,
        points: Optional[int],
        now: datetime,
    ) -> SubmissionContent:
        """Replace the authored fields. Only allowed while mirrored as draft."""
        with self._lock:
            doc = self._require(content_id)
            if doc.status != SubmissionStatus.DRAFT:
                raise NotDraft(doc.status.value)
            previous = copy.deepcopy(doc)
            doc.category = draft.category
            doc.title = draft.title
            doc.description = draft.description
            doc.details = copy.deepcopy(draft.details)
            doc.attachments = list(draft.attachments)
            doc.tags = list(draft.tags)
            doc.points = points
            doc.updated_at = now
            self._save_or_restore(content_id, previous)
            return copy.deepcopy(doc)

    def update_attachments(
        self,
        content_id: str,
        attachments: list[Attachment],
        now: datetime,
    ) -> SubmissionContent:
        """Replace the attachment list. Only allowed while mirrored as draft."""
        with self._lock:
            doc = self._require(content_id)
            if doc.status != SubmissionStatus.DRAFT:
                raise NotDraft(doc.status.value)
            previous = copy.deepcopy(doc)
            doc.attachments = list(attachments)
            doc.updated_at = now
            self._save_or_restore(content_id, previous)
            return copy.deepcopy(doc)

    def set_status(self, content_id: str, status: SubmissionStatus, now: datetime) -> None:
        """Mirror a record status onto the document."""
        with self._lock:
            doc = self._require(content_id)
            previous = copy.deepcopy(doc)
            doc.status = status
            doc.is_deleted = status == SubmissionStatus.DELETED
            doc.updated_at = now
            self._save_or_restore(content_id, previous)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, content_id: str) -> Optional[SubmissionContent]:
        with self._lock:
            doc = self._docs.get(content_id)
            return copy.deepcopy(doc) if doc is not None else None

    def get_many(self, content_ids: Iterable[str]) -> dict[str, SubmissionContent]:
        """Batch fetch; missing ids are simply absent from the result."""
        with self._lock:
            return {
                cid: copy.deepcopy(self._docs[cid])
                for cid in content_ids
                if cid in self._docs
            }

    def query(
        self,
        owner_ids: Optional[Iterable[str]] = None,
        status: Optional[SubmissionStatus] = None,
    ) -> list[SubmissionContent]:
        """Listing query. Provisional and deleted documents never appear.

        Filters on the status mirror, not the authoritative record.
        """
        owners = set(owner_ids) if owner_ids is not None else None
        with self._lock:
            result = [
                copy.deepcopy(d) for d in self._docs.values()
                if not d.provisional
                and not d.is_deleted
                and (owners is None or d.owner_id in owners)
                and (status is None or d.status == status)
            ]
        return result

    def provisional_ids(self) -> list[str]:
        with self._lock:
            return [cid for cid, d in self._docs.items() if d.provisional]

    @property
    def count(self) -> int:
        return len(self._docs)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require(self, content_id: str) -> SubmissionContent:
        doc = self._docs.get(content_id)
        if doc is None:
            raise KeyError(content_id)
        return doc

    def _save_or_restore(
        self,
        content_id: str,
        previous: Optional[SubmissionContent],
    ) -> None:
        """Persist; on failure put the previous document back and re-raise."""
        try:
            self._save()
        except OSError:
            if previous is None:
                self._docs.pop(content_id, None)
            else:
                self._docs[content_id] = previous
            raise

    def _load(self) -> None:
        with self._path.open("r", encoding="utf-8") as f:
            state: dict[str, Any] = json.load(f)
        for data in state.get("contents", []):
            doc = content_from_dict(data)
            self._docs[doc.content_id] = doc

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        state = {"contents": [content_to_dict(d) for d in self._docs.values()]}
        with self._path.open("w", encoding="utf-8") as f:
            json.dump(state, f, indent=2, sort_keys=True, ensure_ascii=False)
