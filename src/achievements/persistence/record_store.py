"""Record store — authoritative storage for submission workflow records.

The single source of truth for "what state is this submission in".
Records are immutable values; a transition replaces the stored record
through ``commit``, which is a compare-and-set on status:

    commit(new_record, expected_status)

succeeds only if the stored record still has ``expected_status``. A
concurrent transition that got there first makes the second commit fail
with PreconditionFailed instead of silently overwriting it. There is no
retry loop here: a failed commit is surfaced immediately.

Storage is in memory with optional JSON file persistence, suitable for
single-node deployment. A database backend would keep this interface and
implement commit as ``UPDATE ... WHERE id = ? AND status = ?``.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Iterable, Optional

from achievements.errors import PreconditionFailed
from achievements.models.submission import SubmissionRecord, SubmissionStatus
from achievements.persistence.serialization import record_from_dict, record_to_dict


class RecordStore:
    """Thread-safe keyed store of SubmissionRecords.

    Usage:
        store = RecordStore(Path("data/records.json"))
        store.insert(record)
        current = store.get(record.record_id)
        store.commit(updated, expected_status=current.status)
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._path = storage_path
        self._records: dict[str, SubmissionRecord] = {}
        self._lock = threading.RLock()
        if storage_path is not None and storage_path.exists():
            self._load()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, record: SubmissionRecord) -> None:
        """Insert a new record.

        Raises ValueError on duplicate record_id, OSError if the file
        write fails (in which case the record is not kept).
        """
        with self._lock:
            if record.record_id in self._records:
                raise ValueError(f"Record already exists: {record.record_id}")
            self._records[record.record_id] = record
            try:
                self._save()
            except OSError:
                del self._records[record.record_id]
                raise

    def commit(
        self,
        record: SubmissionRecord,
        expected_status: SubmissionStatus,
    ) -> SubmissionRecord:
        """Replace a stored record if its status still matches.

        Raises:
            KeyError: record_id is not stored.
            PreconditionFailed: stored status differs from expected_status.
            OSError: file persistence failed; the previous record is kept.
        """
        with self._lock:
            current = self._records.get(record.record_id)
            if current is None:
                raise KeyError(record.record_id)
            if current.status != expected_status:
                raise PreconditionFailed(
                    record.record_id, expected_status.value, current.status.value,
                )
            self._records[record.record_id] = record
            try:
                self._save()
            except OSError:
                self._records[record.record_id] = current
                raise
            return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> Optional[SubmissionRecord]:
        with self._lock:
            return self._records.get(record_id)

    def get_by_content(self, content_id: str) -> Optional[SubmissionRecord]:
        with self._lock:
            for r in self._records.values():
                if r.content_id == content_id:
                    return r
            return None

    def all_records(self) -> list[SubmissionRecord]:
        """Return every record, newest first."""
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def by_owners(self, owner_ids: Iterable[str]) -> list[SubmissionRecord]:
        """Return records owned by any of ``owner_ids``, newest first."""
        wanted = set(owner_ids)
        return [r for r in self.all_records() if r.owner_id in wanted]

    @property
    def count(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # File persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        with self._path.open("r", encoding="utf-8") as f:
            state: dict[str, Any] = json.load(f)
        for data in state.get("records", []):
            record = record_from_dict(data)
            self._records[record.record_id] = record

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        state = {
            "records": [record_to_dict(r) for r in self._records.values()],
        }
        with self._path.open("w", encoding="utf-8") as f:
            json.dump(state, f, indent=2, sort_keys=True, ensure_ascii=False)
