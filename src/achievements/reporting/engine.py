"""Reporting engine — status counts and point totals over submissions.

Pure computation over the views it is handed. Status comes from the
authoritative record, never from the content mirror. Points are
recomputed with the scoring policy rather than read from the stamped
``points`` field, so a report agrees with scoring even for documents
whose stamp is missing. Deleted submissions are left out entirely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from achievements.models.directory import StudentProfile
from achievements.models.submission import SubmissionStatus, SubmissionView
from achievements.scoring.engine import ScoringPolicy


@dataclass(frozen=True)
class StatisticsData:
    """System-wide counts. ``pending`` is submissions awaiting a decision."""
    total: int = 0
    verified: int = 0
    rejected: int = 0
    pending: int = 0
    draft: int = 0
    total_points: int = 0


@dataclass(frozen=True)
class StudentReport:
    """Per-student counts, points, and rates (percent of total)."""
    student_id: str
    student_name: str
    total: int = 0
    verified: int = 0
    rejected: int = 0
    pending: int = 0
    draft: int = 0
    total_points: int = 0
    verified_points: int = 0
    rejection_rate: float = 0.0
    completion_rate: float = 0.0


class ReportEngine:
    """Aggregates submission views into statistics and student reports."""

    def __init__(self, scoring: ScoringPolicy) -> None:
        self._scoring = scoring

    def statistics(self, views: Iterable[SubmissionView]) -> StatisticsData:
        counts = self._tally(views)
        return StatisticsData(
            total=counts["total"],
            verified=counts["verified"],
            rejected=counts["rejected"],
            pending=counts["pending"],
            draft=counts["draft"],
            total_points=counts["total_points"],
        )

    def student_report(
        self,
        student: StudentProfile,
        views: Iterable[SubmissionView],
    ) -> StudentReport:
        counts = self._tally(v for v in views if v.record.owner_id == student.student_id)
        total = counts["total"]
        rejection_rate = completion_rate = 0.0
        if total > 0:
            rejection_rate = counts["rejected"] / total * 100
            completion_rate = counts["verified"] / total * 100
        return StudentReport(
            student_id=student.student_id,
            student_name=student.full_name,
            total=total,
            verified=counts["verified"],
            rejected=counts["rejected"],
            pending=counts["pending"],
            draft=counts["draft"],
            total_points=counts["total_points"],
            verified_points=counts["verified_points"],
            rejection_rate=rejection_rate,
            completion_rate=completion_rate,
        )

    def _tally(self, views: Iterable[SubmissionView]) -> dict[str, int]:
        counts = dict.fromkeys(
            ("total", "verified", "rejected", "pending", "draft",
             "total_points", "verified_points"),
            0,
        )
        for view in views:
            status = view.record.status
            if status == SubmissionStatus.DELETED:
                continue
            counts["total"] += 1
            if status == SubmissionStatus.VERIFIED:
                counts["verified"] += 1
            elif status == SubmissionStatus.REJECTED:
                counts["rejected"] += 1
            elif status == SubmissionStatus.SUBMITTED:
                counts["pending"] += 1
            elif status == SubmissionStatus.DRAFT:
                counts["draft"] += 1

            if view.content is None:
                continue
            points = self._scoring.score(view.content.category, view.content.details)
            counts["total_points"] += points
            if status == SubmissionStatus.VERIFIED:
                counts["verified_points"] += points
        return counts
