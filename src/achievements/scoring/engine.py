"""Scoring policy — derives an achievement's point value from its content.

Pure computation. No side effects, no clock, no randomness. The same
(category, details) always yields the same integer, which is what lets the
service stamp points at authoring time and the reports recompute them later
without the two ever disagreeing.

  competition:   points = scale[level].ranked[rank] or scale[level].floor
  publication:   fixed
  certification: fixed
  anything else: default

A competition with no recognisable level cannot be scored from its table;
that is reported as incomplete input and scored at the default instead of
failing the calling operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from achievements.errors import ScoringInputIncomplete
from achievements.models.submission import (
    AchievementCategory,
    AchievementDetails,
    CompetitionLevel,
)
from achievements.policy.resolver import PolicyResolver

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ScoreResult:
    """Points plus whether the default had to stand in for missing input."""
    points: int
    incomplete: bool = False
    missing_field: Optional[str] = None


class ScoringPolicy:
    """Maps submission content to a point value.

    Usage:
        policy = ScoringPolicy(resolver)
        points = policy.score(AchievementCategory.COMPETITION, details)
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    def score(
        self,
        category: AchievementCategory | str,
        details: Optional[AchievementDetails] = None,
    ) -> int:
        """Return the point value. Never raises on bad input."""
        return self.assess(category, details).points

    def assess(
        self,
        category: AchievementCategory | str,
        details: Optional[AchievementDetails] = None,
    ) -> ScoreResult:
        """Score and report whether the default was used for missing input."""
        if isinstance(category, str):
            category = AchievementCategory.parse(category)
        try:
            return ScoreResult(points=self._score_strict(category, details))
        except ScoringInputIncomplete as e:
            logger.debug(
                "scoring_input_incomplete",
                category=category.value,
                field=e.field_name,
            )
            return ScoreResult(
                points=self._resolver.default_points(),
                incomplete=True,
                missing_field=e.field_name,
            )

    def _score_strict(
        self,
        category: AchievementCategory,
        details: Optional[AchievementDetails],
    ) -> int:
        if category == AchievementCategory.COMPETITION:
            return self._score_competition(details)
        fixed = self._resolver.category_points()
        if category.value in fixed:
            return fixed[category.value]
        return self._resolver.default_points()

    def _score_competition(self, details: Optional[AchievementDetails]) -> int:
        if details is None or not details.competition_level:
            raise ScoringInputIncomplete("competition_level")
        try:
            level = CompetitionLevel(details.competition_level.strip().lower())
        except ValueError:
            raise ScoringInputIncomplete("competition_level") from None
        scale = self._resolver.competition_scale(level)
        return scale.points_for(details.rank)
