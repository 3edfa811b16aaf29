"""Scoring module — deterministic point values for achievements."""

from achievements.scoring.engine import ScoreResult, ScoringPolicy

__all__ = ["ScoreResult", "ScoringPolicy"]
