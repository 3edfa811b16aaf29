"""Achievement statistics and per-student reports."""

from achievements.reporting.engine import ReportEngine, StatisticsData, StudentReport

__all__ = ["ReportEngine", "StatisticsData", "StudentReport"]
