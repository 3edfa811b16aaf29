"""Submission audit trail — snapshot and append-log history."""

from achievements.history.reconstructor import (
    HistoryEvent,
    HistoryEventKind,
    HistoryMode,
    HistoryReconstructor,
)

__all__ = ["HistoryEvent", "HistoryEventKind", "HistoryMode", "HistoryReconstructor"]
