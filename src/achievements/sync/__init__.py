"""Dual-store consistency — commit, propagate, retry, reconcile."""

from achievements.sync.coordinator import (
    CreationOutcome,
    ReconcileReport,
    RetryReport,
    SyncCoordinator,
    TransitionOutcome,
)

__all__ = [
    "CreationOutcome",
    "ReconcileReport",
    "RetryReport",
    "SyncCoordinator",
    "TransitionOutcome",
]
