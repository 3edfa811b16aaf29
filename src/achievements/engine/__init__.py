"""Workflow engine — submission status transitions."""

from achievements.engine.state_machine import TRANSITIONS, SubmissionStateMachine

__all__ = ["TRANSITIONS", "SubmissionStateMachine"]
