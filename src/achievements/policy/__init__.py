"""Policy module — config resolution and access evaluation."""

from achievements.policy.access import AccessDecision, AccessEvaluator, DenyReason
from achievements.policy.resolver import PolicyResolver

__all__ = ["AccessDecision", "AccessEvaluator", "DenyReason", "PolicyResolver"]
