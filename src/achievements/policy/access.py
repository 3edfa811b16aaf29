"""Access evaluator — role- and relationship-aware authorization.

Pure evaluation: no state of its own, no side effects beyond a log line
on denial. Receives the directories it reads from; never writes to them.

One table decides everything:
- ADMIN: every action, unconditionally.
- STUDENT: create, update-draft, submit, delete-draft — own submissions only.
- ADVISOR: verify, reject, read — only for students they advise.
- Anything else: deny.

The actor must first resolve to an active user whose registered role is
the one claimed. Before the relationship check, the role must also hold
the directory capability mapped to the action (``achievements:verify``
etc.).

Relationship resolution is fail-closed: a lookup that finds nothing is
treated exactly like an absent relationship.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

import structlog

from achievements.directory.registry import AcademicDirectory, UserDirectory
from achievements.models.directory import Action, Actor, Role
from achievements.models.submission import SubmissionRecord
from achievements.policy.resolver import PolicyResolver

logger = structlog.get_logger(__name__)


class DenyReason(str, enum.Enum):
    """Why access was denied. Logged, never shown to the caller."""
    ROLE_NOT_PERMITTED = "role-not-permitted"
    NOT_OWNER = "not-owner"
    NOT_ADVISOR = "not-advisor"
    ENTITY_NOT_FOUND = "entity-not-found"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an access check."""
    allowed: bool
    reason: Optional[DenyReason] = None

    @staticmethod
    def allow() -> AccessDecision:
        return AccessDecision(allowed=True)

    @staticmethod
    def deny(reason: DenyReason) -> AccessDecision:
        return AccessDecision(allowed=False, reason=reason)


class AccessEvaluator:
    """Decides whether an actor may perform an action on a submission.

    Usage:
        evaluator = AccessEvaluator(resolver, users, academics)
        decision = evaluator.can_perform(Action.VERIFY, actor, record)
        if not decision.allowed:
            ...  # log decision.reason, answer with a generic 403
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        users: UserDirectory,
        academics: AcademicDirectory,
    ) -> None:
        self._resolver = resolver
        self._users = users
        self._academics = academics

    def can_perform(
        self,
        action: Action,
        actor: Actor,
        record: SubmissionRecord,
    ) -> AccessDecision:
        """Evaluate ``action`` by ``actor`` against an existing record."""
        return self._evaluate(action, actor, record.owner_id, record.record_id)

    def can_create_for(self, actor: Actor, owner_id: str) -> AccessDecision:
        """Evaluate CREATE, where the would-be owner stands in for the record."""
        return self._evaluate(Action.CREATE, actor, owner_id, None)

    def can_view_student(self, actor: Actor, student_id: str) -> AccessDecision:
        """Whether ``actor`` may see a student's submissions and report.

        Admin always; a student for themselves; an advisor for advisees.
        """
        identity = self.check_identity(actor)
        if not identity.allowed:
            return identity
        if actor.role == Role.ADMIN:
            return AccessDecision.allow()
        if actor.role == Role.STUDENT:
            return self._check_owner(actor, student_id)
        if actor.role == Role.ADVISOR:
            return self._check_advisor(actor, student_id)
        return AccessDecision.deny(DenyReason.ROLE_NOT_PERMITTED)

    def check_identity(self, actor: Actor) -> AccessDecision:
        """The claimed role must be the active role the user directory holds."""
        registered = self._users.role_of(actor.user_id)
        if registered is None:
            return AccessDecision.deny(DenyReason.ENTITY_NOT_FOUND)
        if registered != actor.role:
            return AccessDecision.deny(DenyReason.ROLE_NOT_PERMITTED)
        return AccessDecision.allow()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _evaluate(
        self,
        action: Action,
        actor: Actor,
        owner_id: str,
        record_id: Optional[str],
    ) -> AccessDecision:
        decision = self._decide(action, actor, owner_id)
        if not decision.allowed:
            logger.info(
                "access_denied",
                action=action.value,
                role=actor.role.value,
                user_id=actor.user_id,
                record_id=record_id,
                reason=decision.reason.value if decision.reason else None,
            )
        return decision

    def _decide(self, action: Action, actor: Actor, owner_id: str) -> AccessDecision:
        # 0. Claimed role must match the directory, admins included
        identity = self.check_identity(actor)
        if not identity.allowed:
            return identity

        if actor.role == Role.ADMIN:
            return AccessDecision.allow()

        # 1. Role must be allowed this action at all
        if action not in self._resolver.allowed_actions(actor.role):
            return AccessDecision.deny(DenyReason.ROLE_NOT_PERMITTED)

        # 2. Role must hold the capability in the permission directory
        if not self._users.has_permission(actor.role, self._resolver.permission_for(action)):
            return AccessDecision.deny(DenyReason.ROLE_NOT_PERMITTED)

        # 3. Relationship to the submission owner
        if actor.role == Role.STUDENT:
            return self._check_owner(actor, owner_id)
        if actor.role == Role.ADVISOR:
            return self._check_advisor(actor, owner_id)
        return AccessDecision.deny(DenyReason.ROLE_NOT_PERMITTED)

    def _check_owner(self, actor: Actor, owner_id: str) -> AccessDecision:
        student = self._academics.student_by_user(actor.user_id)
        if student is None:
            return AccessDecision.deny(DenyReason.ENTITY_NOT_FOUND)
        if student.student_id != owner_id:
            return AccessDecision.deny(DenyReason.NOT_OWNER)
        return AccessDecision.allow()

    def _check_advisor(self, actor: Actor, owner_id: str) -> AccessDecision:
        # Two lookups; either coming back empty denies
        lecturer = self._academics.lecturer_by_user(actor.user_id)
        if lecturer is None:
            return AccessDecision.deny(DenyReason.ENTITY_NOT_FOUND)
        student = self._academics.student(owner_id)
        if student is None:
            return AccessDecision.deny(DenyReason.ENTITY_NOT_FOUND)
        if student.advisor_id != lecturer.lecturer_id:
            return AccessDecision.deny(DenyReason.NOT_ADVISOR)
        return AccessDecision.allow()
