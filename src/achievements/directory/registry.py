"""Directory registries — the lookups the workflow engine consumes.

Two independent directories:
- UserDirectory: users, their single role, and each role's permission set
  (``resource:action`` capabilities).
- AcademicDirectory: student and lecturer profiles and the student → advisor
  edge used for relationship-scoped authorization.

The engine only reads from these. Registration exists so an embedding
application (or a test) can populate them.

Invariants enforced:
- A user has exactly one role.
- A student has at most one advisor, and that advisor must be a registered
  lecturer at the time the edge is set.
- Blank identifiers are rejected.
"""

from __future__ import annotations

import threading
from typing import Iterable, Optional

from achievements.models.directory import (
    LecturerProfile,
    PermissionGrant,
    Role,
    StudentProfile,
    UserAccount,
)


def _canonical(identifier: str, what: str) -> str:
    canonical = identifier.strip()
    if not canonical:
        raise ValueError(f"Cannot register {what} with blank ID")
    return canonical


class UserDirectory:
    """Registry of users, roles, and role permissions."""

    def __init__(self) -> None:
        self._users: dict[str, UserAccount] = {}
        self._role_permissions: dict[Role, set[str]] = {role: set() for role in Role}
        self._lock = threading.RLock()

    def register_user(self, user: UserAccount) -> None:
        """Register a new user or replace an existing one.

        Raises ValueError if user_id is blank.
        """
        with self._lock:
            user.user_id = _canonical(user.user_id, "user")
            self._users[user.user_id] = user

    def get_user(self, user_id: str) -> Optional[UserAccount]:
        with self._lock:
            return self._users.get(user_id.strip())

    def role_of(self, user_id: str) -> Optional[Role]:
        """Return the user's role, or None for unknown or inactive users."""
        user = self.get_user(user_id)
        if user is None or not user.is_active:
            return None
        return user.role

    def grant(self, role: Role, permissions: Iterable[str]) -> None:
        """Add ``resource:action`` permissions to a role."""
        with self._lock:
            for name in permissions:
                self._role_permissions[role].add(PermissionGrant.parse(name).name)

    def revoke(self, role: Role, permission: str) -> None:
        with self._lock:
            self._role_permissions[role].discard(permission)

    def permissions_for(self, role: Role) -> frozenset[str]:
        """Capability lookup: role → {resource:action}."""
        with self._lock:
            return frozenset(self._role_permissions[role])

    def has_permission(self, role: Role, permission: PermissionGrant) -> bool:
        return permission.name in self.permissions_for(role)

    @property
    def count(self) -> int:
        return len(self._users)


class AcademicDirectory:
    """Registry of student and lecturer profiles.

    Students are keyed by student_id, lecturers by lecturer_id; both can
    also be resolved from the owning user_id.
    """

    def __init__(self) -> None:
        self._students: dict[str, StudentProfile] = {}
        self._lecturers: dict[str, LecturerProfile] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_lecturer(self, lecturer: LecturerProfile) -> None:
        with self._lock:
            lecturer.lecturer_id = _canonical(lecturer.lecturer_id, "lecturer")
            lecturer.user_id = _canonical(lecturer.user_id, "lecturer user")
            self._lecturers[lecturer.lecturer_id] = lecturer

    def register_student(self, student: StudentProfile) -> None:
        """Register a student.

        Raises ValueError if the IDs are blank or the advisor is unknown.
        """
        with self._lock:
            student.student_id = _canonical(student.student_id, "student")
            student.user_id = _canonical(student.user_id, "student user")
            if student.advisor_id is not None and student.advisor_id not in self._lecturers:
                raise ValueError(f"Unknown advisor: {student.advisor_id}")
            self._students[student.student_id] = student

    def assign_advisor(self, student_id: str, lecturer_id: Optional[str]) -> None:
        """Set (or clear, with None) the single advisor edge of a student."""
        with self._lock:
            student = self._students.get(student_id)
            if student is None:
                raise ValueError(f"Unknown student: {student_id}")
            if lecturer_id is not None and lecturer_id not in self._lecturers:
                raise ValueError(f"Unknown advisor: {lecturer_id}")
            student.advisor_id = lecturer_id

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def student(self, student_id: str) -> Optional[StudentProfile]:
        with self._lock:
            return self._students.get(student_id.strip())

    def student_by_user(self, user_id: str) -> Optional[StudentProfile]:
        with self._lock:
            uid = user_id.strip()
            for s in self._students.values():
                if s.user_id == uid:
                    return s
            return None

    def lecturer(self, lecturer_id: str) -> Optional[LecturerProfile]:
        with self._lock:
            return self._lecturers.get(lecturer_id.strip())

    def lecturer_by_user(self, user_id: str) -> Optional[LecturerProfile]:
        with self._lock:
            uid = user_id.strip()
            for lec in self._lecturers.values():
                if lec.user_id == uid:
                    return lec
            return None

    def advisees(self, lecturer_id: str) -> list[StudentProfile]:
        """Return every student whose advisor is this lecturer."""
        with self._lock:
            return [s for s in self._students.values() if s.advisor_id == lecturer_id]

    def all_students(self) -> list[StudentProfile]:
        with self._lock:
            return list(self._students.values())
