"""Directory data models — users, roles, permissions, students, lecturers.

These mirror what the external User/Role/Permission and Student/Lecturer
directories expose to the workflow engine. The engine only reads them.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class Role(str, enum.Enum):
    """Tagged role variant. Every authorization rule switches on this."""
    ADMIN = "admin"
    STUDENT = "student"
    ADVISOR = "advisor"


class Action(str, enum.Enum):
    """Workflow actions subject to access control."""
    CREATE = "create"
    UPDATE_DRAFT = "update-draft"
    SUBMIT = "submit"
    DELETE_DRAFT = "delete-draft"
    VERIFY = "verify"
    REJECT = "reject"
    READ = "read"


@dataclass(frozen=True)
class PermissionGrant:
    """A named ``resource:action`` capability held by a role."""
    resource: str
    action: str

    @property
    def name(self) -> str:
        return f"{self.resource}:{self.action}"

    @staticmethod
    def parse(name: str) -> PermissionGrant:
        resource, sep, action = name.partition(":")
        if not sep or not resource or not action:
            raise ValueError(f"Permission must be 'resource:action', got {name!r}")
        return PermissionGrant(resource=resource, action=action)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a workflow operation."""
    user_id: str
    role: Role


@dataclass
class UserAccount:
    """A user with exactly one role."""
    user_id: str
    username: str
    full_name: str
    role: Role
    is_active: bool = True


@dataclass
class StudentProfile:
    """A student. ``advisor_id`` references LecturerProfile.lecturer_id."""
    student_id: str
    user_id: str
    full_name: str = ""
    program_study: str = ""
    academic_year: str = ""
    advisor_id: Optional[str] = None


@dataclass
class LecturerProfile:
    """A lecturer who may act as advisor for a set of students."""
    lecturer_id: str
    user_id: str
    department: str = ""
