"""Directory module — user/role/permission and student/lecturer lookups."""

from achievements.directory.registry import AcademicDirectory, UserDirectory

__all__ = ["AcademicDirectory", "UserDirectory"]
