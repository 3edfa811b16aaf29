"""Shared fixtures: shipped policy, a populated directory, a ticking clock."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from achievements.directory.registry import AcademicDirectory, UserDirectory
from achievements.models.directory import (
    Actor,
    LecturerProfile,
    Role,
    StudentProfile,
    UserAccount,
)
from achievements.models.submission import (
    AchievementCategory,
    AchievementDetails,
    ContentDraft,
)
from achievements.policy.resolver import PolicyResolver
from achievements.service import WorkflowService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

ADMIN = Actor("u-admin", Role.ADMIN)
ANA = Actor("u-ana", Role.STUDENT)        # STU-1, advised by LEC-1
BUDI = Actor("u-budi", Role.STUDENT)      # STU-2, advised by LEC-2
DEWI = Actor("u-dewi", Role.ADVISOR)      # LEC-1
EKO = Actor("u-eko", Role.ADVISOR)        # LEC-2


class TickingClock:
    """Deterministic clock: every call is one second after the last."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)) -> None:
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def grant_policy_permissions(users: UserDirectory, resolver: PolicyResolver) -> None:
    """Give every role the directory capabilities its policy actions need."""
    for role in Role:
        names = {resolver.permission_for(a).name for a in resolver.allowed_actions(role)}
        users.grant(role, names)


def competition(level: str = "international", rank: int = 1, title: str = "Robot Contest") -> ContentDraft:
    return ContentDraft(
        category=AchievementCategory.COMPETITION,
        title=title,
        details=AchievementDetails(
            competition_name=title,
            competition_level=level,
            rank=rank,
        ),
    )


def publication(title: str = "Paper on graphs") -> ContentDraft:
    return ContentDraft(
        category=AchievementCategory.PUBLICATION,
        title=title,
        details=AchievementDetails(publication_title=title, authors=["Ana"]),
    )


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def users(resolver: PolicyResolver) -> UserDirectory:
    directory = UserDirectory()
    for actor, name in (
        (ADMIN, "Admin"), (ANA, "Ana"), (BUDI, "Budi"), (DEWI, "Dewi"), (EKO, "Eko"),
    ):
        directory.register_user(UserAccount(
            user_id=actor.user_id,
            username=actor.user_id.removeprefix("u-"),
            full_name=name,
            role=actor.role,
        ))
    grant_policy_permissions(directory, resolver)
    return directory


@pytest.fixture
def academics() -> AcademicDirectory:
    directory = AcademicDirectory()
    directory.register_lecturer(LecturerProfile("LEC-1", "u-dewi", "Informatics"))
    directory.register_lecturer(LecturerProfile("LEC-2", "u-eko", "Mathematics"))
    directory.register_student(StudentProfile(
        "STU-1", "u-ana", full_name="Ana", program_study="Informatics",
        academic_year="2024", advisor_id="LEC-1",
    ))
    directory.register_student(StudentProfile(
        "STU-2", "u-budi", full_name="Budi", program_study="Mathematics",
        academic_year="2023", advisor_id="LEC-2",
    ))
    return directory


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def service(
    resolver: PolicyResolver,
    users: UserDirectory,
    academics: AcademicDirectory,
    clock: TickingClock,
) -> WorkflowService:
    return WorkflowService(resolver, users, academics, clock=clock)
