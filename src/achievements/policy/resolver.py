"""Policy resolver — loads workflow_policy.json and exposes every runtime
decision as a typed method call.

No magic. No defaults. If a value is missing from the config, it fails loud.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from achievements.models.directory import Action, PermissionGrant, Role
from achievements.models.submission import CompetitionLevel


@dataclass(frozen=True)
class CompetitionScale:
    """Resolved scoring scale for a single competition level."""
    level: CompetitionLevel
    ranked: dict[int, int]
    floor: int

    def points_for(self, rank: int | None) -> int:
        """Ranked points for rank 1..n; the floor for any other rank."""
        if rank is None:
            return self.floor
        return self.ranked.get(rank, self.floor)


@dataclass(frozen=True)
class SyncPolicy:
    """Mirror retry and reconciliation settings."""
    max_retry_attempts: int
    reconcile_interval_seconds: float


class PolicyResolver:
    """Loads and resolves all workflow policy.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        actions = resolver.allowed_actions(Role.STUDENT)
        scale = resolver.competition_scale(CompetitionLevel.NATIONAL)
    """

    def __init__(self, policy: dict[str, Any]) -> None:
        self._policy = policy
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load from the canonical config directory."""
        return cls(_load_json(config_dir / "workflow_policy.json"))

    def _validate(self) -> None:
        if "version" not in self._policy:
            raise ValueError("workflow_policy.json missing version")
        for section in ("roles", "action_permissions", "scoring", "sync", "listing", "logging"):
            if section not in self._policy:
                raise ValueError(f"workflow_policy.json missing section: {section}")
        unknown = set(self._policy["action_permissions"]) - {a.value for a in Action}
        if unknown:
            raise ValueError(f"Unknown actions in action_permissions: {sorted(unknown)}")

    @property
    def version(self) -> str:
        return self._policy["version"]

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    def allowed_actions(self, role: Role) -> frozenset[Action]:
        """Return the actions a role may ever perform (relationship aside)."""
        names = self._policy["roles"].get(role.value)
        if names is None:
            return frozenset()
        return frozenset(Action(n) for n in names)

    def permission_for(self, action: Action) -> PermissionGrant:
        """Map an action to the directory capability that gates it."""
        name = self._policy["action_permissions"].get(action.value)
        if name is None:
            raise ValueError(f"No permission mapped for action: {action.value}")
        return PermissionGrant.parse(name)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def competition_scale(self, level: CompetitionLevel) -> CompetitionScale:
        """Get the points scale for a competition level."""
        table = self._policy["scoring"]["competition"]
        entry = table.get(level.value)
        if entry is None:
            raise ValueError(f"Unknown competition level: {level.value}")
        return CompetitionScale(
            level=level,
            ranked={int(rank): points for rank, points in entry["ranked"].items()},
            floor=entry["floor"],
        )

    def category_points(self) -> dict[str, int]:
        """Fixed points for categories scored without details."""
        return dict(self._policy["scoring"]["category_points"])

    def default_points(self) -> int:
        """Points awarded when a category or its inputs are unrecognised."""
        return self._policy["scoring"]["default_points"]

    # ------------------------------------------------------------------
    # Sync and reconciliation
    # ------------------------------------------------------------------

    def sync_policy(self) -> SyncPolicy:
        s = self._policy["sync"]
        return SyncPolicy(
            max_retry_attempts=s["max_retry_attempts"],
            reconcile_interval_seconds=float(s["reconcile_interval_seconds"]),
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def listing_limits(self) -> tuple[int, int]:
        """Return (default_limit, max_limit) for paginated listings."""
        lst = self._policy["listing"]
        return lst["default_limit"], lst["max_limit"]

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def logging_config(self) -> dict[str, Any]:
        """Return the logging section (level, json_output)."""
        return dict(self._policy["logging"])


def _load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file or raise with clear path."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)
