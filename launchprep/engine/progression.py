"""
launchprep.engine.progression — Stage Progression Rules
========================================================

Pure module — no DB, no I/O.  Everything here is a function of the three
stage levels (plus achievement keys), which keeps unlock and readiness
decisions free of hidden state.  The persistence side lives in
:mod:`launchprep.services.progression_service`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from launchprep.constants import (
    INHERITED_GUIDANCE_LEVEL,
    LAUNCH_MINIMUMS,
    MAX_LEVEL,
    STAGE_ORDER,
    stage_index,
)
from launchprep.database.models import Stage
from launchprep.engine import thresholds
from launchprep.errors import InvalidTransition


@dataclass(frozen=True, slots=True)
class StageSnapshot:
    """Read-only view of one stage's progress for one user."""

    stage: Stage
    level: int = 0
    achievements: frozenset[str] = field(default_factory=frozenset)

    @property
    def points_earned(self) -> int:
        return thresholds.points_for_level(self.stage, self.level)

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "level": self.level,
            "achievements": sorted(self.achievements),
            "points_earned": self.points_earned,
        }


# ---------------------------------------------------------------------------
# Unlock & readiness
# ---------------------------------------------------------------------------
def is_unlocked(stage: Stage | str, levels: Mapping[Stage, int]) -> bool:
    """True when every stage ordered before *stage* has level ≥ 1.

    Fuel is always unlocked.  Missing stages count as level 0.
    """
    idx = stage_index(Stage(stage))
    return all(levels.get(prior, 0) >= 1 for prior in STAGE_ORDER[:idx])


def is_ready_for_final_stage(
    fuel: StageSnapshot,
    boosters: StageSnapshot,
    guidance: StageSnapshot,
) -> bool:
    """The single gate for the "ready to launch" state."""
    return (
        fuel.level >= LAUNCH_MINIMUMS[Stage.FUEL]
        and boosters.level >= LAUNCH_MINIMUMS[Stage.BOOSTERS]
        and guidance.level >= LAUNCH_MINIMUMS[Stage.GUIDANCE]
    )


def total_points(snapshots: Iterable[StageSnapshot]) -> int:
    return sum(s.points_earned for s in snapshots)


# ---------------------------------------------------------------------------
# Reconcile planning (fuel)
# ---------------------------------------------------------------------------
def levels_to_grant(stored_level: int, computed_level: int | None) -> list[int]:
    """Levels to walk, in order, to bring *stored_level* up to *computed_level*.

    Empty when the computed level is unknown or not above the stored one;
    the stored level is a ratchet and never follows counters down.
    """
    if computed_level is None:
        return []
    target = min(computed_level, MAX_LEVEL)
    if target <= stored_level:
        return []
    return list(range(stored_level + 1, target + 1))


# ---------------------------------------------------------------------------
# Discrete level actions (boosters, guidance)
# ---------------------------------------------------------------------------
def check_level_action(
    stage: Stage,
    current_level: int,
    target_level: int,
    *,
    already_granted: bool,
    is_admin: bool,
) -> bool:
    """Decide whether completing *target_level* should advance the stage.

    Returns ``True`` to advance, ``False`` for an idempotent no-op, and
    raises :class:`InvalidTransition` when the request can never succeed
    from the current state.

    A stage at level 5 rejects any completion whose achievement was never
    granted.  Re-completing an already granted level, including on a
    stage at level 5, is a retry and returns ``False`` rather than
    raising.
    """
    if stage == Stage.FUEL:
        raise InvalidTransition(
            "Fuel levels are computed from synced documents and cannot be completed manually."
        )

    threshold = thresholds.get(stage, target_level)
    if threshold is None:
        raise InvalidTransition(f"{stage.value} has no level {target_level}.")

    if target_level <= current_level:
        # Retried completions of a granted level stay no-ops; a fresh key on
        # a finished stage is rejected.
        if current_level >= MAX_LEVEL and not already_granted:
            raise InvalidTransition(f"{stage.value} is already at level {MAX_LEVEL}.")
        return False

    if target_level != current_level + 1:
        raise InvalidTransition(
            f"Complete {stage.value} level {current_level + 1} before level {target_level}."
        )

    if threshold.admin_only and not is_admin:
        raise InvalidTransition(
            f"{stage.value} level {target_level} is completed by your team admin."
        )

    return True


# ---------------------------------------------------------------------------
# Member inherits admin guidance
# ---------------------------------------------------------------------------
def should_inherit_guidance(member_level: int, admin_level: int) -> bool:
    """One-way, one-time catch-up for non-admin members."""
    return (
        admin_level >= INHERITED_GUIDANCE_LEVEL
        and member_level < INHERITED_GUIDANCE_LEVEL
    )


def inherited_guidance_keys() -> frozenset[str]:
    return frozenset(
        thresholds.achievement_key(Stage.GUIDANCE, lvl)
        for lvl in range(1, INHERITED_GUIDANCE_LEVEL + 1)
    )
