"""
launchprep.engine.thresholds — Static Per-Stage Level Table
============================================================

Pure module — no DB, no I/O.  Holds the requirements and point values for
every (stage, level) pair.  The table is immutable: lookups return frozen
:class:`LevelThreshold` values and unknown levels (0, or above 5) return
``None``.

Fuel levels are gated by document and category counts; Boosters and
Guidance levels are gated by one discrete user action each.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from launchprep.constants import MAX_LEVEL, MIN_LEVEL
from launchprep.database.models import Stage


@dataclass(frozen=True, slots=True)
class LevelThreshold:
    """Requirements and reward for reaching one level of a stage."""

    stage: Stage
    level: int
    description: str
    points_value: int
    documents_required: int = 0
    categories_required: int = 0
    action: str | None = None
    admin_only: bool = False
    coming_soon: bool = False

    @property
    def achievement_key(self) -> str:
        return achievement_key(self.stage, self.level)


# ---------------------------------------------------------------------------
# Table data
# ---------------------------------------------------------------------------
_FUEL = (
    LevelThreshold(Stage.FUEL, 1, "First document synced", 50,
                   documents_required=1, categories_required=0),
    LevelThreshold(Stage.FUEL, 2, "5+ documents, 2+ categories", 100,
                   documents_required=5, categories_required=2),
    LevelThreshold(Stage.FUEL, 3, "50+ documents, 5+ categories", 200,
                   documents_required=50, categories_required=5),
    LevelThreshold(Stage.FUEL, 4, "200+ documents, 8+ categories", 300,
                   documents_required=200, categories_required=8),
    LevelThreshold(Stage.FUEL, 5, "1000+ documents, 12+ categories", 500,
                   documents_required=1000, categories_required=12),
)

_BOOSTERS = (
    LevelThreshold(Stage.BOOSTERS, 1, "Use Guided Chat or send 5 prompts", 10,
                   action="guided_chat"),
    LevelThreshold(Stage.BOOSTERS, 2, "Create your first visualization", 20,
                   action="visualization"),
    LevelThreshold(Stage.BOOSTERS, 3, "Generate a manual report", 30,
                   action="manual_report"),
    LevelThreshold(Stage.BOOSTERS, 4, "Schedule a recurring report", 40,
                   action="scheduled_report"),
    LevelThreshold(Stage.BOOSTERS, 5, "Build an AI agent", 50,
                   action="ai_agent", coming_soon=True),
)

_GUIDANCE = (
    LevelThreshold(Stage.GUIDANCE, 1, "Configure team settings", 10,
                   action="team_settings", admin_only=True),
    LevelThreshold(Stage.GUIDANCE, 2, "Enable news preferences", 20,
                   action="news_preferences", admin_only=True),
    LevelThreshold(Stage.GUIDANCE, 3, "Invite a team member", 30,
                   action="invite_member", admin_only=True),
    LevelThreshold(Stage.GUIDANCE, 4, "Create an AI job", 40,
                   action="ai_job", coming_soon=True),
    LevelThreshold(Stage.GUIDANCE, 5, "Create a guidance document", 50,
                   action="guidance_document", coming_soon=True),
)

_TABLE: Mapping[Stage, tuple[LevelThreshold, ...]] = MappingProxyType({
    Stage.FUEL: _FUEL,
    Stage.BOOSTERS: _BOOSTERS,
    Stage.GUIDANCE: _GUIDANCE,
})

_KEY_RE = re.compile(r"^(fuel|boosters|guidance)_level_([1-5])$")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def get(stage: Stage | str, level: int) -> LevelThreshold | None:
    """Return the threshold for *(stage, level)* or ``None`` if not found."""
    if level <= MIN_LEVEL or level > MAX_LEVEL:
        return None
    return _TABLE[Stage(stage)][level - 1]


def levels(stage: Stage | str) -> tuple[LevelThreshold, ...]:
    """All thresholds for *stage*, ordered by level."""
    return _TABLE[Stage(stage)]


def points_for_level(stage: Stage | str, level: int) -> int:
    """Cumulative points for holding *level* in *stage*.

    Sum of ``points_value`` for every threshold ≤ *level*.  Level 0 is
    worth 0 points; levels above the table are capped.
    """
    capped = min(max(level, MIN_LEVEL), MAX_LEVEL)
    return sum(t.points_value for t in _TABLE[Stage(stage)][:capped])


def max_points(stage: Stage | str) -> int:
    return points_for_level(stage, MAX_LEVEL)


def achievement_key(stage: Stage | str, level: int) -> str:
    """Build the ``{stage}_level_{n}`` key for a level."""
    return f"{Stage(stage).value}_level_{level}"


def parse_achievement_key(key: str) -> tuple[Stage, int] | None:
    """Split an achievement key into ``(stage, level)``, or ``None``."""
    match = _KEY_RE.match(key)
    if match is None:
        return None
    return Stage(match.group(1)), int(match.group(2))
