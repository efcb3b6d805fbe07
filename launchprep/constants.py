"""
launchprep.constants — Shared Constants & Helpers
==================================================

Single source of truth for stage ordering, the launch gate, and point
formatting.  Import from here instead of duplicating in services and
API routes.
"""

from __future__ import annotations

import math

from launchprep.database.models import Stage

# ---------------------------------------------------------------------------
# Stage ordering
# ---------------------------------------------------------------------------
STAGE_ORDER: tuple[Stage, ...] = (Stage.FUEL, Stage.BOOSTERS, Stage.GUIDANCE)

MIN_LEVEL = 0
MAX_LEVEL = 5

# ---------------------------------------------------------------------------
# Launch gate: minimum level per stage before "ready to launch"
# ---------------------------------------------------------------------------
LAUNCH_MINIMUMS: dict[Stage, int] = {
    Stage.FUEL: 1,
    Stage.BOOSTERS: 4,
    Stage.GUIDANCE: 2,
}

# Guidance levels a member inherits once the team admin reaches them.
INHERITED_GUIDANCE_LEVEL = 2

# ---------------------------------------------------------------------------
# Delegation
# ---------------------------------------------------------------------------
INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_LENGTH = 8
DEFAULT_INVITE_EXPIRY_DAYS = 7
SELF_SETUP_CANCELLATION_REASON = "User chose to complete setup themselves"

# ---------------------------------------------------------------------------
# Fuel counter refresh
# ---------------------------------------------------------------------------
DEFAULT_FUEL_CACHE_SECONDS = 30


def stage_index(stage: Stage) -> int:
    """Position of *stage* in :data:`STAGE_ORDER` (fuel = 0)."""
    return STAGE_ORDER.index(Stage(stage))


def format_points(points: int) -> str:
    """Render a point total for display (``1,250 pts``)."""
    return f"{points:,} pts"


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (``2.5 → 3``).

    Python's :func:`round` uses banker's rounding, which would show
    ``2.5%`` as ``2%``.
    """
    return math.floor(value + 0.5)
