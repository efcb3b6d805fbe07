"""
launchprep.services.progression_service — Stage Progression Engine
===================================================================

Owns every write to ``stage_progress``.  Each public operation is one
transaction in which achievement grants and the level change they belong
to commit together, so a retry after any failure replays the whole unit:

1. Lock the user's ``user_launch_status`` row.
2. Skip if the user is awaiting a delegated setup (paused).
3. Walk the missing levels in increasing order — grant the achievement,
   then raise the level.
4. Append a (non-authoritative) points ledger row per level gained.

Points are never stored; they are derived from the level through
:mod:`launchprep.engine.thresholds`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from launchprep.constants import INHERITED_GUIDANCE_LEVEL, STAGE_ORDER
from launchprep.database.engine import get_session
from launchprep.database.models import (
    AchievementSource,
    CurrentStage,
    PointsLedgerEntry,
    Stage,
    StageProgress,
    TeamRole,
    User,
)
from launchprep.engine import thresholds
from launchprep.engine.progression import (
    StageSnapshot,
    check_level_action,
    inherited_guidance_keys,
    is_ready_for_final_stage,
    is_unlocked,
    levels_to_grant,
    should_inherit_guidance,
    total_points,
)
from launchprep.errors import InvalidTransition, TransientIOError
from launchprep.services import achievement_ledger
from launchprep.services.launch_status import get_or_create_launch_status, lock_launch_status

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class ProgressionResult:
    """Outcome of one reconcile / completion call."""

    user_id: str
    stage: Stage
    previous_level: int
    level: int
    granted: list[str] = field(default_factory=list)
    paused: bool = False
    skipped: bool = False

    @property
    def leveled_up(self) -> bool:
        return self.level > self.previous_level

    @property
    def points_earned(self) -> int:
        return thresholds.points_for_level(self.stage, self.level)

    @property
    def points_delta(self) -> int:
        return self.points_earned - thresholds.points_for_level(self.stage, self.previous_level)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "stage": self.stage.value,
            "previous_level": self.previous_level,
            "level": self.level,
            "granted": list(self.granted),
            "points_earned": self.points_earned,
            "points_delta": self.points_delta,
            "paused": self.paused,
            "skipped": self.skipped,
        }


@dataclass(slots=True)
class ProgressSnapshot:
    """Everything the launch flow needs to render one user's progress."""

    user_id: str
    stages: dict[Stage, StageSnapshot]
    current_stage: str
    has_seen_onboarding: bool
    awaiting_team_setup: bool
    is_setup_admin: bool
    is_launched: bool

    @property
    def unlocked(self) -> dict[Stage, bool]:
        levels = {stage: snap.level for stage, snap in self.stages.items()}
        return {stage: is_unlocked(stage, levels) for stage in STAGE_ORDER}

    @property
    def ready_for_launch(self) -> bool:
        return is_ready_for_final_stage(
            self.stages[Stage.FUEL],
            self.stages[Stage.BOOSTERS],
            self.stages[Stage.GUIDANCE],
        )

    @property
    def total_points(self) -> int:
        return total_points(self.stages.values())

    def to_dict(self) -> dict:
        unlocked = self.unlocked
        return {
            "user_id": self.user_id,
            "stages": {
                stage.value: {**snap.to_dict(), "unlocked": unlocked[stage]}
                for stage, snap in self.stages.items()
            },
            "current_stage": self.current_stage,
            "has_seen_onboarding": self.has_seen_onboarding,
            "awaiting_team_setup": self.awaiting_team_setup,
            "is_setup_admin": self.is_setup_admin,
            "is_launched": self.is_launched,
            "ready_for_launch": self.ready_for_launch,
            "total_points": self.total_points,
        }


# ---------------------------------------------------------------------------
# Session-level helpers
# ---------------------------------------------------------------------------
def get_or_create_progress(session: Session, user_id: str, stage: Stage) -> StageProgress:
    """Fetch or insert the ``stage_progress`` row (level 0 on first access)."""
    progress = session.get(StageProgress, (user_id, stage.value))
    if progress is None:
        progress = StageProgress(user_id=user_id, stage=stage.value, level=0)
        session.add(progress)
        session.flush()
    return progress


def load_snapshots(session: Session, user_id: str) -> dict[Stage, StageSnapshot]:
    """Current level + achievements for all three stages."""
    rows = session.scalars(
        select(StageProgress).where(StageProgress.user_id == user_id)
    ).all()
    levels = {row.stage: row.level for row in rows}
    return {
        stage: StageSnapshot(
            stage=stage,
            level=levels.get(stage.value, 0),
            achievements=achievement_ledger.achievements_for(session, user_id, stage),
        )
        for stage in STAGE_ORDER
    }


def _raise_level(
    session: Session,
    progress: StageProgress,
    stage: Stage,
    level: int,
    source: AchievementSource,
    granted: list[str],
) -> None:
    """Grant ``{stage}_level_{level}`` then set the stored level to *level*.

    Callers pass levels one at a time in increasing order.
    """
    threshold = thresholds.get(stage, level)
    key = threshold.achievement_key
    if achievement_ledger.grant(session, progress.user_id, stage, key, source=source):
        granted.append(key)
    progress.level = level
    session.add(PointsLedgerEntry(
        user_id=progress.user_id,
        stage=stage.value,
        points=threshold.points_value,
        reason=key,
        reason_display=threshold.description,
        metadata_={"source": source.value},
    ))
    logger.info(
        "Level up: user=%s stage=%s → %d (+%d pts)",
        progress.user_id, stage.value, level, threshold.points_value,
    )


def reset_progress(session: Session, user_id: str) -> int:
    """Reset every stage for *user_id* to level 0 with no achievements.

    Returns the point total that was wiped.  Used only by the delegation
    workflow.
    """
    snapshots = load_snapshots(session, user_id)
    wiped = total_points(snapshots.values())

    session.execute(
        update(StageProgress)
        .where(StageProgress.user_id == user_id)
        .values(level=0)
    )
    removed = achievement_ledger.reset(session, user_id)

    status = get_or_create_launch_status(session, user_id)
    status.current_stage = CurrentStage.FUEL.value
    status.is_launched = False
    status.launched_at = None

    session.add(PointsLedgerEntry(
        user_id=user_id,
        stage=None,
        points=-wiped,
        reason="progress_reset",
        reason_display="Setup delegated to a new admin",
        metadata_={"achievements_removed": removed},
    ))
    logger.info(
        "Progress reset for user %s (%d pts, %d achievements)", user_id, wiped, removed,
    )
    return wiped


# ---------------------------------------------------------------------------
# Reconcile (fuel)
# ---------------------------------------------------------------------------
def reconcile(
    engine: Engine,
    user_id: str,
    stage: Stage | str,
    computed_level: int | None,
) -> ProgressionResult:
    """Bring the stored level up to *computed_level*, one level at a time.

    ``computed_level=None`` means the counters were unknown: nothing is
    written.  A computed level below the stored one is ignored.
    """
    stage = Stage(stage)
    if stage != Stage.FUEL:
        raise InvalidTransition(
            f"{stage.value} levels are earned through actions, not reconciled."
        )

    try:
        with get_session(engine) as session:
            status = lock_launch_status(session, user_id)
            progress = get_or_create_progress(session, user_id, stage)
            result = ProgressionResult(
                user_id=user_id,
                stage=stage,
                previous_level=progress.level,
                level=progress.level,
            )

            if status.awaiting_team_setup:
                logger.debug("Reconcile paused for %s (awaiting team setup)", user_id)
                result.paused = True
                return result

            if computed_level is None:
                result.skipped = True
                return result

            for level in levels_to_grant(progress.level, computed_level):
                _raise_level(
                    session, progress, stage, level, AchievementSource.RECONCILED, result.granted,
                )
            result.level = progress.level
            return result
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Reconcile failed for user {user_id}") from exc


# ---------------------------------------------------------------------------
# Discrete actions (boosters, guidance)
# ---------------------------------------------------------------------------
def complete_level_action(
    engine: Engine,
    user_id: str,
    stage: Stage | str,
    target_level: int,
) -> ProgressionResult:
    """Record the achievement for *target_level* and advance to it.

    A target at or below the current level is a no-op.
    """
    stage = Stage(stage)
    try:
        with get_session(engine) as session:
            user = session.get(User, user_id)
            if user is None:
                raise InvalidTransition(f"Unknown user {user_id}.")

            status = lock_launch_status(session, user_id)
            progress = get_or_create_progress(session, user_id, stage)
            result = ProgressionResult(
                user_id=user_id,
                stage=stage,
                previous_level=progress.level,
                level=progress.level,
            )

            if status.awaiting_team_setup:
                result.paused = True
                return result

            key = thresholds.achievement_key(stage, target_level)
            advance = check_level_action(
                stage,
                progress.level,
                target_level,
                already_granted=achievement_ledger.has(session, user_id, stage, key),
                is_admin=user.is_admin,
            )
            if advance:
                _raise_level(
                    session, progress, stage, target_level, AchievementSource.EARNED, result.granted,
                )
            result.level = progress.level
            return result
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Completing {stage.value} level failed for {user_id}") from exc


def complete_achievement(
    engine: Engine, user_id: str, stage: Stage | str, key: str,
) -> ProgressionResult:
    """Complete the action behind achievement *key* (``{stage}_level_{n}``)."""
    stage = Stage(stage)
    parsed = thresholds.parse_achievement_key(key)
    if parsed is None or parsed[0] != stage:
        raise InvalidTransition(f"'{key}' is not a {stage.value} achievement.")
    return complete_level_action(engine, user_id, stage, parsed[1])


def advance_level(
    engine: Engine, user_id: str, stage: Stage | str, target_level: int,
) -> ProgressionResult:
    """Advance *stage* to *target_level*; never lowers the level.

    The level's achievement is recorded in the same transaction.
    """
    return complete_level_action(engine, user_id, stage, target_level)


# ---------------------------------------------------------------------------
# Member inherits admin guidance
# ---------------------------------------------------------------------------
def _team_admin_guidance_level(session: Session, team_id: str) -> int:
    levels = session.scalars(
        select(StageProgress.level)
        .join(User, User.id == StageProgress.user_id)
        .where(
            User.team_id == team_id,
            User.role == TeamRole.ADMIN.value,
            StageProgress.stage == Stage.GUIDANCE.value,
        )
    ).all()
    return max(levels, default=0)


def inherit_admin_guidance(engine: Engine, member_user_id: str) -> ProgressionResult:
    """Raise a member's guidance level to 2 once their team admin has it.

    Runs at most once per member: as soon as the member holds level 2
    this is a no-op, and it never lowers a level.
    """
    try:
        with get_session(engine) as session:
            member = session.get(User, member_user_id)
            if member is None:
                raise InvalidTransition(f"Unknown user {member_user_id}.")

            status = lock_launch_status(session, member_user_id)
            progress = get_or_create_progress(session, member_user_id, Stage.GUIDANCE)
            result = ProgressionResult(
                user_id=member_user_id,
                stage=Stage.GUIDANCE,
                previous_level=progress.level,
                level=progress.level,
            )

            if member.is_admin or member.team_id is None:
                return result
            if status.awaiting_team_setup:
                result.paused = True
                return result

            admin_level = _team_admin_guidance_level(session, member.team_id)
            if not should_inherit_guidance(progress.level, admin_level):
                return result

            for key in sorted(inherited_guidance_keys()):
                if achievement_ledger.grant(
                    session, member_user_id, Stage.GUIDANCE, key,
                    source=AchievementSource.INHERITED,
                ):
                    result.granted.append(key)

            gained = (
                thresholds.points_for_level(Stage.GUIDANCE, INHERITED_GUIDANCE_LEVEL)
                - thresholds.points_for_level(Stage.GUIDANCE, progress.level)
            )
            progress.level = INHERITED_GUIDANCE_LEVEL
            session.add(PointsLedgerEntry(
                user_id=member_user_id,
                stage=Stage.GUIDANCE.value,
                points=gained,
                reason="guidance_inherited",
                reason_display="Team admin completed guidance setup",
                metadata_={"admin_level": admin_level},
            ))
            result.level = progress.level
            logger.info(
                "Member %s inherited guidance level %d from team %s",
                member_user_id, INHERITED_GUIDANCE_LEVEL, member.team_id,
            )
            return result
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Guidance sync failed for {member_user_id}") from exc


# ---------------------------------------------------------------------------
# Reads & launch status transitions
# ---------------------------------------------------------------------------
def get_progress(engine: Engine, user_id: str) -> ProgressSnapshot:
    try:
        with get_session(engine) as session:
            status = get_or_create_launch_status(session, user_id)
            return ProgressSnapshot(
                user_id=user_id,
                stages=load_snapshots(session, user_id),
                current_stage=status.current_stage,
                has_seen_onboarding=status.has_seen_onboarding,
                awaiting_team_setup=status.awaiting_team_setup,
                is_setup_admin=status.is_setup_admin,
                is_launched=status.is_launched,
            )
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not load progress for {user_id}") from exc


def mark_onboarding_seen(engine: Engine, user_id: str) -> None:
    try:
        with get_session(engine) as session:
            get_or_create_launch_status(session, user_id).has_seen_onboarding = True
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not update onboarding flag for {user_id}") from exc


def set_current_stage(engine: Engine, user_id: str, stage: CurrentStage | str) -> str:
    """Navigate to *stage*; locked stages and an unmet launch gate are rejected."""
    stage = CurrentStage(stage)
    try:
        with get_session(engine) as session:
            status = lock_launch_status(session, user_id)
            if status.is_launched:
                raise InvalidTransition("Launch preparation is already complete.")

            snapshots = load_snapshots(session, user_id)
            if stage == CurrentStage.LAUNCHED:
                raise InvalidTransition("Use launch to finish launch preparation.")
            if stage == CurrentStage.READY:
                if not is_ready_for_final_stage(
                    snapshots[Stage.FUEL], snapshots[Stage.BOOSTERS], snapshots[Stage.GUIDANCE],
                ):
                    raise InvalidTransition("Minimum launch requirements are not met yet.")
            else:
                levels = {s: snap.level for s, snap in snapshots.items()}
                if not is_unlocked(Stage(stage.value), levels):
                    raise InvalidTransition(f"The {stage.value} stage is still locked.")

            status.current_stage = stage.value
            return status.current_stage
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not change stage for {user_id}") from exc


def launch(engine: Engine, user_id: str) -> bool:
    """Finish launch preparation.  Returns False if already launched."""
    try:
        with get_session(engine) as session:
            status = lock_launch_status(session, user_id)
            if status.is_launched:
                return False

            snapshots = load_snapshots(session, user_id)
            if not is_ready_for_final_stage(
                snapshots[Stage.FUEL], snapshots[Stage.BOOSTERS], snapshots[Stage.GUIDANCE],
            ):
                raise InvalidTransition("Minimum launch requirements are not met yet.")

            status.is_launched = True
            status.launched_at = datetime.now(UTC)
            status.current_stage = CurrentStage.LAUNCHED.value
            session.add(PointsLedgerEntry(
                user_id=user_id,
                stage=None,
                points=0,
                reason="launched",
                reason_display="Launch preparation complete",
                metadata_={"total_points": total_points(snapshots.values())},
            ))
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not launch for {user_id}") from exc

    logger.info("User %s launched", user_id)
    return True


def get_ledger(engine: Engine, user_id: str, limit: int = 50) -> list[dict]:
    """Most recent points ledger rows (activity feed, newest first)."""
    try:
        with Session(engine) as session:
            rows = session.scalars(
                select(PointsLedgerEntry)
                .where(PointsLedgerEntry.user_id == user_id)
                .order_by(PointsLedgerEntry.created_at.desc(), PointsLedgerEntry.id.desc())
                .limit(limit)
            ).all()
            return [
                {
                    "stage": r.stage,
                    "points": r.points,
                    "reason": r.reason,
                    "reason_display": r.reason_display,
                    "created_at": r.created_at.isoformat() if r.created_at else None,
                }
                for r in rows
            ]
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not load points ledger for {user_id}") from exc
