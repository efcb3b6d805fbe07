"""
launchprep.services.achievement_ledger — Idempotent Achievement Grants
=======================================================================

One row per (user, stage, achievement key).  Granting an existing key is
a no-op, not an error: the primary key rejects the duplicate inside a
SAVEPOINT and the outer transaction carries on.

All functions take an open :class:`Session` so grants commit together
with the level change they belong to.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from launchprep.database.models import AchievementSource, Stage, StageAchievement

logger = logging.getLogger(__name__)


def has(session: Session, user_id: str, stage: Stage | str, key: str) -> bool:
    """True if *user_id* already holds *key* for *stage*."""
    return session.get(StageAchievement, (user_id, Stage(stage).value, key)) is not None


def achievements_for(session: Session, user_id: str, stage: Stage | str) -> frozenset[str]:
    rows = session.scalars(
        select(StageAchievement.achievement_key).where(
            StageAchievement.user_id == user_id,
            StageAchievement.stage == Stage(stage).value,
        )
    ).all()
    return frozenset(rows)


def grant(
    session: Session,
    user_id: str,
    stage: Stage | str,
    key: str,
    *,
    source: AchievementSource = AchievementSource.EARNED,
) -> bool:
    """Record *key* for *user_id*.  Returns True if newly applied."""
    stage = Stage(stage)
    if has(session, user_id, stage, key):
        return False

    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(StageAchievement(
                user_id=user_id,
                stage=stage.value,
                achievement_key=key,
                source=source.value,
            ))
            session.flush()
    except IntegrityError:
        # Lost a race with a concurrent retry; the row exists either way.
        logger.debug("Achievement %s already granted to %s", key, user_id)
        return False

    logger.info("Achievement granted: user=%s key=%s (%s)", user_id, key, source.value)
    return True


def reset(session: Session, user_id: str) -> int:
    """Remove every achievement for *user_id*.  Returns rows deleted.

    Only the delegation workflow calls this, when a user hands setup to
    someone else.
    """
    result = session.execute(
        delete(StageAchievement).where(StageAchievement.user_id == user_id)
    )
    return result.rowcount or 0
