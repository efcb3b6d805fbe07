"""
launchprep.services.launch_status — Per-User Launch Status Row
===============================================================

Session-level helpers for ``user_launch_status``.  The row is created
lazily on first access.  :func:`lock_launch_status` takes a row lock so
that a delegation cancel and an in-flight reconcile for the same user are
serialized.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from launchprep.database.models import CurrentStage, LaunchStatus


def get_or_create_launch_status(session: Session, user_id: str) -> LaunchStatus:
    """Fetch or insert the launch status row for *user_id*."""
    status = session.get(LaunchStatus, user_id)
    if status is None:
        status = LaunchStatus(
            user_id=user_id,
            current_stage=CurrentStage.FUEL.value,
            has_seen_onboarding=False,
            awaiting_team_setup=False,
            is_setup_admin=False,
            is_launched=False,
        )
        try:
            with session.begin_nested():
                session.add(status)
                session.flush()
        except IntegrityError:
            status = session.get(LaunchStatus, user_id)
    return status


def lock_launch_status(session: Session, user_id: str) -> LaunchStatus:
    """Like :func:`get_or_create_launch_status` but ``SELECT … FOR UPDATE``.

    The returned row reflects the latest committed state, so a flag
    cleared or set by another transaction is seen here.
    """
    get_or_create_launch_status(session, user_id)
    return session.scalars(
        select(LaunchStatus)
        .where(LaunchStatus.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).one()


def is_awaiting_setup(session: Session, user_id: str) -> bool:
    status = session.get(LaunchStatus, user_id)
    return bool(status and status.awaiting_team_setup)
