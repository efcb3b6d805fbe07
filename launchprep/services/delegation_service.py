"""
launchprep.services.delegation_service — Setup Delegation Workflow
===================================================================

Hands setup of a team over to a brand-new admin invited by e-mail.

* ``create`` — validate, insert a ``pending_invite`` row, reset the
  delegator's progress and mark them as awaiting setup, then send the
  invite.  An invite that fails to send leaves the delegation in place so
  the delegator can resend or cancel.
* ``accept`` / ``start`` / ``complete`` — driven by the delegate.
* ``cancel`` — driven by the delegator; clears "awaiting setup" but does
  not restore the wiped progress.
* ``resend`` — new invite code and expiry for a pending invite.

Expired invites are only *displayed* as expired; nothing here changes a
status without an explicit call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from launchprep.constants import DEFAULT_INVITE_EXPIRY_DAYS, SELF_SETUP_CANCELLATION_REASON
from launchprep.database.engine import get_session
from launchprep.database.models import (
    ACTIVE_DELEGATION_STATUSES,
    CurrentStage,
    DelegationStatus,
    SetupDelegation,
    Team,
    TeamRole,
    User,
)
from launchprep.engine.delegation import (
    DelegationAction,
    display_status,
    is_expired,
    next_status,
    normalize_delegate_email,
)
from launchprep.errors import ExpiredDelegation, InvalidTransition, TransientIOError
from launchprep.services.invite_service import generate_invite_code
from launchprep.services.launch_status import get_or_create_launch_status, lock_launch_status
from launchprep.services.progression_service import reset_progress
from launchprep.services.settings_service import get_setting_value

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from launchprep.services.collaborators import (
        DelegationNotifier,
        InviteSender,
        UserDirectory,
    )

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DelegationView:
    """A delegation as shown to the delegator or delegate."""

    id: str
    team_id: str
    delegating_user_id: str
    delegated_to_email: str
    status: str
    display_status: str
    expires_at: datetime
    created_at: datetime | None
    completed_at: datetime | None = None
    delegate_name: str | None = None
    invite_sent: bool | None = None

    @property
    def is_expired(self) -> bool:
        return self.display_status == "expired"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "delegating_user_id": self.delegating_user_id,
            "delegated_to_email": self.delegated_to_email,
            "status": self.status,
            "display_status": self.display_status,
            "is_expired": self.is_expired,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "delegate_name": self.delegate_name,
            "invite_sent": self.invite_sent,
        }


def _view(
    session: Session,
    row: SetupDelegation,
    *,
    now: datetime | None = None,
    invite_sent: bool | None = None,
) -> DelegationView:
    delegate_name = None
    if row.delegated_user_id:
        delegate = session.get(User, row.delegated_user_id)
        delegate_name = delegate.display_name if delegate else None
    return DelegationView(
        id=row.id,
        team_id=row.team_id,
        delegating_user_id=row.delegating_user_id,
        delegated_to_email=row.delegated_to_email,
        status=row.status,
        display_status=display_status(row.status, row.expires_at, now),
        expires_at=row.expires_at,
        created_at=row.created_at,
        completed_at=row.completed_at,
        delegate_name=delegate_name,
        invite_sent=invite_sent,
    )


def _expiry_days(session: Session) -> int:
    try:
        return int(get_setting_value(
            session, "delegation.invite_expiry_days", DEFAULT_INVITE_EXPIRY_DAYS,
        ))
    except (TypeError, ValueError):
        return DEFAULT_INVITE_EXPIRY_DAYS


def _invites_enabled(session: Session) -> bool:
    return bool(get_setting_value(session, "delegation.send_invites", True))


def _active_delegation(session: Session, team_id: str, *, lock: bool = False) -> SetupDelegation | None:
    stmt = (
        select(SetupDelegation)
        .where(
            SetupDelegation.team_id == team_id,
            SetupDelegation.status.in_([s.value for s in ACTIVE_DELEGATION_STATUSES]),
        )
        .order_by(SetupDelegation.created_at.desc())
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return session.scalars(stmt).first()


def _require_active(session: Session, team_id: str) -> SetupDelegation:
    row = _active_delegation(session, team_id, lock=True)
    if row is None:
        raise InvalidTransition("There is no active setup delegation for this team.")
    return row


def _send_invite(
    sender: InviteSender, email: str, team_name: str, invite_code: str,
) -> bool:
    try:
        return bool(sender.send_delegation_invite(email, team_name, invite_code))
    except Exception:
        logger.exception("Invite sender raised for %s", email)
        return False


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_delegation_view(engine: Engine, team_id: str) -> DelegationView | None:
    """The team's active delegation, or else its most recent one."""
    try:
        with Session(engine) as session:
            row = _active_delegation(session, team_id)
            if row is None:
                row = session.scalars(
                    select(SetupDelegation)
                    .where(SetupDelegation.team_id == team_id)
                    .order_by(SetupDelegation.created_at.desc())
                ).first()
            return _view(session, row) if row is not None else None
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not load delegation for team {team_id}") from exc


# ---------------------------------------------------------------------------
# Delegator operations
# ---------------------------------------------------------------------------
def create_delegation(
    engine: Engine,
    *,
    team_id: str,
    delegating_user_id: str,
    delegate_email: str,
    directory: UserDirectory,
    sender: InviteSender,
    now: datetime | None = None,
) -> DelegationView:
    """Invite *delegate_email* to finish setup for *team_id*.

    Raises :class:`InvalidTransition` (nothing written) when a delegation
    is already active, when the delegator invites themself, or when the
    address already has an account.
    """
    now = now or datetime.now(UTC)
    try:
        with get_session(engine) as session:
            delegator = session.get(User, delegating_user_id)
            team = session.get(Team, team_id)
            if delegator is None or team is None or delegator.team_id != team_id:
                raise InvalidTransition("Only a member of this team can delegate its setup.")

            email = normalize_delegate_email(delegate_email, delegator.email)

            status = lock_launch_status(session, delegating_user_id)
            if _active_delegation(session, team_id, lock=True) is not None:
                raise InvalidTransition(
                    "A setup delegation already exists. Cancel it first to invite someone new."
                )

            if directory.lookup_user_by_email(email) is not None:
                raise InvalidTransition(
                    "This email already has an account. Delegation is only for inviting a new admin."
                )

            invite_code = generate_invite_code()
            row = SetupDelegation(
                team_id=team_id,
                delegating_user_id=delegating_user_id,
                delegated_to_email=email,
                status=DelegationStatus.PENDING_INVITE.value,
                invite_code=invite_code,
                expires_at=now + timedelta(days=_expiry_days(session)),
                created_at=now,
            )
            try:
                with session.begin_nested():
                    session.add(row)
                    session.flush()
            except IntegrityError:
                raise InvalidTransition(
                    "A setup delegation already exists. Cancel it first to invite someone new."
                ) from None

            reset_progress(session, delegating_user_id)
            status.awaiting_team_setup = True
            team_name = team.name
            send = _invites_enabled(session)
    except SQLAlchemyError as exc:
        raise TransientIOError("Could not create setup delegation") from exc

    logger.info(
        "Setup delegation %s created: team=%s delegator=%s → %s",
        row.id, team_id, delegating_user_id, email,
    )

    sent = False
    if not send:
        logger.info("Invite e-mails are disabled; delegation %s created without sending", row.id)
    else:
        sent = _send_invite(sender, email, team_name, invite_code)
        if not sent:
            logger.warning("Invite for delegation %s was not delivered; resend is available", row.id)

    with Session(engine) as session:
        return _view(session, session.get(SetupDelegation, row.id), now=now, invite_sent=sent)


def cancel_delegation(
    engine: Engine,
    *,
    team_id: str,
    delegating_user_id: str,
    reason: str = SELF_SETUP_CANCELLATION_REASON,
    now: datetime | None = None,
) -> DelegationView:
    """Cancel the active delegation and let the delegator resume setup.

    The delegator's launch status row is locked first, so a reconcile
    running for the same user either finishes before this commits or
    sees the cleared flag afterwards.
    """
    now = now or datetime.now(UTC)
    try:
        with get_session(engine) as session:
            status = lock_launch_status(session, delegating_user_id)
            row = _require_active(session, team_id)
            if row.delegating_user_id != delegating_user_id:
                raise InvalidTransition("Only the person who delegated setup can cancel it.")

            row.status = next_status(row.status, DelegationAction.CANCEL).value
            row.cancelled_at = now
            row.cancellation_reason = reason
            status.awaiting_team_setup = False
            status.current_stage = CurrentStage.FUEL.value
            session.flush()
            view = _view(session, row, now=now)
    except SQLAlchemyError as exc:
        raise TransientIOError("Could not cancel setup delegation") from exc

    logger.info("Setup delegation %s cancelled by %s", view.id, delegating_user_id)
    return view


def resend_invite(
    engine: Engine,
    *,
    team_id: str,
    delegating_user_id: str,
    sender: InviteSender,
    now: datetime | None = None,
) -> DelegationView:
    """Issue a fresh invite code and expiry for a pending invite."""
    now = now or datetime.now(UTC)
    try:
        with get_session(engine) as session:
            row = _require_active(session, team_id)
            if row.delegating_user_id != delegating_user_id:
                raise InvalidTransition("Only the person who delegated setup can resend the invite.")
            if row.status != DelegationStatus.PENDING_INVITE:
                raise InvalidTransition("The invite has already been accepted.")

            row.invite_code = generate_invite_code()
            row.expires_at = now + timedelta(days=_expiry_days(session))
            email, invite_code = row.delegated_to_email, row.invite_code
            team_name = session.get(Team, team_id).name
            delegation_id = row.id
            send = _invites_enabled(session)
    except SQLAlchemyError as exc:
        raise TransientIOError("Could not resend setup invite") from exc

    sent = send and _send_invite(sender, email, team_name, invite_code)
    logger.info("Setup invite %s re-sent to %s (delivered=%s)", delegation_id, email, sent)

    with Session(engine) as session:
        return _view(session, session.get(SetupDelegation, delegation_id), now=now, invite_sent=sent)


# ---------------------------------------------------------------------------
# Delegate operations
# ---------------------------------------------------------------------------
def accept_delegation(
    engine: Engine,
    *,
    team_id: str,
    delegate_user_id: str,
    invite_code: str | None = None,
    now: datetime | None = None,
) -> DelegationView:
    """The invited admin signed up and accepted the invite.

    The delegate's e-mail must match the invite.  An expired invite raises
    :class:`ExpiredDelegation`; the delegator can resend it.
    """
    now = now or datetime.now(UTC)
    try:
        with get_session(engine) as session:
            row = _require_active(session, team_id)
            delegate = session.get(User, delegate_user_id)
            if delegate is None or delegate.email.lower() != row.delegated_to_email:
                raise InvalidTransition("This invite was sent to a different email address.")
            if invite_code is not None and invite_code.strip().upper() != row.invite_code:
                raise InvalidTransition("The invite code does not match.")
            if is_expired(row.status, row.expires_at, now):
                raise ExpiredDelegation(
                    "This invite has expired. Ask your teammate to resend it."
                )

            row.status = next_status(row.status, DelegationAction.ACCEPT).value
            row.accepted_at = now
            row.delegated_user_id = delegate_user_id
            delegate.team_id = team_id
            delegate.role = TeamRole.ADMIN.value
            get_or_create_launch_status(session, delegate_user_id).is_setup_admin = True
            session.flush()
            view = _view(session, row, now=now)
    except SQLAlchemyError as exc:
        raise TransientIOError("Could not accept setup delegation") from exc

    logger.info("Setup delegation %s accepted by %s", view.id, delegate_user_id)
    return view


def start_delegation(
    engine: Engine,
    *,
    team_id: str,
    delegate_user_id: str,
    now: datetime | None = None,
) -> DelegationView:
    """The delegate opened the launch preparation flow."""
    now = now or datetime.now(UTC)
    try:
        with get_session(engine) as session:
            row = _require_active(session, team_id)
            if row.delegated_user_id != delegate_user_id:
                raise InvalidTransition("Only the invited admin can start this setup.")
            row.status = next_status(row.status, DelegationAction.START).value
            row.started_at = now
            session.flush()
            view = _view(session, row, now=now)
    except SQLAlchemyError as exc:
        raise TransientIOError("Could not start setup delegation") from exc

    logger.info("Setup delegation %s in progress", view.id)
    return view


def complete_delegation(
    engine: Engine,
    *,
    team_id: str,
    delegate_user_id: str,
    notifier: DelegationNotifier,
    now: datetime | None = None,
) -> DelegationView:
    """The delegate finished setup; release the delegator from the waiting view."""
    now = now or datetime.now(UTC)
    try:
        with get_session(engine) as session:
            # Lock order matches cancel: launch status row, then delegation row.
            pending = _active_delegation(session, team_id)
            if pending is None:
                raise InvalidTransition("There is no active setup delegation for this team.")
            delegator_id = pending.delegating_user_id
            status = lock_launch_status(session, delegator_id)
            row = _require_active(session, team_id)
            if row.delegating_user_id != delegator_id or row.delegated_user_id != delegate_user_id:
                raise InvalidTransition("Only the invited admin can complete this setup.")

            row.status = next_status(row.status, DelegationAction.COMPLETE).value
            row.completed_at = now
            status.awaiting_team_setup = False
            session.flush()
            view = _view(session, row, now=now)
    except SQLAlchemyError as exc:
        raise TransientIOError("Could not complete setup delegation") from exc

    logger.info(
        "Setup delegation %s completed by %s; notifying %s",
        view.id, view.delegate_name, view.delegating_user_id,
    )
    notifier.delegation_completed(
        team_id=team_id,
        delegator_user_id=view.delegating_user_id,
        delegate_name=view.delegate_name or view.delegated_to_email,
    )
    return view
