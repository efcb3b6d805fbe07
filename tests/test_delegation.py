"""
tests/test_delegation.py — Setup Delegation Workflow Tests
===========================================================

State machine (pure) plus the full create → accept → start → complete
lifecycle, cancellation and expiry against SQLite.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conftest import make_user, set_setting
from launchprep.database.models import (
    DelegationStatus,
    LaunchStatus,
    SetupDelegation,
    Stage,
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
from launchprep.errors import ExpiredDelegation, InvalidTransition
from launchprep.services import delegation_service, progression_service
from launchprep.services.collaborators import DirectoryUser, SqlUserDirectory

DELEGATE_EMAIL = "new.admin@example.com"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def engine(db_engine):
    return db_engine


@pytest.fixture
def sender():
    mock_sender = MagicMock()
    mock_sender.send_delegation_invite.return_value = True
    return mock_sender


@pytest.fixture
def directory():
    mock_dir = MagicMock()
    mock_dir.lookup_user_by_email.return_value = None
    return mock_dir


def _create(engine, delegator, directory, sender, *, email=DELEGATE_EMAIL, now=T0):
    return delegation_service.create_delegation(
        engine,
        team_id="team-1",
        delegating_user_id=delegator,
        delegate_email=email,
        directory=directory,
        sender=sender,
        now=now,
    )


def _delegation_count(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(SetupDelegation))


def _status(engine, user_id) -> LaunchStatus:
    with Session(engine) as session:
        return session.get(LaunchStatus, user_id)


# ===========================================================================
# Pure state machine
# ===========================================================================
class TestStateMachine:

    def test_happy_path(self):
        status = DelegationStatus.PENDING_INVITE
        for action, expected in [
            (DelegationAction.ACCEPT, DelegationStatus.ACCEPTED),
            (DelegationAction.START, DelegationStatus.IN_PROGRESS),
            (DelegationAction.COMPLETE, DelegationStatus.COMPLETED),
        ]:
            status = next_status(status, action)
            assert status == expected

    @pytest.mark.parametrize("status", ["pending_invite", "accepted", "in_progress"])
    def test_cancel_from_any_active_status(self, status):
        assert next_status(status, DelegationAction.CANCEL) == DelegationStatus.CANCELLED

    @pytest.mark.parametrize("status, action", [
        ("completed", DelegationAction.CANCEL),
        ("cancelled", DelegationAction.ACCEPT),
        ("pending_invite", DelegationAction.COMPLETE),
        ("accepted", DelegationAction.ACCEPT),
    ])
    def test_invalid_transitions(self, status, action):
        with pytest.raises(InvalidTransition):
            next_status(status, action)

    def test_only_pending_invites_expire(self):
        past = T0 - timedelta(days=1)
        assert is_expired("pending_invite", past, T0)
        assert not is_expired("accepted", past, T0)
        assert display_status("pending_invite", past, T0) == "expired"
        assert display_status("accepted", past, T0) == "accepted"

    def test_naive_expiry_is_treated_as_utc(self):
        naive = datetime(2026, 3, 1, 11, 0)
        assert is_expired("pending_invite", naive, T0)

    @pytest.mark.parametrize("email, message", [
        ("", "Please enter an email address."),
        ("   ", "Please enter an email address."),
        ("not-an-email", "Please enter a valid email address."),
        ("Boss@Example.com", "You cannot invite yourself."),
    ])
    def test_email_validation(self, email, message):
        with pytest.raises(InvalidTransition, match=message):
            normalize_delegate_email(email, "boss@example.com")

    def test_email_is_normalized(self):
        assert normalize_delegate_email("  New@Example.COM ", "boss@example.com") == "new@example.com"


# ===========================================================================
# Create
# ===========================================================================
class TestCreateDelegation:

    def test_create_resets_delegator_and_sends_invite(self, engine, admin_user, directory, sender):
        progression_service.reconcile(engine, admin_user, Stage.FUEL, 2)
        progression_service.complete_level_action(engine, admin_user, Stage.BOOSTERS, 1)

        view = _create(engine, admin_user, directory, sender)

        assert view.status == "pending_invite"
        assert view.invite_sent is True
        assert view.expires_at.replace(tzinfo=UTC) == T0 + timedelta(days=7)
        sender.send_delegation_invite.assert_called_once()
        email, team_name, code = sender.send_delegation_invite.call_args.args
        assert (email, team_name, len(code)) == (DELEGATE_EMAIL, "Acme", 8)

        snap = progression_service.get_progress(engine, admin_user)
        assert snap.total_points == 0
        assert snap.awaiting_team_setup is True

    def test_existing_account_rejected_without_writes(self, engine, admin_user, member_user, sender):
        directory = SqlUserDirectory(engine)
        with pytest.raises(InvalidTransition, match="already has an account"):
            _create(engine, admin_user, directory, sender, email="MEMBER-1@example.com")

        assert _delegation_count(engine) == 0
        sender.send_delegation_invite.assert_not_called()

    def test_existing_account_via_directory_protocol(self, engine, admin_user, sender):
        directory = MagicMock()
        directory.lookup_user_by_email.return_value = DirectoryUser(
            id="x", email=DELEGATE_EMAIL, full_name=None, team_id=None,
        )
        with pytest.raises(InvalidTransition):
            _create(engine, admin_user, directory, sender)
        assert _delegation_count(engine) == 0

    def test_self_invite_rejected(self, engine, admin_user, directory, sender):
        with pytest.raises(InvalidTransition, match="cannot invite yourself"):
            _create(engine, admin_user, directory, sender, email="ADMIN-1@example.com")

    def test_second_active_delegation_rejected(self, engine, admin_user, directory, sender):
        _create(engine, admin_user, directory, sender)
        with pytest.raises(InvalidTransition, match="already exists"):
            _create(engine, admin_user, directory, sender, email="other@example.com")
        assert _delegation_count(engine) == 1

    def test_failed_send_keeps_delegation(self, engine, admin_user, directory):
        sender = MagicMock()
        sender.send_delegation_invite.side_effect = RuntimeError("smtp down")

        view = _create(engine, admin_user, directory, sender)

        assert view.invite_sent is False
        assert view.status == "pending_invite"
        assert _delegation_count(engine) == 1

    def test_disabled_invites_are_not_sent(self, engine, admin_user, directory, sender):
        set_setting(engine, "delegation.send_invites", False)

        view = _create(engine, admin_user, directory, sender)
        resent = delegation_service.resend_invite(
            engine, team_id="team-1", delegating_user_id=admin_user, sender=sender, now=T0,
        )

        sender.send_delegation_invite.assert_not_called()
        assert view.invite_sent is False
        assert resent.invite_sent is False
        assert view.status == "pending_invite"

    def test_outsider_cannot_delegate(self, engine, team, directory, sender):
        make_user(engine, "stranger", team_id=None)
        with pytest.raises(InvalidTransition):
            _create(engine, "stranger", directory, sender)

    def test_partial_unique_index(self, engine, admin_user):
        with Session(engine) as session:
            for email in ("a@example.com", "b@example.com"):
                session.add(SetupDelegation(
                    team_id="team-1",
                    delegating_user_id=admin_user,
                    delegated_to_email=email,
                    status=DelegationStatus.PENDING_INVITE.value,
                    expires_at=T0,
                ))
            with pytest.raises(IntegrityError):
                session.commit()


# ===========================================================================
# Cancel & resend
# ===========================================================================
class TestCancelAndResend:

    def test_cancel_clears_waiting_but_keeps_reset(self, engine, admin_user, directory, sender):
        progression_service.reconcile(engine, admin_user, Stage.FUEL, 2)
        _create(engine, admin_user, directory, sender)

        paused = progression_service.reconcile(engine, admin_user, Stage.FUEL, 2)
        assert paused.paused

        view = delegation_service.cancel_delegation(
            engine, team_id="team-1", delegating_user_id=admin_user,
        )
        assert view.status == "cancelled"
        assert _status(engine, admin_user).awaiting_team_setup is False
        assert progression_service.get_progress(engine, admin_user).total_points == 0

        with Session(engine) as session:
            row = session.get(SetupDelegation, view.id)
            assert row.cancellation_reason == "User chose to complete setup themselves"

        resumed = progression_service.reconcile(engine, admin_user, Stage.FUEL, 2)
        assert resumed.level == 2

    def test_new_delegation_after_cancel(self, engine, admin_user, directory, sender):
        _create(engine, admin_user, directory, sender)
        delegation_service.cancel_delegation(engine, team_id="team-1", delegating_user_id=admin_user)
        view = _create(engine, admin_user, directory, sender, email="second@example.com")
        assert view.status == "pending_invite"

    def test_cancel_without_delegation(self, engine, admin_user):
        with pytest.raises(InvalidTransition, match="no active setup delegation"):
            delegation_service.cancel_delegation(
                engine, team_id="team-1", delegating_user_id=admin_user,
            )

    def test_expired_invite_is_displayed_not_stored(self, engine, admin_user, directory, sender):
        _create(engine, admin_user, directory, sender, now=datetime.now(UTC) - timedelta(days=8))

        view = delegation_service.get_delegation_view(engine, "team-1")

        assert view.status == "pending_invite"
        assert view.display_status == "expired"
        assert view.is_expired

    def test_resend_refreshes_code_and_expiry(self, engine, admin_user, directory, sender):
        _create(engine, admin_user, directory, sender)
        first_code = sender.send_delegation_invite.call_args.args[2]

        later = T0 + timedelta(days=10)
        view = delegation_service.resend_invite(
            engine, team_id="team-1", delegating_user_id=admin_user, sender=sender, now=later,
        )

        assert sender.send_delegation_invite.call_count == 2
        assert view.invite_sent is True
        assert view.expires_at.replace(tzinfo=UTC) == later + timedelta(days=7)
        with Session(engine) as session:
            row = session.get(SetupDelegation, view.id)
            assert row.invite_code == sender.send_delegation_invite.call_args.args[2]
            assert len(row.invite_code) == len(first_code)


# ===========================================================================
# Delegate lifecycle
# ===========================================================================
class TestDelegateLifecycle:

    @pytest.fixture
    def delegate(self, engine, admin_user):
        return make_user(
            engine, "delegate-1", email=DELEGATE_EMAIL, team_id=None, full_name="Nova Admin",
        )

    def test_full_lifecycle(self, engine, admin_user, delegate, directory, sender):
        _create(engine, admin_user, directory, sender)
        code = sender.send_delegation_invite.call_args.args[2]

        accepted = delegation_service.accept_delegation(
            engine, team_id="team-1", delegate_user_id=delegate,
            invite_code=code.lower(), now=T0 + timedelta(days=1),
        )
        assert accepted.status == "accepted"
        assert accepted.delegate_name == "Nova Admin"
        with Session(engine) as session:
            user = session.get(User, delegate)
            assert (user.team_id, user.role) == ("team-1", TeamRole.ADMIN.value)
        assert _status(engine, delegate).is_setup_admin is True

        started = delegation_service.start_delegation(
            engine, team_id="team-1", delegate_user_id=delegate,
        )
        assert started.status == "in_progress"

        notifier = MagicMock()
        done = delegation_service.complete_delegation(
            engine, team_id="team-1", delegate_user_id=delegate, notifier=notifier,
        )

        assert done.status == "completed"
        assert _status(engine, admin_user).awaiting_team_setup is False
        notifier.delegation_completed.assert_called_once_with(
            team_id="team-1", delegator_user_id=admin_user, delegate_name="Nova Admin",
        )

    def test_expired_invite_cannot_be_accepted(self, engine, admin_user, delegate, directory, sender):
        _create(engine, admin_user, directory, sender)
        with pytest.raises(ExpiredDelegation):
            delegation_service.accept_delegation(
                engine, team_id="team-1", delegate_user_id=delegate,
                now=T0 + timedelta(days=8),
            )

    def test_wrong_code_rejected(self, engine, admin_user, delegate, directory, sender):
        _create(engine, admin_user, directory, sender)
        with pytest.raises(InvalidTransition, match="code does not match"):
            delegation_service.accept_delegation(
                engine, team_id="team-1", delegate_user_id=delegate,
                invite_code="WRONG000", now=T0,
            )

    def test_other_user_cannot_accept(self, engine, admin_user, member_user, directory, sender):
        _create(engine, admin_user, directory, sender)
        with pytest.raises(InvalidTransition, match="different email"):
            delegation_service.accept_delegation(
                engine, team_id="team-1", delegate_user_id=member_user, now=T0,
            )

    def test_complete_before_start_rejected(self, engine, admin_user, delegate, directory, sender):
        _create(engine, admin_user, directory, sender)
        delegation_service.accept_delegation(
            engine, team_id="team-1", delegate_user_id=delegate, now=T0,
        )
        with pytest.raises(InvalidTransition):
            delegation_service.complete_delegation(
                engine, team_id="team-1", delegate_user_id=delegate, notifier=MagicMock(),
            )

    def test_complete_and_cancel_lock_in_the_same_order(
        self, engine, admin_user, delegate, directory, sender, monkeypatch,
    ):
        locks: list[str] = []
        real_lock_status = delegation_service.lock_launch_status
        real_active = delegation_service._active_delegation

        def lock_status(session, user_id):
            locks.append("launch_status")
            return real_lock_status(session, user_id)

        def active(session, team_id, *, lock=False):
            if lock:
                locks.append("delegation")
            return real_active(session, team_id, lock=lock)

        _create(engine, admin_user, directory, sender)
        delegation_service.accept_delegation(
            engine, team_id="team-1", delegate_user_id=delegate, now=T0,
        )
        delegation_service.start_delegation(engine, team_id="team-1", delegate_user_id=delegate)
        monkeypatch.setattr(delegation_service, "lock_launch_status", lock_status)
        monkeypatch.setattr(delegation_service, "_active_delegation", active)

        delegation_service.complete_delegation(
            engine, team_id="team-1", delegate_user_id=delegate, notifier=MagicMock(),
        )
        assert locks == ["launch_status", "delegation"]

        locks.clear()
        _create(engine, admin_user, directory, sender, email="second@example.com")
        assert locks == ["launch_status", "delegation"]

        locks.clear()
        delegation_service.cancel_delegation(engine, team_id="team-1", delegating_user_id=admin_user)
        assert locks == ["launch_status", "delegation"]
