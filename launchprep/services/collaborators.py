"""
launchprep.services.collaborators — External Collaborator Interfaces
=====================================================================

The engine talks to the outside world through these small protocols:

- :class:`CounterSource` — fuel counters and categories for a team
- :class:`UserDirectory` — account lookup by e-mail
- :class:`InviteSender` — delivers setup-admin invites
- :class:`DelegationNotifier` — tells a delegator their delegate finished

Default implementations read the mirrored tables in our own database
(``team_fuel_counters``, ``users``) or publish PG NOTIFY events.  The
e-mail sender lives in :mod:`launchprep.services.invite_service`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from launchprep.database.models import TeamFuelCounters, User
from launchprep.engine.cache import send_event_notify
from launchprep.engine.fuel import FuelCounters
from launchprep.errors import TransientIOError, UnknownCounters

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DirectoryUser:
    id: str
    email: str
    full_name: str | None
    team_id: str | None


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------
class CounterSource(Protocol):
    def get_fuel_counters(self, team_id: str) -> FuelCounters: ...

    def get_team_categories(self, team_id: str) -> set[str]: ...


class UserDirectory(Protocol):
    def lookup_user_by_email(self, email: str) -> DirectoryUser | None: ...


class InviteSender(Protocol):
    def send_delegation_invite(self, email: str, team_name: str, invite_code: str) -> bool: ...


class DelegationNotifier(Protocol):
    def delegation_completed(
        self, *, team_id: str, delegator_user_id: str, delegate_name: str,
    ) -> None: ...


# ---------------------------------------------------------------------------
# SQL-backed implementations
# ---------------------------------------------------------------------------
class SqlCounterSource:
    """Reads the ``team_fuel_counters`` row the ingestion pipeline maintains.

    A missing row raises :class:`UnknownCounters`; a database failure
    raises :class:`TransientIOError`.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _load(self, team_id: str) -> TeamFuelCounters:
        try:
            with Session(self._engine) as session:
                row = session.get(TeamFuelCounters, team_id)
                if row is not None:
                    session.expunge(row)
        except SQLAlchemyError as exc:
            raise TransientIOError(f"Could not read fuel counters for team {team_id}") from exc
        if row is None:
            raise UnknownCounters(f"No fuel counters reported for team {team_id}")
        return row

    def get_fuel_counters(self, team_id: str) -> FuelCounters:
        row = self._load(team_id)
        return FuelCounters.from_values(
            fully_synced_documents=row.fully_synced_documents,
            pending_classification=row.pending_classification,
            categories=row.categories or (),
            drive_connected=row.drive_connected,
        )

    def get_team_categories(self, team_id: str) -> set[str]:
        return set(self.get_fuel_counters(team_id).categories)


class SqlUserDirectory:
    """Case-insensitive e-mail lookup against the ``users`` table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def lookup_user_by_email(self, email: str) -> DirectoryUser | None:
        cleaned = email.strip().lower()
        try:
            with Session(self._engine) as session:
                user = session.scalar(
                    select(User).where(func.lower(User.email) == cleaned)
                )
                if user is None:
                    return None
                return DirectoryUser(
                    id=user.id,
                    email=user.email,
                    full_name=user.full_name,
                    team_id=user.team_id,
                )
        except SQLAlchemyError as exc:
            raise TransientIOError("Could not look up user by email") from exc


class PgEventNotifier:
    """Publishes user-facing events on the ``launchprep_events`` channel."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def delegation_completed(
        self, *, team_id: str, delegator_user_id: str, delegate_name: str,
    ) -> None:
        try:
            send_event_notify(self._engine, {
                "type": "delegation_completed",
                "team_id": team_id,
                "user_id": delegator_user_id,
                "delegate_name": delegate_name,
            })
        except SQLAlchemyError:
            # The completed delegation is already committed and the waiting
            # view reads it on its next poll.
            logger.exception(
                "Failed to publish delegation_completed for user %s", delegator_user_id,
            )
