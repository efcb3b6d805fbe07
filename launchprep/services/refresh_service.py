"""
launchprep.services.refresh_service — Push & Manual Refresh Dispatcher
=======================================================================

Push notifications (from the LISTEN thread) and manual refresh requests
(from the API) arrive as :class:`~launchprep.engine.events.EngineEvent`
and take the same path:

    EngineEvent ─▶ RefreshDispatcher.handle()
                     ├─ fuel counters (cached snapshot or fresh fetch)
                     ├─ reconcile fuel for each team member
                     └─ guidance catch-up for non-admin members

Handlers always re-derive state from the pull-style getters, so a lost
or duplicated notification changes nothing beyond what a manual refresh
would.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from launchprep.constants import DEFAULT_FUEL_CACHE_SECONDS
from launchprep.database.models import Stage, User
from launchprep.engine.events import EngineEvent, EventKind
from launchprep.engine.fuel import FuelCounterCache, FuelLevelResult, calculate_fuel_level
from launchprep.errors import LaunchPrepError, TransientIOError, UnknownCounters
from launchprep.services import progression_service

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from launchprep.engine.cache import SettingsCache
    from launchprep.services.collaborators import CounterSource

logger = logging.getLogger(__name__)

# Events after which a cached counter snapshot can no longer be trusted.
_INVALIDATING_KINDS: frozenset[EventKind] = frozenset({
    EventKind.COUNTERS_CHANGED,
    EventKind.SYNC_SESSION_CHANGED,
})


@dataclass(slots=True)
class RefreshOutcome:
    team_id: str
    fuel: FuelLevelResult
    results: list[progression_service.ProgressionResult] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def leveled_up(self) -> list[str]:
        return [r.user_id for r in self.results if r.leveled_up]

    def to_dict(self) -> dict:
        return {
            "team_id": self.team_id,
            "fuel": self.fuel.to_dict(),
            "results": [r.to_dict() for r in self.results],
            "failed": list(self.failed),
        }


class RefreshDispatcher:
    """Routes inbound events to fuel reconciliation and guidance sync.

    Owns the :class:`FuelCounterCache`; nothing else holds counter state.
    """

    def __init__(
        self,
        engine: Engine,
        counter_source: CounterSource,
        *,
        counter_cache: FuelCounterCache | None = None,
        settings: SettingsCache | None = None,
    ) -> None:
        self._engine = engine
        self._counter_source = counter_source
        ttl = (
            settings.get_int("fuel.counter_cache_seconds", DEFAULT_FUEL_CACHE_SECONDS)
            if settings is not None
            else DEFAULT_FUEL_CACHE_SECONDS
        )
        self._cache = counter_cache or FuelCounterCache(ttl_seconds=ttl)

    @property
    def counter_cache(self) -> FuelCounterCache:
        return self._cache

    # -------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------
    def handle(self, event: EngineEvent) -> RefreshOutcome:
        """Process one inbound event."""
        logger.debug("Refresh event %s for team %s", event.kind, event.team_id)
        if event.kind in _INVALIDATING_KINDS:
            self._cache.invalidate(event.team_id)

        user_ids = None
        if event.kind == EventKind.MANUAL_REFRESH and event.user_id:
            user_ids = [event.user_id]
        return self.refresh_team(event.team_id, user_ids=user_ids)

    # -------------------------------------------------------------------
    # Fuel
    # -------------------------------------------------------------------
    def fuel_level(self, team_id: str) -> FuelLevelResult:
        """Fuel level from the cached snapshot, fetching when stale.

        Unavailable counters yield an unknown result instead of raising.
        """
        counters = self._cache.get(team_id)
        if counters is None:
            try:
                counters = self._counter_source.get_fuel_counters(team_id)
            except (UnknownCounters, TransientIOError) as exc:
                logger.warning("Fuel counters unavailable for team %s: %s", team_id, exc)
                return calculate_fuel_level(None)
            self._cache.put(team_id, counters)
        return calculate_fuel_level(counters)

    def _team_members(self, team_id: str) -> list[User]:
        with Session(self._engine) as session:
            members = session.scalars(
                select(User).where(User.team_id == team_id).order_by(User.id)
            ).all()
            for m in members:
                session.expunge(m)
            return list(members)

    def refresh_team(self, team_id: str, user_ids: list[str] | None = None) -> RefreshOutcome:
        """Reconcile fuel (and guidance inheritance) for a team.

        *user_ids* narrows the refresh to specific members; by default
        every member of the team is refreshed.  A failure for one member
        is logged and reported without stopping the others.
        """
        outcome = RefreshOutcome(team_id=team_id, fuel=self.fuel_level(team_id))
        members = self._team_members(team_id)
        if user_ids is not None:
            wanted = set(user_ids)
            members = [m for m in members if m.id in wanted]

        for member in members:
            try:
                outcome.results.append(progression_service.reconcile(
                    self._engine, member.id, Stage.FUEL, outcome.fuel.current_level,
                ))
                if not member.is_admin:
                    outcome.results.append(
                        progression_service.inherit_admin_guidance(self._engine, member.id)
                    )
            except LaunchPrepError:
                logger.exception("Refresh failed for user %s in team %s", member.id, team_id)
                outcome.failed.append(member.id)

        if outcome.leveled_up:
            logger.info(
                "Team %s refresh: fuel level %s, level-ups for %s",
                team_id, outcome.fuel.current_level, outcome.leveled_up,
            )
        return outcome
