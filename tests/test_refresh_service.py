"""
tests/test_refresh_service.py — Push / Manual Refresh Dispatcher Tests
=======================================================================

The counter source is mocked; progression writes go to SQLite.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from conftest import set_fuel_counters
from launchprep.database.models import Stage
from launchprep.engine.events import EngineEvent, EventKind
from launchprep.engine.fuel import FuelCounterCache, FuelCounters
from launchprep.errors import TransientIOError, UnknownCounters
from launchprep.services import progression_service
from launchprep.services.collaborators import SqlCounterSource
from launchprep.services.refresh_service import RefreshDispatcher


@pytest.fixture
def engine(db_engine):
    return db_engine


@pytest.fixture
def source():
    src = MagicMock()
    src.get_fuel_counters.return_value = FuelCounters.from_values(
        fully_synced_documents=6, categories=["finance", "legal"],
    )
    return src


@pytest.fixture
def dispatcher(engine, source):
    return RefreshDispatcher(engine, source, counter_cache=FuelCounterCache(ttl_seconds=60))


def _event(kind: EventKind, user_id: str | None = None) -> EngineEvent:
    return EngineEvent(kind=kind, team_id="team-1", user_id=user_id)


class TestRefreshDispatcher:

    def test_counters_changed_reconciles_every_member(
        self, engine, dispatcher, admin_user, member_user,
    ):
        outcome = dispatcher.handle(_event(EventKind.COUNTERS_CHANGED))

        assert outcome.fuel.current_level == 2
        assert set(outcome.leveled_up) == {admin_user, member_user}
        assert outcome.failed == []
        for user in (admin_user, member_user):
            snap = progression_service.get_progress(engine, user)
            assert snap.stages[Stage.FUEL].level == 2

    def test_manual_refresh_targets_caller(self, engine, dispatcher, admin_user, member_user):
        outcome = dispatcher.handle(_event(EventKind.MANUAL_REFRESH, user_id=member_user))

        assert {r.user_id for r in outcome.results} == {member_user}
        admin_snap = progression_service.get_progress(engine, admin_user)
        assert admin_snap.stages[Stage.FUEL].level == 0

    def test_cached_snapshot_is_reused(self, dispatcher, source, admin_user):
        dispatcher.handle(_event(EventKind.MANUAL_REFRESH, user_id=admin_user))
        dispatcher.handle(_event(EventKind.MANUAL_REFRESH, user_id=admin_user))
        assert source.get_fuel_counters.call_count == 1

    def test_counter_change_invalidates_cache(self, dispatcher, source, admin_user):
        dispatcher.handle(_event(EventKind.MANUAL_REFRESH, user_id=admin_user))
        dispatcher.handle(_event(EventKind.COUNTERS_CHANGED))
        assert source.get_fuel_counters.call_count == 2

    def test_duplicate_events_are_harmless(self, dispatcher, admin_user):
        dispatcher.handle(_event(EventKind.COUNTERS_CHANGED))
        again = dispatcher.handle(_event(EventKind.COUNTERS_CHANGED))
        assert again.leveled_up == []

    @pytest.mark.parametrize("error", [UnknownCounters("none yet"), TransientIOError("db down")])
    def test_unavailable_counters_skip_reconcile(self, engine, source, admin_user, error):
        progression_service.reconcile(engine, admin_user, Stage.FUEL, 3)
        source.get_fuel_counters.side_effect = error
        dispatcher = RefreshDispatcher(engine, source)

        outcome = dispatcher.handle(_event(EventKind.COUNTERS_CHANGED))

        assert outcome.fuel.current_level is None
        assert all(r.skipped for r in outcome.results)
        assert progression_service.get_progress(engine, admin_user).stages[Stage.FUEL].level == 3

    def test_member_catches_up_on_admin_guidance(self, engine, dispatcher, admin_user, member_user):
        for level in (1, 2):
            progression_service.complete_level_action(engine, admin_user, Stage.GUIDANCE, level)

        dispatcher.handle(_event(EventKind.DELEGATION_CHANGED))

        snap = progression_service.get_progress(engine, member_user)
        assert snap.stages[Stage.GUIDANCE].level == 2

    def test_failure_for_one_member_does_not_stop_others(
        self, engine, dispatcher, admin_user, member_user, monkeypatch,
    ):
        real_reconcile = progression_service.reconcile

        def flaky(engine_, user_id, stage, level):
            if user_id == admin_user:
                raise TransientIOError("boom")
            return real_reconcile(engine_, user_id, stage, level)

        monkeypatch.setattr(progression_service, "reconcile", flaky)
        outcome = dispatcher.handle(_event(EventKind.COUNTERS_CHANGED))

        assert outcome.failed == [admin_user]
        assert outcome.leveled_up == [member_user]


class TestSqlCounterSource:

    def test_missing_row_is_unknown(self, engine, team):
        with pytest.raises(UnknownCounters):
            SqlCounterSource(engine).get_fuel_counters("team-1")

    def test_reads_snapshot(self, engine, team):
        set_fuel_counters(engine, "team-1", documents=12, categories=["a", "b", "b"], pending=3)

        counters = SqlCounterSource(engine).get_fuel_counters("team-1")

        assert counters.fully_synced_documents == 12
        assert counters.total_documents == 15
        assert counters.category_count == 2
        assert SqlCounterSource(engine).get_team_categories("team-1") == {"a", "b"}
