"""
tests/test_sync.py — Data Sync Session Tests
=============================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from conftest import set_setting
from launchprep.engine.sync_progress import SyncCounters, compute_progress, progress, status_message
from launchprep.errors import InvalidTransition, TransientIOError
from launchprep.services import sync_service


@pytest.fixture
def engine(db_engine):
    return db_engine


# ===========================================================================
# Progress formula
# ===========================================================================
class TestProgressFormula:

    @pytest.mark.parametrize("total, stored, classified, expected", [
        (0, 0, 0, 0),
        (100, 100, 100, 100),
        (100, 50, 0, 30),
        (10, 10, 5, 75),
        (3, 1, 0, 23),
    ])
    def test_weighted_progress(self, total, stored, classified, expected):
        assert progress(total, stored, classified) == expected

    @pytest.mark.parametrize("status, counters, message", [
        ("in_progress", SyncCounters(), "Discovering files..."),
        ("in_progress", SyncCounters(10, 4, 0), "Storing files (4/10)..."),
        ("in_progress", SyncCounters(10, 10, 3), "Classifying with Smart Data (3/10)..."),
        ("in_progress", SyncCounters(10, 10, 10), "Finalizing..."),
        ("completed", SyncCounters(10, 10, 10), "Sync complete"),
        ("failed", SyncCounters(10, 2, 0), "Sync failed"),
    ])
    def test_status_messages(self, status, counters, message):
        assert status_message(status, counters) == message

    def test_compute_progress_parts(self):
        result = compute_progress("in_progress", SyncCounters(100, 50, 0))
        assert (result.discovery, result.storage, result.classification) == (100, 50, 0)
        assert result.overall == 30

    def test_compute_progress_caps_counters_ahead_of_discovery(self):
        result = compute_progress("in_progress", SyncCounters(10, 20, 15))
        assert (result.storage, result.classification) == (100, 100)
        assert result.message == "Finalizing..."


class TestCounterMerge:

    def test_merge_never_decreases(self):
        merged = SyncCounters(10, 6, 2).merged({"files_stored": 3, "files_classified": 4})
        assert merged == SyncCounters(10, 6, 4)

    def test_missing_fields_keep_current(self):
        assert SyncCounters(5, 1, 0).merged({}) == SyncCounters(5, 1, 0)

    def test_clamp_to_discovered(self):
        assert SyncCounters(10, 12, 11).clamped() == SyncCounters(10, 10, 10)

    def test_no_clamp_before_discovery(self):
        assert SyncCounters(0, 3, 1).clamped() == SyncCounters(0, 3, 1)


# ===========================================================================
# Session lifecycle
# ===========================================================================
class TestSyncSessions:

    def _start(self, engine, user_id, **kw):
        return sync_service.start_session(engine, team_id="team-1", user_id=user_id, **kw)

    def test_start_creates_zeroed_session(self, engine, admin_user):
        view = self._start(engine, admin_user, root_folder_id="root", additional_folders=["a"])

        assert view.status == "in_progress"
        assert view.counters == SyncCounters()
        assert view.additional_folders == ["a"]
        current = sync_service.get_current_session(engine, "team-1")
        assert current.id == view.id

    def test_one_running_session_per_team(self, engine, admin_user):
        self._start(engine, admin_user)
        with pytest.raises(InvalidTransition, match="already running"):
            self._start(engine, admin_user, sync_type="manual")

    def test_counters_are_monotonic(self, engine, admin_user):
        view = self._start(engine, admin_user)
        sync_service.update_counters(engine, view.id, {"total_files_discovered": 10, "files_stored": 4})
        updated = sync_service.update_counters(engine, view.id, {"files_stored": 2})

        assert updated.counters.files_stored == 4
        assert updated.to_dict()["progress"]["message"] == "Storing files (4/10)..."

    def test_counters_ahead_of_discovery_cap_progress_only(self, engine, admin_user):
        view = self._start(engine, admin_user)
        updated = sync_service.update_counters(
            engine, view.id, {"total_files_discovered": 5, "files_stored": 9, "files_classified": 9},
        )

        assert updated.counters == SyncCounters(5, 9, 9)
        progress_part = updated.to_dict()["progress"]
        assert progress_part["storage"] == 100
        assert progress_part["overall"] == 100

    def test_out_of_order_reports_keep_stored_count(self, engine, admin_user):
        view = self._start(engine, admin_user)
        sync_service.update_counters(engine, view.id, {"total_files_discovered": 10})
        early = sync_service.update_counters(engine, view.id, {"files_stored": 20})
        assert early.counters.files_stored == 20

        caught_up = sync_service.update_counters(engine, view.id, {"total_files_discovered": 30})

        assert caught_up.counters == SyncCounters(30, 20, 0)
        assert caught_up.to_dict()["progress"]["message"] == "Storing files (20/30)..."
        stored = sync_service.get_session_view(engine, view.id)
        assert stored.counters.files_stored == 20

    def test_unknown_counter_rejected(self, engine, admin_user):
        view = self._start(engine, admin_user)
        with pytest.raises(InvalidTransition, match="Unknown sync counters"):
            sync_service.update_counters(engine, view.id, {"files_deleted": 1})

    def test_complete_is_terminal(self, engine, admin_user):
        view = self._start(engine, admin_user)
        done = sync_service.complete_session(
            engine, view.id, {"total_files_discovered": 4, "files_stored": 4, "files_classified": 4},
        )

        assert done.status == "completed"
        assert done.completed_at is not None
        assert sync_service.get_current_session(engine, "team-1") is None
        with pytest.raises(InvalidTransition, match="already completed"):
            sync_service.update_counters(engine, view.id, {"files_stored": 5})
        with pytest.raises(InvalidTransition):
            sync_service.fail_session(engine, view.id, "late failure")

    def test_fail_records_reason_and_frees_team(self, engine, admin_user):
        view = self._start(engine, admin_user)
        failed = sync_service.fail_session(engine, view.id, "Drive token revoked")

        assert failed.status == "failed"
        assert failed.error_message == "Drive token revoked"
        assert failed.to_dict()["progress"]["message"] == "Sync failed"
        assert self._start(engine, admin_user).status == "in_progress"

    def test_unknown_session(self, engine, team):
        with pytest.raises(InvalidTransition, match="Unknown sync session"):
            sync_service.complete_session(engine, "nope")

    def test_recent_sessions_newest_first(self, engine, admin_user):
        t0 = datetime(2026, 3, 1, tzinfo=UTC)
        ids = []
        for i in range(3):
            view = self._start(engine, admin_user, now=t0 + timedelta(hours=i))
            sync_service.complete_session(engine, view.id)
            ids.append(view.id)

        recent = sync_service.recent_sessions(engine, "team-1", limit=2)
        assert [v.id for v in recent] == [ids[2], ids[1]]

    def test_recent_sessions_default_limit_from_settings(self, engine, admin_user):
        set_setting(engine, "sync.recent_sessions_limit", 2)
        t0 = datetime(2026, 3, 1, tzinfo=UTC)
        for i in range(3):
            view = self._start(engine, admin_user, now=t0 + timedelta(hours=i))
            sync_service.complete_session(engine, view.id)

        assert len(sync_service.recent_sessions(engine, "team-1")) == 2
        assert len(sync_service.recent_sessions(engine, "team-1", limit=3)) == 3

    def test_session_view_database_failure_is_transient(self, empty_engine):
        with pytest.raises(TransientIOError):
            sync_service.get_session_view(empty_engine, "any-session")
