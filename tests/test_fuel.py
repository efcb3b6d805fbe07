"""
tests/test_fuel.py — Threshold Table & Fuel Calculator
=======================================================

Pure-function tests; no database.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from launchprep.constants import format_points, round_half_up
from launchprep.database.models import Stage
from launchprep.engine import thresholds
from launchprep.engine.fuel import (
    FuelCounterCache,
    FuelCounters,
    attained_level,
    calculate_fuel_level,
    dimension_progress,
)


def _counters(docs: int, cats: int) -> FuelCounters:
    return FuelCounters.from_values(
        fully_synced_documents=docs,
        categories=[f"cat-{i}" for i in range(cats)],
    )


# ===========================================================================
# Threshold table
# ===========================================================================
class TestThresholds:

    @pytest.mark.parametrize("level", [0, -1, 6])
    def test_out_of_range_levels_have_no_threshold(self, level):
        assert thresholds.get(Stage.FUEL, level) is None

    def test_every_stage_has_five_levels(self):
        for stage in Stage:
            assert [t.level for t in thresholds.levels(stage)] == [1, 2, 3, 4, 5]

    def test_fuel_requirements(self):
        t = thresholds.get("fuel", 3)
        assert (t.documents_required, t.categories_required) == (50, 5)

    @pytest.mark.parametrize("stage, level, expected", [
        (Stage.FUEL, 0, 0),
        (Stage.FUEL, 1, 50),
        (Stage.FUEL, 2, 150),
        (Stage.FUEL, 5, 1150),
        (Stage.BOOSTERS, 4, 100),
        (Stage.GUIDANCE, 2, 30),
        (Stage.GUIDANCE, 9, 150),
    ])
    def test_points_are_cumulative(self, stage, level, expected):
        assert thresholds.points_for_level(stage, level) == expected

    def test_guidance_admin_only_levels(self):
        flags = [t.admin_only for t in thresholds.levels(Stage.GUIDANCE)]
        assert flags == [True, True, True, False, False]

    def test_achievement_key_round_trip(self):
        key = thresholds.achievement_key(Stage.BOOSTERS, 3)
        assert key == "boosters_level_3"
        assert thresholds.parse_achievement_key(key) == (Stage.BOOSTERS, 3)

    @pytest.mark.parametrize("key", ["boosters_level_6", "fuel_level", "rocket_level_1", ""])
    def test_bad_achievement_keys(self, key):
        assert thresholds.parse_achievement_key(key) is None


# ===========================================================================
# Level calculation
# ===========================================================================
class TestCalculateFuelLevel:

    def test_unknown_counters_are_not_level_zero(self):
        result = calculate_fuel_level(None)
        assert result.current_level is None
        assert result.is_known is False

    def test_empty_team_is_level_zero(self):
        result = calculate_fuel_level(_counters(0, 0))
        assert result.current_level == 0
        assert result.next_level == 1
        assert result.documents_needed == 1
        # Level 1 needs no categories, so that dimension is complete.
        assert result.category_progress == 100
        assert result.document_progress == 0
        assert result.progress_percentage == 50

    def test_six_documents_two_categories(self):
        result = calculate_fuel_level(_counters(6, 2))
        assert result.current_level == 2
        assert result.next_level == 3
        assert result.documents_needed == 44
        assert result.categories_needed == 3
        assert result.document_progress == 2
        assert result.category_progress == 0
        assert result.progress_percentage == 1

    def test_both_dimensions_are_required(self):
        # Enough documents for level 4 but categories only for level 2.
        assert calculate_fuel_level(_counters(250, 3)).current_level == 2

    def test_max_level(self):
        result = calculate_fuel_level(_counters(1000, 12))
        assert result.current_level == 5
        assert result.is_max_level
        assert result.next_level is None
        assert result.progress_percentage == 100

    def test_pending_documents_do_not_count(self):
        counters = FuelCounters.from_values(
            fully_synced_documents=0, pending_classification=20, categories=["a"],
        )
        assert counters.total_documents == 20
        assert attained_level(counters) == 0

    def test_explicit_category_count_overrides_set(self):
        counters = FuelCounters(fully_synced_documents=60, category_count=5)
        assert attained_level(counters) == 3

    def test_to_dict_for_unknown(self):
        data = calculate_fuel_level(None).to_dict()
        assert data["current_level"] is None
        assert data["categories"] == []


class TestHelpers:

    @pytest.mark.parametrize("value, expected", [(2.5, 3), (2.4, 2), (0.5, 1), (0, 0)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_dimension_progress_clamps(self):
        assert dimension_progress(500, 50, 200) == 100
        assert dimension_progress(0, 5, 50) == 0
        assert dimension_progress(3, 2, 2) == 100

    def test_format_points(self):
        assert format_points(1250) == "1,250 pts"


# ===========================================================================
# Counter cache
# ===========================================================================
class TestFuelCounterCache:

    def test_entry_expires_after_ttl(self):
        cache = FuelCounterCache(ttl_seconds=30)
        now = datetime(2026, 3, 1, tzinfo=UTC)
        cache.put("t1", _counters(6, 2), now=now)

        assert cache.get("t1", now=now + timedelta(seconds=29)) is not None
        assert cache.get("t1", now=now + timedelta(seconds=30)) is None

    def test_invalidate(self):
        cache = FuelCounterCache()
        cache.put("t1", _counters(1, 0))
        cache.invalidate("t1")
        assert cache.get("t1") is None

    def test_teams_are_independent(self):
        cache = FuelCounterCache()
        cache.put("t1", _counters(1, 0))
        assert cache.get("t2") is None
        cache.clear()
        assert cache.get("t1") is None
