"""
launchprep.engine.fuel — Fuel Level Calculator
===============================================

Pure module — derives the Fuel stage level (0–5) from a team's document
and category counters, plus the deltas and progress toward the next
level.  Counters are a "latest known snapshot"; the calculator never
sees deltas.

Missing counters produce an *unknown* result (``current_level is None``)
instead of level 0 so callers never regress a stored level.

:class:`FuelCounterCache` is the explicit, caller-owned cache entry that
replaces a module-level "last fetched" timestamp.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from launchprep.constants import DEFAULT_FUEL_CACHE_SECONDS, MAX_LEVEL, round_half_up
from launchprep.database.models import Stage
from launchprep.engine import thresholds


@dataclass(frozen=True, slots=True)
class FuelCounters:
    """Document/category snapshot reported by the ingestion pipeline."""

    fully_synced_documents: int = 0
    pending_classification: int = 0
    categories: frozenset[str] = frozenset()
    drive_connected: bool = False
    category_count: int | None = None

    def __post_init__(self) -> None:
        if self.category_count is None:
            object.__setattr__(self, "category_count", len(self.categories))

    @property
    def total_documents(self) -> int:
        return self.fully_synced_documents + self.pending_classification

    @classmethod
    def from_values(
        cls,
        *,
        fully_synced_documents: int,
        pending_classification: int = 0,
        categories: Iterable[str] = (),
        drive_connected: bool = False,
    ) -> FuelCounters:
        return cls(
            fully_synced_documents=max(0, int(fully_synced_documents)),
            pending_classification=max(0, int(pending_classification)),
            categories=frozenset(c for c in categories if c),
            drive_connected=bool(drive_connected),
        )


@dataclass(slots=True)
class FuelLevelResult:
    """Output of :func:`calculate_fuel_level`.

    ``current_level`` is ``None`` when counters were unavailable; every
    other field is then zeroed and must not be used to drive progression.
    """

    current_level: int | None
    counters: FuelCounters | None = None
    next_level: int | None = None
    documents_required: int = 0
    categories_required: int = 0
    documents_needed: int = 0
    categories_needed: int = 0
    document_progress: int = 0
    category_progress: int = 0

    @property
    def is_known(self) -> bool:
        return self.current_level is not None

    @property
    def is_max_level(self) -> bool:
        return self.current_level == MAX_LEVEL

    @property
    def progress_percentage(self) -> int:
        """Average of the two per-dimension progress values."""
        return round_half_up((self.document_progress + self.category_progress) / 2)

    def to_dict(self) -> dict:
        counters = self.counters
        return {
            "current_level": self.current_level,
            "total_documents": counters.total_documents if counters else None,
            "fully_synced_documents": counters.fully_synced_documents if counters else None,
            "pending_classification": counters.pending_classification if counters else None,
            "category_count": counters.category_count if counters else None,
            "categories": sorted(counters.categories) if counters else [],
            "drive_connected": counters.drive_connected if counters else False,
            "next_level": self.next_level,
            "next_level_requirements": {
                "documents": self.documents_required,
                "categories": self.categories_required,
            },
            "documents_needed": self.documents_needed,
            "categories_needed": self.categories_needed,
            "document_progress": self.document_progress,
            "category_progress": self.category_progress,
            "progress_percentage": self.progress_percentage,
        }


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------
def dimension_progress(value: int, prev_required: int, next_required: int) -> int:
    """Percent of the way from *prev_required* to *next_required*.

    A dimension that does not gate the next level (zero or negative
    span) is always 100%.
    """
    span = next_required - prev_required
    if span <= 0:
        return 100
    pct = round_half_up((value - prev_required) / span * 100)
    return max(0, min(100, pct))


def attained_level(counters: FuelCounters) -> int:
    """Highest fuel level whose document AND category requirements are met."""
    level = 0
    for threshold in thresholds.levels(Stage.FUEL):
        if (
            counters.fully_synced_documents >= threshold.documents_required
            and counters.category_count >= threshold.categories_required
        ):
            level = threshold.level
        else:
            break
    return level


def calculate_fuel_level(counters: FuelCounters | None) -> FuelLevelResult:
    """Compute the fuel level and next-level progress for *counters*.

    Levels are walked from 1 upward; the first unmet level stops the walk,
    so a team can never be credited with a level whose predecessor it has
    not reached.
    """
    if counters is None:
        return FuelLevelResult(current_level=None)

    level = attained_level(counters)
    if level >= MAX_LEVEL:
        return FuelLevelResult(
            current_level=MAX_LEVEL,
            counters=counters,
            document_progress=100,
            category_progress=100,
        )

    current = thresholds.get(Stage.FUEL, level)
    nxt = thresholds.get(Stage.FUEL, level + 1)
    prev_docs = current.documents_required if current else 0
    prev_cats = current.categories_required if current else 0

    return FuelLevelResult(
        current_level=level,
        counters=counters,
        next_level=nxt.level,
        documents_required=nxt.documents_required,
        categories_required=nxt.categories_required,
        documents_needed=max(0, nxt.documents_required - counters.fully_synced_documents),
        categories_needed=max(0, nxt.categories_required - counters.category_count),
        document_progress=dimension_progress(
            counters.fully_synced_documents, prev_docs, nxt.documents_required,
        ),
        category_progress=dimension_progress(
            counters.category_count, prev_cats, nxt.categories_required,
        ),
    )


# ---------------------------------------------------------------------------
# Counter cache
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CacheEntry:
    counters: FuelCounters
    expires_at: datetime


@dataclass
class FuelCounterCache:
    """Per-team counter snapshots with an explicit expiry.

    Owned by whoever refreshes counters (the refresh dispatcher, an API
    process); there is no module-level state.
    """

    ttl_seconds: int = DEFAULT_FUEL_CACHE_SECONDS
    _entries: dict[str, CacheEntry] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, team_id: str, now: datetime | None = None) -> FuelCounters | None:
        """Return the cached snapshot, or ``None`` if missing or expired."""
        now = now or datetime.now(UTC)
        with self._lock:
            entry = self._entries.get(team_id)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[team_id]
                return None
            return entry.counters

    def put(
        self, team_id: str, counters: FuelCounters, now: datetime | None = None,
    ) -> CacheEntry:
        now = now or datetime.now(UTC)
        entry = CacheEntry(counters, now + timedelta(seconds=self.ttl_seconds))
        with self._lock:
            self._entries[team_id] = entry
        return entry

    def invalidate(self, team_id: str) -> None:
        with self._lock:
            self._entries.pop(team_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
