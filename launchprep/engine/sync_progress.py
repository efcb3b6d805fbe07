"""
launchprep.engine.sync_progress — Sync Session Progress Formula
================================================================

Pure module.  Maps a sync session's three counters onto one 0–100 value
weighted by the pipeline's real sequencing::

    overall = 0.10 * discovery + 0.40 * storage + 0.50 * classification

The weights are fixed; the order discovery → storage → classification
mirrors the ingestion pipeline and is not configurable.
"""

from __future__ import annotations

from dataclasses import dataclass

from launchprep.constants import round_half_up
from launchprep.database.models import SyncStatus

DISCOVERY_WEIGHT = 0.10
STORAGE_WEIGHT = 0.40
CLASSIFICATION_WEIGHT = 0.50

COUNTER_FIELDS: tuple[str, ...] = (
    "total_files_discovered",
    "files_stored",
    "files_classified",
)


@dataclass(frozen=True, slots=True)
class SyncCounters:
    total_files_discovered: int = 0
    files_stored: int = 0
    files_classified: int = 0

    def merged(self, update: dict[str, int | None]) -> SyncCounters:
        """Merge a partial update, keeping each counter non-decreasing."""
        values = {
            name: max(getattr(self, name), int(update.get(name) or 0))
            for name in COUNTER_FIELDS
        }
        return SyncCounters(**values)

    def clamped(self) -> SyncCounters:
        """Enforce ``classified ≤ stored ≤ total`` once discovery has run."""
        if self.total_files_discovered <= 0:
            return self
        stored = min(self.files_stored, self.total_files_discovered)
        return SyncCounters(
            total_files_discovered=self.total_files_discovered,
            files_stored=stored,
            files_classified=min(self.files_classified, stored),
        )


@dataclass(frozen=True, slots=True)
class SyncProgress:
    discovery: int
    storage: int
    classification: int
    overall: int
    message: str

    def to_dict(self) -> dict:
        return {
            "discovery": self.discovery,
            "storage": self.storage,
            "classification": self.classification,
            "overall": self.overall,
            "message": self.message,
        }


def _ratio(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        return 0
    return max(0, min(100, round_half_up(numerator / denominator * 100)))


def progress(total: int, stored: int, classified: int) -> int:
    """Overall percent for raw counter values."""
    discovery = 100 if total > 0 else 0
    storage = _ratio(stored, total)
    classification = _ratio(classified, stored)
    return round_half_up(
        DISCOVERY_WEIGHT * discovery
        + STORAGE_WEIGHT * storage
        + CLASSIFICATION_WEIGHT * classification
    )


def status_message(status: SyncStatus | str, counters: SyncCounters) -> str:
    """Human-readable phase for a session."""
    status = SyncStatus(status)
    counters = counters.clamped()
    if status == SyncStatus.COMPLETED:
        return "Sync complete"
    if status == SyncStatus.FAILED:
        return "Sync failed"
    if counters.total_files_discovered <= 0:
        return "Discovering files..."
    if _ratio(counters.files_stored, counters.total_files_discovered) < 100:
        return (
            f"Storing files ({counters.files_stored}/"
            f"{counters.total_files_discovered})..."
        )
    if _ratio(counters.files_classified, counters.files_stored) < 100:
        return (
            f"Classifying with Smart Data ({counters.files_classified}/"
            f"{counters.files_stored})..."
        )
    return "Finalizing..."


def compute_progress(status: SyncStatus | str, counters: SyncCounters) -> SyncProgress:
    """Progress parts for a session; counters ahead of discovery are capped."""
    counters = counters.clamped()
    total = counters.total_files_discovered
    return SyncProgress(
        discovery=100 if total > 0 else 0,
        storage=_ratio(counters.files_stored, total),
        classification=_ratio(counters.files_classified, counters.files_stored),
        overall=progress(total, counters.files_stored, counters.files_classified),
        message=status_message(status, counters),
    )
