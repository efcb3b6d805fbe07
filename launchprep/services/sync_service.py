"""
launchprep.services.sync_service — Data Sync Session Tracker
=============================================================

Tracks bulk ingestion runs.  The engine never waits on a sync: the
ingestion pipeline reports counters here and the UI polls (or is pushed)
the normalized progress.

Rules:
- One ``in_progress`` session per team; ``start`` rejects a second one.
- Counter updates are merged with ``max()`` so late or duplicated
  reports never move a counter backwards.  Stored counters are the raw
  merge; the ``classified ≤ stored ≤ total`` cap applies only to the
  derived progress.
- ``completed`` and ``failed`` are terminal; later updates are rejected.
- There is no timeout: a session stuck ``in_progress`` stays that way
  until the pipeline reports completion or failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from launchprep.database.engine import get_session
from launchprep.database.models import DataSyncSession, SyncStatus, SyncType
from launchprep.engine.sync_progress import COUNTER_FIELDS, SyncCounters, compute_progress
from launchprep.errors import InvalidTransition, TransientIOError
from launchprep.services.settings_service import get_setting_value

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 5


@dataclass(slots=True)
class SyncSessionView:
    id: str
    team_id: str
    user_id: str | None
    sync_type: str
    status: str
    counters: SyncCounters
    root_folder_id: str | None
    additional_folders: list
    started_at: datetime | None
    completed_at: datetime | None
    error_message: str | None

    @property
    def is_active(self) -> bool:
        return self.status == SyncStatus.IN_PROGRESS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "sync_type": self.sync_type,
            "status": self.status,
            "total_files_discovered": self.counters.total_files_discovered,
            "files_stored": self.counters.files_stored,
            "files_classified": self.counters.files_classified,
            "root_folder_id": self.root_folder_id,
            "additional_folders": list(self.additional_folders),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message,
            "progress": compute_progress(self.status, self.counters).to_dict(),
        }


def _counters(row: DataSyncSession) -> SyncCounters:
    return SyncCounters(
        total_files_discovered=row.total_files_discovered,
        files_stored=row.files_stored,
        files_classified=row.files_classified,
    )


def _view(row: DataSyncSession) -> SyncSessionView:
    return SyncSessionView(
        id=row.id,
        team_id=row.team_id,
        user_id=row.user_id,
        sync_type=row.sync_type,
        status=row.status,
        counters=_counters(row),
        root_folder_id=row.root_folder_id,
        additional_folders=list(row.additional_folders or []),
        started_at=row.started_at,
        completed_at=row.completed_at,
        error_message=row.error_message,
    )


def _apply_counters(row: DataSyncSession, update: dict[str, int | None]) -> None:
    merged = _counters(row).merged(update)
    if merged.clamped() != merged:
        logger.warning(
            "Sync session %s counters run ahead of discovery (%s); progress is capped",
            row.id, merged,
        )
    for name in COUNTER_FIELDS:
        setattr(row, name, getattr(merged, name))


def _load_running(session: Session, session_id: str) -> DataSyncSession:
    row = session.get(DataSyncSession, session_id, with_for_update=True)
    if row is None:
        raise InvalidTransition(f"Unknown sync session {session_id}.")
    if row.status != SyncStatus.IN_PROGRESS:
        raise InvalidTransition(f"Sync session {session_id} is already {row.status}.")
    return row


def _recent_limit(session: Session) -> int:
    try:
        return int(get_setting_value(session, "sync.recent_sessions_limit", DEFAULT_RECENT_LIMIT))
    except (TypeError, ValueError):
        return DEFAULT_RECENT_LIMIT


def _current(session: Session, team_id: str) -> DataSyncSession | None:
    return session.scalars(
        select(DataSyncSession)
        .where(
            DataSyncSession.team_id == team_id,
            DataSyncSession.status == SyncStatus.IN_PROGRESS.value,
        )
        .order_by(DataSyncSession.started_at.desc())
    ).first()


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def start_session(
    engine: Engine,
    *,
    team_id: str,
    user_id: str | None,
    sync_type: SyncType | str = SyncType.INITIAL,
    root_folder_id: str | None = None,
    additional_folders: list[str] | None = None,
    now: datetime | None = None,
) -> SyncSessionView:
    """Open a new ``in_progress`` session with all counters at 0."""
    sync_type = SyncType(sync_type)
    try:
        with get_session(engine) as session:
            running = _current(session, team_id)
            if running is not None:
                raise InvalidTransition(
                    f"A sync is already running for this team (session {running.id})."
                )
            row = DataSyncSession(
                team_id=team_id,
                user_id=user_id,
                sync_type=sync_type.value,
                status=SyncStatus.IN_PROGRESS.value,
                total_files_discovered=0,
                files_stored=0,
                files_classified=0,
                root_folder_id=root_folder_id,
                additional_folders=list(additional_folders or []),
                started_at=now or datetime.now(UTC),
            )
            try:
                with session.begin_nested():
                    session.add(row)
                    session.flush()
            except IntegrityError:
                raise InvalidTransition("A sync is already running for this team.") from None
            view = _view(row)
    except SQLAlchemyError as exc:
        raise TransientIOError("Could not start sync session") from exc

    logger.info("Sync session %s started (%s) for team %s", view.id, sync_type.value, team_id)
    return view


def update_counters(
    engine: Engine, session_id: str, partial_counters: dict[str, int | None],
) -> SyncSessionView:
    """Merge a partial counter report into a running session."""
    unknown = set(partial_counters) - set(COUNTER_FIELDS)
    if unknown:
        raise InvalidTransition(f"Unknown sync counters: {sorted(unknown)}")
    try:
        with get_session(engine) as session:
            row = _load_running(session, session_id)
            _apply_counters(row, partial_counters)
            return _view(row)
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not update sync session {session_id}") from exc


def complete_session(
    engine: Engine,
    session_id: str,
    final_counters: dict[str, int | None] | None = None,
    *,
    now: datetime | None = None,
) -> SyncSessionView:
    try:
        with get_session(engine) as session:
            row = _load_running(session, session_id)
            if final_counters:
                _apply_counters(row, final_counters)
            row.status = SyncStatus.COMPLETED.value
            row.completed_at = now or datetime.now(UTC)
            view = _view(row)
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not complete sync session {session_id}") from exc

    logger.info(
        "Sync session %s completed: %d stored, %d classified",
        session_id, view.counters.files_stored, view.counters.files_classified,
    )
    return view


def fail_session(
    engine: Engine, session_id: str, reason: str, *, now: datetime | None = None,
) -> SyncSessionView:
    try:
        with get_session(engine) as session:
            row = _load_running(session, session_id)
            row.status = SyncStatus.FAILED.value
            row.error_message = reason
            row.completed_at = now or datetime.now(UTC)
            view = _view(row)
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not fail sync session {session_id}") from exc

    logger.warning("Sync session %s failed: %s", session_id, reason)
    return view


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_current_session(engine: Engine, team_id: str) -> SyncSessionView | None:
    """The most recently started ``in_progress`` session, if any."""
    try:
        with Session(engine) as session:
            row = _current(session, team_id)
            return _view(row) if row is not None else None
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not load current sync for team {team_id}") from exc


def get_session_view(engine: Engine, session_id: str) -> SyncSessionView | None:
    try:
        with Session(engine) as session:
            row = session.get(DataSyncSession, session_id)
            return _view(row) if row is not None else None
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not load sync session {session_id}") from exc


def recent_sessions(
    engine: Engine, team_id: str, limit: int | None = None,
) -> list[SyncSessionView]:
    """Latest sessions for *team_id*, newest first.

    *limit* defaults to the ``sync.recent_sessions_limit`` setting.
    """
    try:
        with Session(engine) as session:
            if limit is None:
                limit = _recent_limit(session)
            rows = session.scalars(
                select(DataSyncSession)
                .where(DataSyncSession.team_id == team_id)
                .order_by(DataSyncSession.started_at.desc())
                .limit(limit)
            ).all()
            return [_view(r) for r in rows]
    except SQLAlchemyError as exc:
        raise TransientIOError(f"Could not load sync history for team {team_id}") from exc
