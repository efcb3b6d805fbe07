"""
launchprep.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- teams               — Team directory mirror (id, name)
- users               — Team members (e-mail, role)
- user_launch_status  — Per-user routing flags (current stage, awaiting setup)
- stage_progress      — Per (user, stage) level ratchet
- stage_achievements  — Append-only achievement ledger
- points_ledger       — Non-authoritative activity log of point awards
- setup_delegations   — Setup-admin hand-off state machine rows
- data_sync_sessions  — Bulk ingestion runs and their counters
- team_fuel_counters  — Counter snapshot written by the ingestion pipeline
- flow_states         — Persisted multi-step flow position per (user, stage)
- settings            — Runtime tuning key/value store
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all launchprep ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Stage(enum.StrEnum):
    """The three ordered progression tracks."""
    FUEL = "fuel"
    BOOSTERS = "boosters"
    GUIDANCE = "guidance"


class CurrentStage(enum.StrEnum):
    """Where a user is routed in the launch flow."""
    FUEL = "fuel"
    BOOSTERS = "boosters"
    GUIDANCE = "guidance"
    READY = "ready"
    LAUNCHED = "launched"


class TeamRole(enum.StrEnum):
    ADMIN = "admin"
    MEMBER = "member"


class DelegationStatus(enum.StrEnum):
    """Lifecycle of a setup delegation."""
    PENDING_INVITE = "pending_invite"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_DELEGATION_STATUSES: frozenset[DelegationStatus] = frozenset({
    DelegationStatus.PENDING_INVITE,
    DelegationStatus.ACCEPTED,
    DelegationStatus.IN_PROGRESS,
})


class SyncType(enum.StrEnum):
    INITIAL = "initial"
    INCREMENTAL = "incremental"
    MANUAL = "manual"


class SyncStatus(enum.StrEnum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class AchievementSource(enum.StrEnum):
    """How an achievement row came to exist."""
    EARNED = "earned"
    RECONCILED = "reconciled"
    INHERITED = "inherited"


# ---------------------------------------------------------------------------
# Teams & users: mirror of the external team directory
# ---------------------------------------------------------------------------
class Team(Base):
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    members: Mapped[list[User]] = relationship(back_populates="team")

    def __repr__(self) -> str:
        return f"<Team id={self.id} name={self.name!r}>"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(String(200), default=None)
    team_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=TeamRole.MEMBER)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    team: Mapped[Team | None] = relationship(back_populates="members")
    launch_status: Mapped[LaunchStatus | None] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_users_team_id", "team_id"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == TeamRole.ADMIN

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"


# ---------------------------------------------------------------------------
# LaunchStatus: one row per user, drives routing
# ---------------------------------------------------------------------------
class LaunchStatus(Base):
    """Per-user routing flags for the launch preparation flow.

    ``awaiting_team_setup`` is set while the user has delegated setup to
    someone else; progression updates for that user are paused.
    """
    __tablename__ = "user_launch_status"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    current_stage: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CurrentStage.FUEL
    )
    has_seen_onboarding: Mapped[bool] = mapped_column(Boolean, default=False)
    awaiting_team_setup: Mapped[bool] = mapped_column(Boolean, default=False)
    is_setup_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    is_launched: Mapped[bool] = mapped_column(Boolean, default=False)
    launched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped[User] = relationship(back_populates="launch_status")

    def __repr__(self) -> str:
        return (
            f"<LaunchStatus user={self.user_id} stage={self.current_stage} "
            f"awaiting={self.awaiting_team_setup}>"
        )


# ---------------------------------------------------------------------------
# StageProgress: per (user, stage) level ratchet
# ---------------------------------------------------------------------------
class StageProgress(Base):
    """Stored level for one stage.

    Points are not stored: they are derived from ``level`` via the
    threshold table so the two can never drift apart.
    """
    __tablename__ = "stage_progress"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    stage: Mapped[str] = mapped_column(String(20), primary_key=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("level BETWEEN 0 AND 5", name="ck_stage_progress_level"),
    )

    def __repr__(self) -> str:
        return f"<StageProgress user={self.user_id} stage={self.stage} lvl={self.level}>"


# ---------------------------------------------------------------------------
# StageAchievement: append-only achievement ledger
# ---------------------------------------------------------------------------
class StageAchievement(Base):
    __tablename__ = "stage_achievements"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    stage: Mapped[str] = mapped_column(String(20), primary_key=True)
    achievement_key: Mapped[str] = mapped_column(String(50), primary_key=True)
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AchievementSource.EARNED
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<StageAchievement user={self.user_id} key={self.achievement_key}>"


# ---------------------------------------------------------------------------
# PointsLedger: activity journal (not the source of truth for totals)
# ---------------------------------------------------------------------------
class PointsLedgerEntry(Base):
    __tablename__ = "points_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    stage: Mapped[str | None] = mapped_column(String(20), nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    reason_display: Mapped[str | None] = mapped_column(String(200), nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_points_ledger_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<PointsLedgerEntry id={self.id} user={self.user_id} pts={self.points}>"


# ---------------------------------------------------------------------------
# SetupDelegation: hand-off of setup to an invited admin
# ---------------------------------------------------------------------------
class SetupDelegation(Base):
    __tablename__ = "setup_delegations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    team_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    delegating_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    delegated_to_email: Mapped[str] = mapped_column(String(320), nullable=False)
    delegated_user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DelegationStatus.PENDING_INVITE
    )
    invite_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        # One non-terminal delegation per team
        Index(
            "ix_setup_delegations_active_team",
            "team_id",
            unique=True,
            postgresql_where=text("status IN ('pending_invite', 'accepted', 'in_progress')"),
            sqlite_where=text("status IN ('pending_invite', 'accepted', 'in_progress')"),
        ),
        Index("ix_setup_delegations_team_time", "team_id", "created_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_DELEGATION_STATUSES

    def __repr__(self) -> str:
        return f"<SetupDelegation id={self.id} team={self.team_id} status={self.status}>"


# ---------------------------------------------------------------------------
# DataSyncSession: one bulk ingestion run
# ---------------------------------------------------------------------------
class DataSyncSession(Base):
    __tablename__ = "data_sync_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    team_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False, default=SyncType.INITIAL)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SyncStatus.IN_PROGRESS
    )
    total_files_discovered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_stored: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    files_classified: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    root_folder_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    additional_folders: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index(
            "ix_data_sync_sessions_running_team",
            "team_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        Index("ix_data_sync_sessions_team_started", "team_id", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<DataSyncSession id={self.id} team={self.team_id} status={self.status}>"


# ---------------------------------------------------------------------------
# TeamFuelCounters: written by the ingestion pipeline, read-only here
# ---------------------------------------------------------------------------
class TeamFuelCounters(Base):
    """Latest known document/category snapshot for a team.

    The ingestion pipeline upserts this row and NOTIFYs
    ``launchprep_changes`` with ``{"kind": "counters_changed"}``.
    """
    __tablename__ = "team_fuel_counters"

    team_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True
    )
    fully_synced_documents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pending_classification: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    categories: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    drive_connected: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<TeamFuelCounters team={self.team_id} "
            f"docs={self.fully_synced_documents}>"
        )


# ---------------------------------------------------------------------------
# FlowState: persisted position inside a multi-step stage flow
# ---------------------------------------------------------------------------
class FlowState(Base):
    __tablename__ = "flow_states"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    stage: Mapped[str] = mapped_column(String(20), primary_key=True)
    step: Mapped[str] = mapped_column(String(30), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    provider: Mapped[str | None] = mapped_column(String(20), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<FlowState user={self.user_id} stage={self.stage} step={self.step}>"


# ---------------------------------------------------------------------------
# Settings: key/value runtime tuning
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Values are stored as JSON strings; typed accessors live in
    :class:`~launchprep.engine.cache.SettingsCache`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r}>"
