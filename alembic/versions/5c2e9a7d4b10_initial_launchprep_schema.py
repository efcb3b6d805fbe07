"""Initial launch preparation schema

Revision ID: 5c2e9a7d4b10
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e9a7d4b10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_ACTIVE_DELEGATION = "status IN ('pending_invite', 'accepted', 'in_progress')"


def _ts(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kw)


def upgrade() -> None:
    """Create every launchprep table."""
    op.create_table(
        "teams",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        _ts("created_at", server_default=sa.func.now()),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("full_name", sa.String(200), nullable=True),
        sa.Column(
            "team_id", sa.String(36),
            sa.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        _ts("created_at", server_default=sa.func.now()),
    )
    op.create_index("ix_users_team_id", "users", ["team_id"])

    op.create_table(
        "user_launch_status",
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("current_stage", sa.String(20), nullable=False, server_default="fuel"),
        sa.Column("has_seen_onboarding", sa.Boolean(), server_default=sa.false()),
        sa.Column("awaiting_team_setup", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_setup_admin", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_launched", sa.Boolean(), server_default=sa.false()),
        _ts("launched_at", nullable=True),
        _ts("updated_at", server_default=sa.func.now()),
    )

    op.create_table(
        "stage_progress",
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("stage", sa.String(20), primary_key=True),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        _ts("updated_at", server_default=sa.func.now()),
        sa.CheckConstraint("level BETWEEN 0 AND 5", name="ck_stage_progress_level"),
    )

    op.create_table(
        "stage_achievements",
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("stage", sa.String(20), primary_key=True),
        sa.Column("achievement_key", sa.String(50), primary_key=True),
        sa.Column("source", sa.String(20), nullable=False, server_default="earned"),
        _ts("granted_at", server_default=sa.func.now()),
    )

    op.create_table(
        "points_ledger",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("stage", sa.String(20), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reason", sa.String(50), nullable=False),
        sa.Column("reason_display", sa.String(200), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _ts("created_at", server_default=sa.func.now()),
    )
    op.create_index("ix_points_ledger_user_time", "points_ledger", ["user_id", "created_at"])

    op.create_table(
        "setup_delegations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "team_id", sa.String(36),
            sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "delegating_user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("delegated_to_email", sa.String(320), nullable=False),
        sa.Column(
            "delegated_user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending_invite"),
        sa.Column("invite_code", sa.String(16), nullable=True),
        _ts("expires_at", nullable=False),
        _ts("created_at", server_default=sa.func.now()),
        _ts("accepted_at", nullable=True),
        _ts("started_at", nullable=True),
        _ts("completed_at", nullable=True),
        _ts("cancelled_at", nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
    )
    # At most one non-terminal delegation per team
    op.create_index(
        "ix_setup_delegations_active_team",
        "setup_delegations",
        ["team_id"],
        unique=True,
        postgresql_where=sa.text(_ACTIVE_DELEGATION),
    )
    op.create_index(
        "ix_setup_delegations_team_time", "setup_delegations", ["team_id", "created_at"],
    )

    op.create_table(
        "data_sync_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "team_id", sa.String(36),
            sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("sync_type", sa.String(20), nullable=False, server_default="initial"),
        sa.Column("status", sa.String(20), nullable=False, server_default="in_progress"),
        sa.Column("total_files_discovered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("files_stored", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("files_classified", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("root_folder_id", sa.String(200), nullable=True),
        sa.Column("additional_folders", postgresql.JSONB(), nullable=True),
        _ts("started_at", server_default=sa.func.now()),
        _ts("completed_at", nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_data_sync_sessions_running_team",
        "data_sync_sessions",
        ["team_id"],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
    )
    op.create_index(
        "ix_data_sync_sessions_team_started", "data_sync_sessions", ["team_id", "started_at"],
    )

    op.create_table(
        "team_fuel_counters",
        sa.Column(
            "team_id", sa.String(36),
            sa.ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("fully_synced_documents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_classification", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("categories", postgresql.JSONB(), nullable=True),
        sa.Column("drive_connected", sa.Boolean(), server_default=sa.false()),
        _ts("updated_at", server_default=sa.func.now()),
    )

    op.create_table(
        "flow_states",
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("stage", sa.String(20), primary_key=True),
        sa.Column("step", sa.String(30), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("provider", sa.String(20), nullable=True),
        _ts("updated_at", server_default=sa.func.now()),
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("updated_at", server_default=sa.func.now()),
    )
    op.create_index("ix_settings_category", "settings", ["category"])


def downgrade() -> None:
    """Drop every launchprep table."""
    op.drop_index("ix_settings_category", table_name="settings")
    op.drop_table("settings")
    op.drop_table("flow_states")
    op.drop_table("team_fuel_counters")
    op.drop_index("ix_data_sync_sessions_team_started", table_name="data_sync_sessions")
    op.drop_index("ix_data_sync_sessions_running_team", table_name="data_sync_sessions")
    op.drop_table("data_sync_sessions")
    op.drop_index("ix_setup_delegations_team_time", table_name="setup_delegations")
    op.drop_index("ix_setup_delegations_active_team", table_name="setup_delegations")
    op.drop_table("setup_delegations")
    op.drop_index("ix_points_ledger_user_time", table_name="points_ledger")
    op.drop_table("points_ledger")
    op.drop_table("stage_achievements")
    op.drop_table("stage_progress")
    op.drop_table("user_launch_status")
    op.drop_index("ix_users_team_id", table_name="users")
    op.drop_table("users")
    op.drop_table("teams")
