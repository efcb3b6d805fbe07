"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import json
import os

# ---------------------------------------------------------------------------
# JWT_SECRET must be set before launchprep.api.deps is imported; the module
# validates it at load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from launchprep.database.models import (  # noqa: E402
    Setting,
    Team,
    TeamFuelCounters,
    TeamRole,
    User,
)

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Render PG JSONB as TEXT on SQLite (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every launchprep table.

    StaticPool keeps one shared connection so worker threads
    (``asyncio.to_thread`` in :func:`run_db`) see the same database.
    """
    from sqlalchemy.pool import StaticPool

    from launchprep.database.models import Base

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def empty_engine() -> Engine:
    """SQLite engine with no tables; every query fails with OperationalError."""
    return create_engine("sqlite://", connect_args={"check_same_thread": False})


@pytest.fixture
def db_session(db_engine: Engine):
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------
def make_team(engine: Engine, team_id: str = "team-1", name: str = "Acme") -> str:
    with Session(engine) as session:
        session.add(Team(id=team_id, name=name))
        session.commit()
    return team_id


def make_user(
    engine: Engine,
    user_id: str,
    *,
    email: str | None = None,
    team_id: str | None = "team-1",
    role: TeamRole = TeamRole.MEMBER,
    full_name: str | None = None,
) -> str:
    with Session(engine) as session:
        session.add(User(
            id=user_id,
            email=email or f"{user_id}@example.com",
            team_id=team_id,
            role=role.value,
            full_name=full_name,
        ))
        session.commit()
    return user_id


def set_fuel_counters(
    engine: Engine,
    team_id: str,
    *,
    documents: int,
    categories: list[str] | None = None,
    pending: int = 0,
) -> None:
    with Session(engine) as session:
        row = session.get(TeamFuelCounters, team_id)
        if row is None:
            row = TeamFuelCounters(team_id=team_id)
            session.add(row)
        row.fully_synced_documents = documents
        row.pending_classification = pending
        row.categories = list(categories or [])
        row.drive_connected = True
        session.commit()


def set_setting(engine: Engine, key: str, value) -> None:
    with Session(engine) as session:
        session.merge(Setting(key=key, value_json=json.dumps(value)))
        session.commit()


@pytest.fixture
def team(db_engine: Engine) -> str:
    return make_team(db_engine)


@pytest.fixture
def admin_user(db_engine: Engine, team: str) -> str:
    return make_user(db_engine, "admin-1", role=TeamRole.ADMIN, full_name="Ada Admin")


@pytest.fixture
def member_user(db_engine: Engine, team: str) -> str:
    return make_user(db_engine, "member-1")


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------
def make_token(
    sub: str,
    *,
    team_id: str | None = "team-1",
    role: str = TeamRole.MEMBER.value,
    email: str | None = None,
) -> str:
    """Create a user JWT.  Usable from fixtures and directly in tests."""
    import jwt

    from launchprep.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {
            "sub": sub,
            "team_id": team_id,
            "role": role,
            "email": email or f"{sub}@example.com",
        },
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def make_admin_token(sub: str = "admin-1", team_id: str | None = "team-1") -> str:
    return make_token(sub, team_id=team_id, role=TeamRole.ADMIN.value)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
