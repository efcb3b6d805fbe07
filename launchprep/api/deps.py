"""
launchprep.api.deps — FastAPI dependency injection
===================================================
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from launchprep.config import LaunchPrepConfig, load_config
from launchprep.database.engine import create_db_engine
from launchprep.database.models import TeamRole
from launchprep.engine.cache import SettingsCache
from launchprep.services.collaborators import (
    PgEventNotifier,
    SqlCounterSource,
    SqlUserDirectory,
)
from launchprep.services.invite_service import ResendInviteSender
from launchprep.services.refresh_service import RefreshDispatcher

_WEAK_SECRETS = frozenset({
    "launchprep-dev-secret-change-me",
    "replace-with-a-long-random-secret",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> LaunchPrepConfig:
    return load_config()


def get_session(engine: Annotated[Engine, Depends(get_engine)]):
    with Session(engine) as session:
        yield session


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------
def get_user_directory(engine: Annotated[Engine, Depends(get_engine)]) -> SqlUserDirectory:
    return SqlUserDirectory(engine)


def get_invite_sender(
    cfg: Annotated[LaunchPrepConfig, Depends(get_config)],
) -> ResendInviteSender:
    return ResendInviteSender(cfg)


def get_notifier(engine: Annotated[Engine, Depends(get_engine)]) -> PgEventNotifier:
    return PgEventNotifier(engine)


@lru_cache(maxsize=1)
def _dispatcher_for(engine: Engine) -> RefreshDispatcher:
    settings = SettingsCache(engine)
    settings.load_all()
    return RefreshDispatcher(engine, SqlCounterSource(engine), settings=settings)


def get_dispatcher(engine: Annotated[Engine, Depends(get_engine)]) -> RefreshDispatcher:
    """One dispatcher (and counter cache) per process."""
    return _dispatcher_for(engine)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CurrentUser:
    id: str
    team_id: str | None
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == TeamRole.ADMIN


def _decode(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> CurrentUser:
    """Validate the Bearer JWT and return the caller. Raises 401 if invalid."""
    payload = _decode(authorization)
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return CurrentUser(
        id=str(sub),
        team_id=payload.get("team_id"),
        email=payload.get("email", ""),
        role=payload.get("role", TeamRole.MEMBER.value),
    )


def get_team_user(
    user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Caller who belongs to a team. Raises 403 otherwise."""
    if not user.team_id:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not a team member")
    return user


def get_current_admin(
    user: Annotated[CurrentUser, Depends(get_current_user)],
) -> CurrentUser:
    """Caller with the team admin role. Raises 403 otherwise."""
    if not user.is_admin:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return user
