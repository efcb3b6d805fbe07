"""
launchprep.api.routes.sync — Data sync session endpoints
=========================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from launchprep.api.deps import CurrentUser, get_dispatcher, get_engine, get_team_user
from launchprep.database.models import SyncType
from launchprep.engine.events import EngineEvent, EventKind
from launchprep.services import sync_service
from launchprep.services.refresh_service import RefreshDispatcher

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class SyncStart(BaseModel):
    sync_type: SyncType = SyncType.INITIAL
    root_folder_id: str | None = None
    additional_folders: list[str] = Field(default_factory=list)


class SyncCountersUpdate(BaseModel):
    total_files_discovered: int | None = Field(None, ge=0)
    files_stored: int | None = Field(None, ge=0)
    files_classified: int | None = Field(None, ge=0)


class SyncFail(BaseModel):
    reason: str


def _owned_session(engine, session_id: str, user: CurrentUser):
    view = sync_service.get_session_view(engine, session_id)
    if view is None or view.team_id != user.team_id:
        raise HTTPException(404, "Sync session not found")
    return view


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@router.get("/current")
def current_session(
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    view = sync_service.get_current_session(engine, user.team_id)
    return {"session": view.to_dict() if view else None}


@router.get("/recent")
def recent_sessions(
    limit: int | None = Query(None, ge=1, le=50),
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    views = sync_service.recent_sessions(engine, user.team_id, limit=limit)
    return {"sessions": [v.to_dict() for v in views]}


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
@router.post("/sessions", status_code=201)
def start_session(
    body: SyncStart,
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    view = sync_service.start_session(
        engine,
        team_id=user.team_id,
        user_id=user.id,
        sync_type=body.sync_type,
        root_folder_id=body.root_folder_id,
        additional_folders=body.additional_folders,
    )
    return view.to_dict()


@router.patch("/sessions/{session_id}")
def update_counters(
    session_id: str,
    body: SyncCountersUpdate,
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    _owned_session(engine, session_id, user)
    view = sync_service.update_counters(engine, session_id, body.model_dump(exclude_none=True))
    return view.to_dict()


@router.post("/sessions/{session_id}/complete")
def complete_session(
    session_id: str,
    body: SyncCountersUpdate | None = None,
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
    dispatcher: RefreshDispatcher = Depends(get_dispatcher),
):
    _owned_session(engine, session_id, user)
    final = body.model_dump(exclude_none=True) if body else None
    view = sync_service.complete_session(engine, session_id, final)
    dispatcher.handle(EngineEvent(kind=EventKind.SYNC_SESSION_CHANGED, team_id=user.team_id))
    return view.to_dict()


@router.post("/sessions/{session_id}/fail")
def fail_session(
    session_id: str,
    body: SyncFail,
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    _owned_session(engine, session_id, user)
    view = sync_service.fail_session(engine, session_id, body.reason)
    return view.to_dict()
