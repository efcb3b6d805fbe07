"""
launchprep.api.routes.admin — Team refresh & runtime settings
==============================================================
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from launchprep.api.deps import (
    CurrentUser,
    get_current_admin,
    get_dispatcher,
    get_engine,
    get_team_user,
)
from launchprep.database.engine import run_db
from launchprep.engine.events import EngineEvent, EventKind
from launchprep.services import settings_service
from launchprep.services.refresh_service import RefreshDispatcher

router = APIRouter(tags=["admin"])
logger = logging.getLogger(__name__)


class SettingUpdate(BaseModel):
    value: Any
    description: str | None = None


# ---------------------------------------------------------------------------
# Manual refresh: same path as a pushed change notification
# ---------------------------------------------------------------------------
@router.post("/teams/{team_id}/refresh")
async def refresh_team(
    team_id: str,
    user: CurrentUser = Depends(get_team_user),
    dispatcher: RefreshDispatcher = Depends(get_dispatcher),
):
    if user.team_id != team_id:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not a member of this team")
    event = EngineEvent(kind=EventKind.MANUAL_REFRESH, team_id=team_id, user_id=user.id)
    outcome = await run_db(dispatcher.handle, event)
    return outcome.to_dict()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/admin/settings")
def get_all_settings(
    admin: CurrentUser = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"settings": settings_service.get_all_settings(engine)}


@router.put("/admin/settings/{key}")
def update_setting(
    key: str,
    body: SettingUpdate,
    admin: CurrentUser = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    settings_service.upsert_setting(
        engine, key=key, value=body.value, description=body.description,
    )
    logger.info("Admin %s updated setting %s", admin.id, key)
    return {"key": key, "value": body.value}
