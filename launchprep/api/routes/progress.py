"""
launchprep.api.routes.progress — Stage progress, actions & launch
==================================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from launchprep.api.deps import CurrentUser, get_dispatcher, get_engine, get_team_user
from launchprep.constants import STAGE_ORDER
from launchprep.database.models import CurrentStage, Stage
from launchprep.engine import thresholds
from launchprep.services import progression_service
from launchprep.services.refresh_service import RefreshDispatcher

router = APIRouter(prefix="/progress", tags=["progress"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class CurrentStageUpdate(BaseModel):
    stage: CurrentStage


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@router.get("")
def get_progress(
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
    dispatcher: RefreshDispatcher = Depends(get_dispatcher),
):
    """Caller's progress, after catching fuel up with the latest counters."""
    outcome = dispatcher.refresh_team(user.team_id, user_ids=[user.id])
    snapshot = progression_service.get_progress(engine, user.id)
    return {**snapshot.to_dict(), "fuel": outcome.fuel.to_dict()}


@router.get("/fuel")
def get_fuel_level(
    user: CurrentUser = Depends(get_team_user),
    dispatcher: RefreshDispatcher = Depends(get_dispatcher),
):
    return dispatcher.fuel_level(user.team_id).to_dict()


@router.get("/thresholds")
def get_thresholds(user: CurrentUser = Depends(get_team_user)):
    return {
        stage.value: [
            {
                "level": t.level,
                "description": t.description,
                "points_value": t.points_value,
                "documents_required": t.documents_required,
                "categories_required": t.categories_required,
                "action": t.action,
                "admin_only": t.admin_only,
                "coming_soon": t.coming_soon,
                "achievement_key": t.achievement_key,
            }
            for t in thresholds.levels(stage)
        ]
        for stage in STAGE_ORDER
    }


@router.get("/ledger")
def get_points_ledger(
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    return {"entries": progression_service.get_ledger(engine, user.id, limit=limit)}


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------
@router.post("/{stage}/levels/{level}")
def complete_level(
    stage: Stage,
    level: int,
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    """Record the action behind *level* of a boosters/guidance stage."""
    result = progression_service.complete_level_action(engine, user.id, stage, level)
    return result.to_dict()


@router.put("/current-stage")
def update_current_stage(
    body: CurrentStageUpdate,
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    current = progression_service.set_current_stage(engine, user.id, body.stage)
    return {"current_stage": current}


@router.post("/onboarding-seen", status_code=204)
def onboarding_seen(
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    progression_service.mark_onboarding_seen(engine, user.id)
    return None


@router.post("/launch")
def launch(
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    if not progression_service.launch(engine, user.id):
        raise HTTPException(409, "Launch preparation is already complete.")
    return {"launched": True}
