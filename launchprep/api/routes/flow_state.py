"""
launchprep.api.routes.flow_state — Resume a multi-step stage flow
==================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from launchprep.api.deps import CurrentUser, get_current_user, get_engine
from launchprep.database.models import Stage
from launchprep.services import flow_state_service

router = APIRouter(prefix="/flow-state", tags=["flow-state"])


class FlowStateUpdate(BaseModel):
    step: str
    payload: dict = Field(default_factory=dict)
    provider: str | None = None


@router.get("/{stage}")
def get_flow_state(
    stage: Stage,
    user: CurrentUser = Depends(get_current_user),
    engine=Depends(get_engine),
):
    view = flow_state_service.load_flow_state(engine, user.id, stage)
    return {"flow_state": view.to_dict() if view else None}


@router.put("/{stage}")
def save_flow_state(
    stage: Stage,
    body: FlowStateUpdate,
    user: CurrentUser = Depends(get_current_user),
    engine=Depends(get_engine),
):
    view = flow_state_service.save_flow_state(
        engine, user.id, stage, body.step, body.payload, body.provider,
    )
    return {"flow_state": view.to_dict()}


@router.delete("/{stage}", status_code=204)
def clear_flow_state(
    stage: Stage,
    user: CurrentUser = Depends(get_current_user),
    engine=Depends(get_engine),
):
    flow_state_service.clear_flow_state(engine, user.id, stage)
    return None
