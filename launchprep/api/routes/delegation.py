"""
launchprep.api.routes.delegation — Setup delegation endpoints
==============================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from launchprep.api.deps import (
    CurrentUser,
    get_engine,
    get_invite_sender,
    get_notifier,
    get_team_user,
    get_user_directory,
)
from launchprep.services import delegation_service

router = APIRouter(prefix="/delegation", tags=["delegation"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class DelegationCreate(BaseModel):
    email: str


class DelegationAccept(BaseModel):
    invite_code: str | None = None


# ---------------------------------------------------------------------------
# Delegator
# ---------------------------------------------------------------------------
@router.get("")
def get_delegation(
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    view = delegation_service.get_delegation_view(engine, user.team_id)
    if view is None:
        raise HTTPException(404, "No setup delegation for this team")
    return view.to_dict()


@router.post("", status_code=201)
def create_delegation(
    body: DelegationCreate,
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
    directory=Depends(get_user_directory),
    sender=Depends(get_invite_sender),
):
    view = delegation_service.create_delegation(
        engine,
        team_id=user.team_id,
        delegating_user_id=user.id,
        delegate_email=body.email,
        directory=directory,
        sender=sender,
    )
    return view.to_dict()


@router.delete("")
def cancel_delegation(
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    view = delegation_service.cancel_delegation(
        engine, team_id=user.team_id, delegating_user_id=user.id,
    )
    return view.to_dict()


@router.post("/resend")
def resend_invite(
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
    sender=Depends(get_invite_sender),
):
    view = delegation_service.resend_invite(
        engine, team_id=user.team_id, delegating_user_id=user.id, sender=sender,
    )
    return view.to_dict()


# ---------------------------------------------------------------------------
# Delegate
# ---------------------------------------------------------------------------
@router.post("/accept")
def accept_delegation(
    body: DelegationAccept,
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    view = delegation_service.accept_delegation(
        engine, team_id=user.team_id, delegate_user_id=user.id, invite_code=body.invite_code,
    )
    return view.to_dict()


@router.post("/start")
def start_delegation(
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
):
    view = delegation_service.start_delegation(
        engine, team_id=user.team_id, delegate_user_id=user.id,
    )
    return view.to_dict()


@router.post("/complete")
def complete_delegation(
    user: CurrentUser = Depends(get_team_user),
    engine=Depends(get_engine),
    notifier=Depends(get_notifier),
):
    view = delegation_service.complete_delegation(
        engine, team_id=user.team_id, delegate_user_id=user.id, notifier=notifier,
    )
    return view.to_dict()
