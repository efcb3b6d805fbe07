"""
launchprep.services.flow_state_service — Persisted Flow Position
=================================================================

Multi-step stage flows (connect a drive → choose folders → place files →
sync) survive a full-page redirect through an OAuth provider by storing
their position per (user, stage) instead of in browser session storage.

Steps ``connect`` and ``status`` are transient: they only make sense in
the page that opened them, so loading a state parked on either returns
nothing and clears the row.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import delete

from launchprep.database.engine import get_session
from launchprep.database.models import FlowState, Stage
from launchprep.errors import InvalidTransition

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class FlowStep(enum.StrEnum):
    CONNECT = "connect"
    CHOOSE_FOLDERS = "choose_folders"
    PLACE_FILES = "place_files"
    SYNC_DATA = "sync_data"
    STATUS = "status"


class DriveProvider(enum.StrEnum):
    GOOGLE = "google"
    MICROSOFT = "microsoft"


TRANSIENT_STEPS: frozenset[FlowStep] = frozenset({FlowStep.CONNECT, FlowStep.STATUS})


@dataclass(frozen=True, slots=True)
class FlowStateView:
    stage: Stage
    step: FlowStep
    payload: dict = field(default_factory=dict)
    provider: DriveProvider | None = None

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "step": self.step.value,
            "payload": dict(self.payload),
            "provider": self.provider.value if self.provider else None,
        }


def _parse(step: str, provider: str | None) -> tuple[FlowStep, DriveProvider | None]:
    try:
        parsed_step = FlowStep(step)
    except ValueError:
        raise InvalidTransition(f"Unknown flow step '{step}'.") from None
    if provider is None:
        return parsed_step, None
    try:
        return parsed_step, DriveProvider(provider)
    except ValueError:
        raise InvalidTransition(f"Unknown storage provider '{provider}'.") from None


def save_flow_state(
    engine: Engine,
    user_id: str,
    stage: Stage | str,
    step: FlowStep | str,
    payload: dict | None = None,
    provider: DriveProvider | str | None = None,
) -> FlowStateView:
    """Write (or overwrite) the flow position for *user_id* / *stage*."""
    stage = Stage(stage)
    parsed_step, parsed_provider = _parse(step, provider)
    with get_session(engine) as session:
        row = session.get(FlowState, (user_id, stage.value))
        if row is None:
            row = FlowState(user_id=user_id, stage=stage.value, step=parsed_step.value)
            session.add(row)
        row.step = parsed_step.value
        row.payload = dict(payload or {})
        row.provider = parsed_provider.value if parsed_provider else None

    logger.debug("Flow state saved: user=%s stage=%s step=%s", user_id, stage, parsed_step)
    return FlowStateView(stage, parsed_step, dict(payload or {}), parsed_provider)


def load_flow_state(engine: Engine, user_id: str, stage: Stage | str) -> FlowStateView | None:
    """Return the resumable flow position, clearing transient steps."""
    stage = Stage(stage)
    with get_session(engine) as session:
        row = session.get(FlowState, (user_id, stage.value))
        if row is None:
            return None
        step, provider = _parse(row.step, row.provider)
        if step in TRANSIENT_STEPS:
            session.delete(row)
            return None
        return FlowStateView(stage, step, dict(row.payload or {}), provider)


def clear_flow_state(engine: Engine, user_id: str, stage: Stage | str) -> bool:
    """Drop the stored position.  Returns True if a row was removed."""
    stage = Stage(stage)
    with get_session(engine) as session:
        result = session.execute(
            delete(FlowState).where(
                FlowState.user_id == user_id,
                FlowState.stage == stage.value,
            )
        )
        return bool(result.rowcount)
