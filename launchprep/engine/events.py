"""
launchprep.engine.events — EngineEvent Envelope
================================================

Push notifications from the database (counter table, delegation row, sync
session row) and manual "refresh" requests from the API are normalized
into the same :class:`EngineEvent` before the refresh dispatcher sees
them.  Handlers re-derive state from the pull-style getters, so a missing
or duplicated event is harmless.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

__all__ = ["EngineEvent", "EventKind", "parse_notify_payload"]

logger = logging.getLogger(__name__)


class EventKind(enum.StrEnum):
    COUNTERS_CHANGED = "counters_changed"
    DELEGATION_CHANGED = "delegation_changed"
    SYNC_SESSION_CHANGED = "sync_session_changed"
    MANUAL_REFRESH = "manual_refresh"


@dataclass(frozen=True, slots=True)
class EngineEvent:
    """One inbound trigger for a team.

    ``user_id`` is set for manual refreshes so the caller's own progress
    can be reconciled even when the team has no other members on record.
    """

    kind: EventKind
    team_id: str
    user_id: str | None = None
    payload: dict = field(default_factory=dict)
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def parse_notify_payload(raw: str) -> EngineEvent | None:
    """Turn a NOTIFY payload (JSON) into an :class:`EngineEvent`.

    Returns ``None`` for anything malformed; bad payloads are logged and
    dropped.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Invalid change payload (not JSON): %s", raw)
        return None

    if not isinstance(data, dict):
        logger.warning("Change payload is not an object: %s", raw)
        return None

    try:
        kind = EventKind(data.get("kind"))
    except ValueError:
        logger.warning("Unknown change kind in payload: %s", raw)
        return None

    team_id = data.get("team_id")
    if not team_id:
        logger.warning("Change payload missing 'team_id': %s", raw)
        return None

    extra = {k: v for k, v in data.items() if k not in {"kind", "team_id", "user_id"}}
    return EngineEvent(
        kind=kind,
        team_id=str(team_id),
        user_id=data.get("user_id"),
        payload=extra,
    )
