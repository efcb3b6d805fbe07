"""
launchprep.services.settings_service — Settings Reads & Writes
===============================================================

Typed access to the ``settings`` table.  Writes fire a PG NOTIFY inside
the transaction so every process's :class:`SettingsCache` reloads.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from launchprep.database.engine import get_session
from launchprep.database.models import Setting
from launchprep.engine.cache import notify_before_commit

logger = logging.getLogger(__name__)


def get_setting_value(session: Session, key: str, default=None):
    """Read a single setting's parsed value from an existing session.

    Returns *default* when the key does not exist.
    """
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        return row.value_json


def get_all_settings(engine: Engine) -> list[dict]:
    """Every setting, ordered by category then key, as plain dicts."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Setting).order_by(Setting.category, Setting.key)
        ).all()
        return [
            {
                "key": r.key,
                "value": get_setting_value(session, r.key),
                "category": r.category,
                "description": r.description,
            }
            for r in rows
        ]


def upsert_setting(
    engine: Engine,
    *,
    key: str,
    value: Any,
    category: str = "general",
    description: str | None = None,
) -> None:
    """Insert or update a single setting.  Fires PG NOTIFY on commit."""
    with get_session(engine) as session:
        row = session.get(Setting, key)
        if row is None:
            session.add(Setting(
                key=key,
                value_json=json.dumps(value),
                category=category,
                description=description,
            ))
        else:
            row.value_json = json.dumps(value)
            if description is not None:
                row.description = description

        if session.get_bind().dialect.name == "postgresql":
            notify_before_commit(session, "settings")

    logger.info("Setting %s updated → %r", key, value)
