"""
launchprep.database.seed — Default Settings Seeder
===================================================

Baseline runtime settings seeded on first startup.

Idempotent — only inserts keys that don't already exist.  Values edited
later are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from launchprep.constants import DEFAULT_FUEL_CACHE_SECONDS, DEFAULT_INVITE_EXPIRY_DAYS
from launchprep.database.models import Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "fuel.counter_cache_seconds": (
        DEFAULT_FUEL_CACHE_SECONDS, "fuel",
        "Seconds a fetched fuel counter snapshot is reused before refetching",
    ),
    "delegation.invite_expiry_days": (
        DEFAULT_INVITE_EXPIRY_DAYS, "delegation",
        "Days before a setup-admin invite expires",
    ),
    "delegation.send_invites": (
        True, "delegation", "Send invite e-mails when a delegation is created",
    ),
    "sync.recent_sessions_limit": (
        5, "sync", "Number of sync sessions shown in the recent history",
    ),
}


def seed_default_settings(engine: Engine) -> None:
    """Insert default settings that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            if session.get(Setting, key) is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)
