"""
launchprep.worker.__main__ — Entry point for ``python -m launchprep.worker``
=============================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml.
3. Create the SQLAlchemy engine and ensure tables exist.
4. Warm the SettingsCache.
5. Build the RefreshDispatcher around the SQL counter source.
6. Start the PG LISTEN/NOTIFY thread, routing change events into the
   dispatcher.
7. Block until SIGINT/SIGTERM.

Run with::

    uv run python -m launchprep.worker
"""

from __future__ import annotations

import logging
import signal
import threading

from dotenv import load_dotenv

from launchprep.config import load_config
from launchprep.database.engine import create_db_engine, init_db
from launchprep.engine.cache import SettingsCache
from launchprep.engine.events import EngineEvent
from launchprep.services.collaborators import SqlCounterSource
from launchprep.services.refresh_service import RefreshDispatcher

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("launchprep")


def main() -> None:
    """Bootstrap and run the refresh worker."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Infrastructure configuration.
    cfg = load_config()
    logger.info("Config loaded — %s", cfg.product_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Settings cache.
    settings = SettingsCache(engine)
    settings.load_all()

    # 5. Dispatcher.
    dispatcher = RefreshDispatcher(engine, SqlCounterSource(engine), settings=settings)

    def _on_change(event: EngineEvent) -> None:
        outcome = dispatcher.handle(event)
        if outcome.failed:
            logger.warning(
                "Refresh for team %s left %d member(s) unreconciled",
                event.team_id, len(outcome.failed),
            )

    # 6. LISTEN thread.
    settings.start_listener(on_change=_on_change)

    # 7. Block until a stop signal arrives.
    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    stop.wait()

    settings.stop_listener()
    engine.dispose()
    logger.info("Worker stopped")


if __name__ == "__main__":
    main()
