"""
launchprep.engine.cache — Settings Cache with PG LISTEN/NOTIFY
===============================================================

Runtime settings are cached in memory and reloaded when a NOTIFY arrives
on ``launchprep_config``.  The same listener thread also LISTENs on
``launchprep_changes``, where the ingestion pipeline and other writers
announce counter, delegation and sync-session changes; those payloads are
parsed into :class:`~launchprep.engine.events.EngineEvent` and handed to a
registered callback (the refresh dispatcher).
"""

from __future__ import annotations

import json
import logging
import random
import select as _select
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from launchprep.database.models import Setting
from launchprep.engine.events import EngineEvent, parse_notify_payload

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# PG channel for settings invalidation
NOTIFY_CHANNEL = "launchprep_config"

# PG channel for counter / delegation / sync-session change events
CHANGE_NOTIFY_CHANNEL = "launchprep_changes"

# PG channel for outbound user-facing events (e.g. delegation completed)
EVENT_NOTIFY_CHANNEL = "launchprep_events"

# Allowlist of table names accepted by notify_before_commit().
ALLOWED_NOTIFY_TABLES: frozenset[str] = frozenset({
    "settings",
})

ChangeCallback = Callable[[EngineEvent], None]


class SettingsCache:
    """Thread-safe in-memory cache of the ``settings`` table.

    Usage:
        cache = SettingsCache(engine)
        cache.load_all()
        cache.start_listener(on_change=dispatcher.handle)

        ttl = cache.get_int("fuel.counter_cache_seconds", default=30)
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()

        # key → parsed JSON value
        self._settings: dict[str, Any] = {}

        self._listener_healthy: bool = False
        self._listener_failed: bool = False
        self._listener_thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()
        self._change_callback: ChangeCallback | None = None

    # -------------------------------------------------------------------
    # Cache loading
    # -------------------------------------------------------------------
    def load_all(self) -> None:
        """Load all cached partitions from DB. Call on startup."""
        self._load_settings()
        logger.info("SettingsCache loaded: %d settings", len(self._settings))

    def _load_settings(self) -> None:
        with Session(self._engine) as session:
            rows = session.scalars(select(Setting)).all()
            parsed: dict[str, Any] = {}
            for row in rows:
                try:
                    parsed[row.key] = json.loads(row.value_json)
                except (json.JSONDecodeError, TypeError):
                    parsed[row.key] = row.value_json

        with self._lock:
            self._settings = parsed

    # -------------------------------------------------------------------
    # Typed setting accessors (thread-safe)
    # -------------------------------------------------------------------
    def get_setting(self, key: str, default: Any = None) -> Any:
        """Return the parsed JSON value for *key*, or *default*."""
        with self._lock:
            return self._settings.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return int(val)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return float(val)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        val = self.get_setting(key)
        if val is None:
            return default
        return bool(val)

    # -------------------------------------------------------------------
    # NOTIFY handling
    # -------------------------------------------------------------------
    def handle_notify(self, table_name: str) -> None:
        """Reload the relevant cache partition when a config NOTIFY arrives."""
        table_name = table_name.strip().lower()
        logger.info("Settings cache invalidation for table: %s", table_name)

        if table_name == "settings":
            self._load_settings()
        else:
            logger.warning("Unknown table in NOTIFY: %s — ignoring", table_name)

    def handle_change(self, raw_payload: str) -> None:
        """Parse a change payload and hand it to the registered callback."""
        event = parse_notify_payload(raw_payload)
        if event is None:
            return
        callback = self._change_callback
        if callback is None:
            logger.debug("No change callback registered; dropping %s", event.kind)
            return
        callback(event)

    def set_change_callback(self, callback: ChangeCallback | None) -> None:
        self._change_callback = callback

    @property
    def listener_healthy(self) -> bool:
        """Return True if the LISTEN thread is alive and connected."""
        return self._listener_healthy and not self._listener_failed

    @property
    def listener_failed(self) -> bool:
        """Return True if the listener exhausted reconnect attempts."""
        return self._listener_failed

    def stop_listener(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_thread.join(timeout=5)
            logger.info("PG NOTIFY listener thread stopped")

    def start_listener(self, on_change: ChangeCallback | None = None) -> None:
        """Start a background thread that LISTENs on both PG channels.

        Uses a raw psycopg2 connection + ``select()``.  Reconnects with
        exponential backoff + jitter and gives up after a fixed number of
        consecutive failures.
        """
        import psycopg2

        if on_change is not None:
            self._change_callback = on_change

        max_backoff = 60.0
        base_backoff = 1.0
        max_reconnect_attempts = 10

        def _listen_thread() -> None:
            # str(engine.url) masks the password; psycopg2 needs the real one.
            raw_url = self._engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {NOTIFY_CHANNEL};")
                    cur.execute(f"LISTEN {CHANGE_NOTIFY_CHANNEL};")
                    logger.info(
                        "PG LISTEN started on channels '%s', '%s'",
                        NOTIFY_CHANNEL, CHANGE_NOTIFY_CHANNEL,
                    )

                    attempt = 0
                    self._listener_healthy = True

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            channel = notify.channel
                            payload = notify.payload or ""
                            logger.debug(
                                "NOTIFY received on '%s': %s", channel, payload,
                            )
                            try:
                                if channel == CHANGE_NOTIFY_CHANNEL:
                                    self.handle_change(payload)
                                else:
                                    self.handle_notify(payload)
                            except Exception:
                                logger.exception(
                                    "Error handling NOTIFY on '%s': %s",
                                    channel, payload,
                                )

                except Exception:
                    self._listener_healthy = False
                    attempt += 1

                    if attempt >= max_reconnect_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. "
                            "Push refresh disabled; manual refresh still works.",
                            max_reconnect_attempts,
                        )
                        self._listener_failed = True
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). "
                        "Reconnecting in %.1fs…",
                        attempt, max_reconnect_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except Exception:
                            logger.debug("Error closing LISTEN connection", exc_info=True)

        thread = threading.Thread(target=_listen_thread, daemon=True, name="pg-notify-listener")
        self._listener_thread = thread
        thread.start()
        logger.info("PG NOTIFY listener thread started")


def notify_before_commit(session: Session, table_name: str) -> None:
    """Execute NOTIFY within the current transaction (fires on commit).

    *table_name* must be in :data:`ALLOWED_NOTIFY_TABLES`.
    """
    if table_name not in ALLOWED_NOTIFY_TABLES:
        raise ValueError(
            f"Invalid table name for NOTIFY: '{table_name}'. "
            f"Allowed: {sorted(ALLOWED_NOTIFY_TABLES)}"
        )
    session.execute(text(f"NOTIFY {NOTIFY_CHANNEL}, '{table_name}'"))


def send_event_notify(engine: Engine, payload: dict) -> None:
    """Send a NOTIFY on the ``launchprep_events`` channel with a JSON payload.

    *payload* must include a ``"type"`` key.
    """
    if "type" not in payload:
        raise ValueError("Event payload must include a 'type' key")
    raw = json.dumps(payload, default=str)
    escaped = raw.replace("'", "''")
    with engine.connect() as conn:
        conn.execute(text(f"NOTIFY {EVENT_NOTIFY_CHANNEL}, '{escaped}'"))
        conn.commit()
