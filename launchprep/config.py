"""
launchprep.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for **infrastructure-only** settings (product name,
public URL, invite sender, API port).  Runtime tuning values (counter
cache TTL, invite expiry) live in the ``settings`` database table and are
read through :class:`~launchprep.engine.cache.SettingsCache`.

Usage::

    from launchprep.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.product_name)      # "Launch Preparation"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object: infrastructure/identity only.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LaunchPrepConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    product_name: str

    # Public URL used in invite e-mails (signup link)
    app_url: str

    # API
    api_port: int = 8000

    # E-mail sender for setup-admin invites
    invite_from_email: str = "noreply@example.com"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> LaunchPrepConfig:
    """Read *path* and return a :class:`LaunchPrepConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return LaunchPrepConfig(
        product_name=raw["product_name"],
        app_url=str(raw["app_url"]).rstrip("/"),
        api_port=int(raw.get("api_port", 8000)),
        invite_from_email=raw.get("invite_from_email", "noreply@example.com"),
    )
