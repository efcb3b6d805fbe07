"""
launchprep — Launch Preparation Progression & Delegation Engine
================================================================
Moves a team through three ordered onboarding stages (Fuel, Boosters,
Guidance), each with five levels that award points and badges.  Setup
can be handed off to an invited admin, and bulk data-sync sessions are
tracked alongside the Fuel stage they feed.

Package layout::

    launchprep/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Stage order, launch minimums, display helpers
    ├── errors.py          # Engine exception taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default settings seeder
    ├── engine/
    │   ├── thresholds.py  # Static per-stage level table
    │   ├── fuel.py        # Fuel level calculator + counter cache entry
    │   ├── progression.py # Unlock / readiness / reconcile planning rules
    │   ├── delegation.py  # Delegation state machine
    │   ├── sync_progress.py # Sync session progress formula
    │   ├── events.py      # Inbound EngineEvent envelope
    │   └── cache.py       # Settings cache + PG LISTEN/NOTIFY listener
    ├── services/
    │   ├── achievement_ledger.py  # Idempotent achievement grants
    │   ├── progression_service.py # Reconcile / complete / inherit
    │   ├── launch_status.py       # Per-user launch status row
    │   ├── delegation_service.py  # Setup delegation workflow
    │   ├── sync_service.py        # Data sync session tracker
    │   ├── flow_state_service.py  # Persisted multi-step flow state
    │   ├── collaborators.py       # External collaborator protocols
    │   ├── invite_service.py      # Resend e-mail invite sender
    │   └── refresh_service.py     # Push + manual refresh dispatcher
    ├── worker/
    │   └── __main__.py    # LISTEN/NOTIFY refresh worker
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT + engine dependencies
        └── routes/        # Progress, delegation, sync, flow-state
"""

__version__ = "0.1.0"
