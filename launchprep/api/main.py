"""
launchprep.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn launchprep.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from launchprep.api.deps import get_engine  # noqa: E402
from launchprep.api.routes.admin import router as admin_router  # noqa: E402
from launchprep.api.routes.delegation import router as delegation_router  # noqa: E402
from launchprep.api.routes.flow_state import router as flow_state_router  # noqa: E402
from launchprep.api.routes.progress import router as progress_router  # noqa: E402
from launchprep.api.routes.sync import router as sync_router  # noqa: E402
from launchprep.errors import (  # noqa: E402
    ExpiredDelegation,
    InvalidTransition,
    TransientIOError,
    UnknownCounters,
)

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = get_engine()
    logger.info("launchprep API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("launchprep API shutting down")


app = FastAPI(
    title="Launch Preparation API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Engine error → HTTP status
# ---------------------------------------------------------------------------
@app.exception_handler(ExpiredDelegation)
async def _expired_delegation(request: Request, exc: ExpiredDelegation):
    return JSONResponse(status_code=status.HTTP_410_GONE, content={"detail": str(exc)})


@app.exception_handler(InvalidTransition)
async def _invalid_transition(request: Request, exc: InvalidTransition):
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(UnknownCounters)
async def _unknown_counters(request: Request, exc: UnknownCounters):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc), "retry": True},
    )


@app.exception_handler(TransientIOError)
async def _transient_io(request: Request, exc: TransientIOError):
    logger.warning("Transient failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc), "retry": True},
    )


# Mount routers
app.include_router(progress_router, prefix="/api")
app.include_router(delegation_router, prefix="/api")
app.include_router(sync_router, prefix="/api")
app.include_router(flow_state_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
