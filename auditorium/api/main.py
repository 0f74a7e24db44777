"""
auditorium.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn auditorium.api.main:app --reload --port 8000

or ``python -m auditorium.api``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from auditorium.api.auth import router as auth_router  # noqa: E402
from auditorium.api.deps import get_runtime  # noqa: E402
from auditorium.api.routes.interactions import router as interactions_router  # noqa: E402
from auditorium.api.routes.moderation import router as moderation_router  # noqa: E402
from auditorium.api.routes.realtime import router as realtime_router  # noqa: E402
from auditorium.api.routes.reports import router as reports_router  # noqa: E402
from auditorium.api.routes.watch import router as watch_router  # noqa: E402
from auditorium.database.engine import init_db  # noqa: E402
from auditorium.errors import AuditoriumError  # noqa: E402

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
    """Startup/shutdown lifecycle — tables, weight cache, realtime workers."""
    runtime = app.dependency_overrides.get(get_runtime, get_runtime)()
    init_db(runtime.engine)
    runtime.weights.load_all()
    if runtime.listener is not None:
        runtime.listener.start()
    runtime.reaper.start(asyncio.get_running_loop())
    logger.info(
        "Auditorium API started — %s backend, engine ready (%s)",
        runtime.config.realtime_backend, runtime.engine.url.database,
    )
    yield
    runtime.reaper.stop()
    if runtime.listener is not None:
        runtime.listener.stop()
    logger.info("Auditorium API shutting down")


app = FastAPI(
    title="Auditorium Engagement API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuditoriumError)
async def auditorium_error_handler(request: Request, exc: AuditoriumError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


# Mount routers
app.include_router(auth_router, prefix="/api")
app.include_router(interactions_router, prefix="/api")
app.include_router(watch_router, prefix="/api")
app.include_router(moderation_router, prefix="/api")
app.include_router(reports_router, prefix="/api")
app.include_router(realtime_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/health/realtime")
def realtime_health():
    """Realtime backend status for load-balancer checks."""
    runtime = app.dependency_overrides.get(get_runtime, get_runtime)()
    listener = runtime.listener
    return {
        "backend": runtime.config.realtime_backend,
        "listener_healthy": listener.listener_healthy if listener else None,
        "listener_failed": listener.listener_failed if listener else None,
    }
