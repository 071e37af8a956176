"""
backend/kupon/main.py

Purpose:
    FastAPI application bootstrap: logging, database, status source and the
    match status scheduler lifecycle, plus operator routes.

Dependencies:
    - kupon.database
    - kupon.providers.api_football
    - kupon.workers.scheduler
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import (
    ConnectionFailure,
    OperationFailure,
    ServerSelectionTimeoutError,
)

import kupon.database as _db
from kupon.config import settings
from kupon.database import close_db, connect_db
from kupon.middleware.logging import StructuredLoggingMiddleware, setup_logging
from kupon.providers.api_football import ApiFootballProvider
from kupon.routers.admin import router as admin_router
from kupon.workers.scheduler import (
    MatchStatusScheduler,
    load_automation_enabled,
    set_automation_enabled,
)

logger = logging.getLogger("kupon")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await connect_db()

    provider = ApiFootballProvider()
    scheduler = MatchStatusScheduler(provider)
    app.state.status_source = provider
    app.state.match_status_scheduler = scheduler

    scheduler.start()
    enabled = settings.AUTOMATION_ENABLED_ON_STARTUP or await load_automation_enabled()
    if enabled:
        await set_automation_enabled(scheduler, True, run_immediately=True, persist=False)
        logger.info("Match status automation enabled on startup")
    else:
        logger.info("Match status automation disabled. Use the admin API to activate.")

    yield

    scheduler.stop()
    await provider.aclose()
    await close_db()


app = FastAPI(
    title="kupon",
    description="Grades published football predictions and coupons",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Admin-Key"],
)
app.add_middleware(StructuredLoggingMiddleware)

app.include_router(admin_router)


@app.exception_handler(ServerSelectionTimeoutError)
async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
    logger.error("Database timeout: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ConnectionFailure)
async def db_connection_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("Database operation error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the real error, return a safe generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.get("/health")
async def health(request: Request):
    """Health check: DB connection and status source circuit."""
    try:
        result = await _db.db.command("ping")
        db_ok = result.get("ok") == 1.0
    except Exception:
        db_ok = False

    provider = getattr(request.app.state, "status_source", None)
    scheduler = getattr(request.app.state, "match_status_scheduler", None)
    return {
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "status_source": {
            "circuit_open": bool(provider and provider.circuit_open),
        },
        "automation_enabled": bool(scheduler and scheduler.enabled),
    }
