"""
backend/tests/test_logging_middleware.py

Purpose:
    Request logging middleware: request id propagation and log levels.
"""

from __future__ import annotations

import json
import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from kupon.middleware.logging import StructuredLoggingMiddleware


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(StructuredLoggingMiddleware)

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.get("/api/ping")
    async def ping():
        return {"ok": True}

    return app


def _records(caplog):
    return [r for r in caplog.records if r.name == "kupon.http"]


def test_inbound_request_id_is_reused(caplog):
    caplog.set_level(logging.DEBUG, logger="kupon.http")
    client = TestClient(_app())

    resp = client.get("/api/ping", headers={"X-Request-ID": "abc123"})

    assert resp.headers["X-Request-ID"] == "abc123"
    [record] = _records(caplog)
    assert record.levelno == logging.INFO
    payload = json.loads(record.getMessage())
    assert payload["request_id"] == "abc123"
    assert payload["path"] == "/api/ping"
    assert payload["status"] == 200


def test_health_logs_at_debug_and_errors_at_warning(caplog):
    caplog.set_level(logging.DEBUG, logger="kupon.http")
    client = TestClient(_app())

    health = client.get("/health")
    missing = client.get("/api/nope")

    assert len(health.headers["X-Request-ID"]) == 8
    assert missing.status_code == 404
    levels = [r.levelno for r in _records(caplog)]
    assert levels == [logging.DEBUG, logging.WARNING]
