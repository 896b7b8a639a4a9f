"""Liveness endpoint used by the frontend status badge and load balancers."""

import time

from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from flowershop.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    started = time.perf_counter()
    result = {"status": "healthy"}
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        result = {"status": "unhealthy", "error": "Database error"}
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return result


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    ok = database["status"] == "healthy"
    return {
        "status": "ok" if ok else "degraded",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }, (200 if ok else 503)
