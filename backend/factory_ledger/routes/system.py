# backend/factory_ledger/routes/system.py
"""
System health and version endpoints.

Health covers the backing store and the journal/projection invariant;
version reports non-sensitive deployment information.
"""

import sys
import time

from flask import Blueprint, current_app

from .. import __version__
from ..extensions import db
from ..models import InventoryItem, WorkerLog
from ..services.inventory_service import find_stock_drifts
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity and basic queries."""
    start_time = time.time()
    try:
        item_count = db.session.query(InventoryItem).count()
        log_count = db.session.query(WorkerLog).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "inventory_items": item_count,
                "worker_logs": log_count,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_journal_health() -> dict:
    """
    Compare cached stock with the journal.

    Drift means something wrote stock outside the journal; the service is
    still operational, so it reports degraded rather than unhealthy.
    """
    start_time = time.time()
    try:
        drifts = find_stock_drifts()
        elapsed_ms = (time.time() - start_time) * 1000
        if drifts:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{len(drifts)} item(s) out of sync with the journal",
                "details": {"drifts": [d.to_dict() for d in drifts]},
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Journal health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Journal check error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()
    checks = {
        "database": check_database_health(),
        "journal": check_journal_health(),
    }
    statuses = [check["status"] for check in checks.values()]

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information; no secrets, credentials or paths."""
    return {
        "api_version": __version__,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
