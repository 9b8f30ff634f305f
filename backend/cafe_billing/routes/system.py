# backend/cafe_billing/routes/system.py
"""
System health and version endpoints.

/health runs three checks:
- database: the schema answers simple counts
- rental_floor: every active device has exactly one active session
- ledger: every bill satisfies remaining == total - paid

A failing query makes its check "unhealthy" (503); an inconsistency found by
a check that ran makes it "degraded" (still 200).
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Device, DeviceSession, Bill
from ..models.devices import DEVICE_STATUS_ACTIVE
from ..models.sessions import SESSION_STATUS_ACTIVE
from cafe_billing.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def _run_check(name: str, probe) -> dict:
    """Run one probe, timing it; probe returns (details, warning or None)."""
    start_time = time.time()
    try:
        details, warning = probe()
    except Exception:
        current_app.logger.exception("%s health check failed", name)
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": f"{name} check error",
        }

    result = {
        "status": "degraded" if warning else "healthy",
        "latency_ms": round((time.time() - start_time) * 1000, 2),
        "details": details,
    }
    if warning:
        result["warning"] = warning
    return result


def _database_probe():
    return {
        "devices": db.session.query(Device).count(),
        "bills": db.session.query(Bill).count(),
    }, None


def _rental_floor_probe():
    active_devices = db.session.query(Device).filter_by(status=DEVICE_STATUS_ACTIVE).count()
    active_sessions = db.session.query(DeviceSession).filter_by(status=SESSION_STATUS_ACTIVE).count()

    warning = None
    if active_devices != active_sessions:
        warning = "Device status and active sessions disagree"
    return {"active_devices": active_devices, "active_sessions": active_sessions}, warning


def _ledger_probe():
    unbalanced = (
        db.session.query(func.count(Bill.id))
        .filter(Bill.remaining_cents != Bill.total_cents - Bill.paid_cents)
        .scalar()
    )

    warning = None
    if unbalanced:
        warning = f"{unbalanced} bill(s) need recompute"
    return {"unbalanced_bills": unbalanced}, warning


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": _run_check("Database", _database_probe),
        "rental_floor": _run_check("Rental floor", _rental_floor_probe),
        "ledger": _run_check("Ledger", _ledger_probe),
    }
    statuses = {check["status"] for check in checks.values()}

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
    """Non-sensitive deployment information."""
    return {
        "api_version": "1.0.0",
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
