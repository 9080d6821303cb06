# backend/weighbridge/routes/system.py
"""
System health endpoint.

Reports database reachability and whether the node runs as an offline site.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Permission, SyncBatch, WeighingSession
from weighbridge.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        open_sessions = db.session.query(WeighingSession).filter(
            WeighingSession.status.in_(("OPEN", "WEIGHING"))
        ).count()
        pending_sync = db.session.query(WeighingSession).filter_by(sync_status="PENDING").count()
        permission_count = db.session.query(Permission).count()
        batch_count = db.session.query(SyncBatch).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy" if permission_count else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "open_sessions": open_sessions,
                "pending_sync": pending_sync,
                "permissions_initialized": permission_count > 0,
                "sync_batches": batch_count,
            }
        }
    except SQLAlchemyError:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (permissions not initialized yet)
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "offline_mode": bool(current_app.config.get("WEIGHBRIDGE_OFFLINE_MODE")),
        "checks": {"database": database_health},
    }, http_status
