# backend/salonledger/routes/system.py
"""
System health endpoint.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Commission, Product, StockMovement, Wallet
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        details = {
            "products": db.session.query(Product).count(),
            "stock_movements": db.session.query(StockMovement).count(),
            "commissions": db.session.query(Commission).count(),
            "wallets": db.session.query(Wallet).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
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


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "stock_negative_policy": current_app.config["STOCK_NEGATIVE_POLICY"],
        "checks": {"database": database_health},
    }, http_status
