"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — detailed health (DB, dispatch queue, worker)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from compliance_engine.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Dispatch queue ───────────────────────────────────────────────
    queue = current_app.extensions.get("dispatch_queue")
    if queue is None:
        checks["dispatch_queue"] = {"status": "not_initialized"}
    else:
        try:
            checks["dispatch_queue"] = {
                "status": "ok",
                "backend": queue.backend,
                "size": queue.size(),
            }
        except Exception as exc:
            # Queue loss only delays email; in-app notifications still work
            checks["dispatch_queue"] = {"status": "error", "backend": queue.backend,
                                        "detail": str(exc)}
            logger.warning("Health check — dispatch queue failed: %s", exc)

    # ── Worker ───────────────────────────────────────────────────────
    worker = current_app.extensions.get("compliance_worker")
    checks["worker"] = {"state": worker.state if worker else "not_initialized"}

    checks["app"] = {
        "name": "Course Allocation Platform",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
