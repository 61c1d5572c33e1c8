"""
Course Allocation Platform
Flask Application Factory.

Usage:
    from compliance_engine import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os
import time

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from compliance_engine.config import config
from compliance_engine.middleware.jwt_auth import init_jwt_middleware
from compliance_engine.middleware.logging_config import configure_logging
from compliance_engine.middleware.rate_limiter import init_rate_limits
from compliance_engine.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── JWT identity middleware (sets g.recipient_id / g.recipient_type) ─
    init_jwt_middleware(app)

    # ── Request timing ───────────────────────────────────────────────────
    @app.before_request
    def _start_timer():
        request.environ["compliance_engine.start"] = time.perf_counter()

    @app.after_request
    def _log_request(response):
        start = request.environ.get("compliance_engine.start")
        if start is not None and request.path.startswith("/api/"):
            logger.debug(
                "%s %s → %s", request.method, request.path, response.status_code,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": (time.perf_counter() - start) * 1000,
                },
            )
        return response

    # ── Import all models so create_all / Alembic can see them ───────────
    from compliance_engine.models import allocation as _allocation_models      # noqa: F401
    from compliance_engine.models import notification as _notification_models  # noqa: F401
    from compliance_engine.models import scheduling as _scheduling_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from compliance_engine.blueprints.health_bp import health_bp
    from compliance_engine.blueprints.notification_bp import notification_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(notification_bp)

    init_rate_limits(app, limiter)

    # ── Compliance worker ────────────────────────────────────────────────
    from compliance_engine.services.scheduler_service import init_worker

    worker = init_worker(app)
    if app.config.get("WORKER_AUTOSTART"):
        worker.start()

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("run-worker")
    def run_worker_cmd():
        """Run the compliance sweep and dispatch drain loops until SIGTERM/SIGINT."""
        worker = app.extensions["compliance_worker"]
        worker.install_signal_handlers()
        worker.start()
        click.echo("Compliance worker running. Press Ctrl+C to stop.")
        while not worker.wait(1):
            pass
        worker.join(timeout=30)
        click.echo("Compliance worker stopped.")

    @app.cli.command("compliance-sweep")
    def compliance_sweep_cmd():
        """Run one compliance sweep now and print its summary."""
        result = app.extensions["compliance_worker"].trigger_now()
        click.echo(f"{result['status']}: {result['result'] or result['error']}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Rate limit exceeded", "detail": str(e.description)}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app
