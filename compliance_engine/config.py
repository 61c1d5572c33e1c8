"""
Course Allocation Platform
Flask configuration classes, selected by APP_ENV.

    app.config.from_object(config[os.getenv("APP_ENV", "development")]())

Every value can be overridden through the environment variable of the same
name. Worker and mail settings are read by ``init_worker``.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'course_allocation_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random per process; production requires SECRET_KEY
_DEV_SECRET = secrets.token_hex(32)


def _env_bool(name, default="false"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


def _database_url(fallback=None):
    """DATABASE_URL with Heroku-style ``postgres://`` rewritten for SQLAlchemy 2."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return fallback
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    DEBUG = False
    TESTING = False
    LOG_LEVEL = os.getenv("LOG_LEVEL")

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Compliance worker ───────────────────────────────────────────────
    WORKER_AUTOSTART = _env_bool("WORKER_AUTOSTART")
    COMPLIANCE_SWEEP_INTERVAL_SECONDS = _env_int("COMPLIANCE_SWEEP_INTERVAL_SECONDS", 300)
    DISPATCH_DRAIN_INTERVAL_SECONDS = _env_int("DISPATCH_DRAIN_INTERVAL_SECONDS", 30)
    DISPATCH_BATCH_SIZE = _env_int("DISPATCH_BATCH_SIZE", 10)
    COMPLIANCE_GRACE_WEEKS = _env_int("COMPLIANCE_GRACE_WEEKS", 2)
    DISPATCH_QUEUE_BACKEND = os.getenv("DISPATCH_QUEUE_BACKEND", "memory")  # memory / database / redis
    DISPATCH_QUEUE_KEY = os.getenv("DISPATCH_QUEUE_KEY", "notifications")
    DISPATCH_QUEUE_TIMEOUT = _env_int("DISPATCH_QUEUE_TIMEOUT", 2)  # seconds, redis socket

    # ── Mail relay (unset MAIL_SERVER: log-only) ────────────────────────
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = _env_int("MAIL_PORT", 587)
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", "true")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@course-allocation.local")
    MAIL_TIMEOUT = _env_int("MAIL_TIMEOUT", 30)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite uses a StaticPool; pool tuning options do not apply
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = "test-jwt-secret"
    RATELIMIT_ENABLED = False
    WORKER_AUTOSTART = False
    DISPATCH_QUEUE_BACKEND = "memory"
    MAIL_SERVER = None


class ProductionConfig(Config):
    """PostgreSQL with bounded pool and a 30s statement timeout."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
