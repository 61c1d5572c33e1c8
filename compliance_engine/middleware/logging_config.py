"""
Logging setup for the web process and the compliance worker.

- Development / testing: coloured single-line records on stderr
- Production: one JSON object per line (log aggregator compatible)
- LOG_LEVEL env variable overrides the per-environment default

Records emitted from the worker's timer threads carry the job name
(``compliance_sweep`` / ``dispatch_drain``) so sweep and drain output can
be told apart from request logs.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

WORKER_THREAD_PREFIX = "compliance-worker-"

# ``extra=`` keys copied into JSON records when present
CONTEXT_FIELDS = (
    "job",
    "method",
    "path",
    "status",
    "duration_ms",
    "recipient_id",
    "recipient_type",
    "notification_id",
    "week_number",
)

NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "redis", "flask_limiter")


class WorkerJobFilter(logging.Filter):
    """Tag records from worker timer threads with ``record.job``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "job", None) is None:
            thread = record.threadName or ""
            record.job = thread[len(WORKER_THREAD_PREFIX):] if thread.startswith(WORKER_THREAD_PREFIX) else None
        return True


class JSONFormatter(logging.Formatter):
    """Line-delimited JSON for production."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update({
            key: getattr(record, key)
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured one-liners for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        job = getattr(record, "job", None)
        tag = f" [{job}]" if job else ""
        duration = getattr(record, "duration_ms", None)
        timing = f" ({duration:.0f}ms)" if duration is not None else ""
        line = (f"{color}{clock} {record.levelname:<8}{self.RESET}"
                f"{tag} {record.name}: {record.getMessage()}{timing}")
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_level(app, production: bool) -> tuple[str, int]:
    name = (os.getenv("LOG_LEVEL") or app.config.get("LOG_LEVEL")
            or ("INFO" if production else "DEBUG")).upper()
    return name, getattr(logging, name, logging.INFO)


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Called first thing in ``create_app``; calling it again (as the test
    suite does through repeated app creation) replaces the handler rather
    than stacking another one.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing
    level_name, level = _resolve_level(app, production)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(WorkerJobFilter())
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if production else "readable")
