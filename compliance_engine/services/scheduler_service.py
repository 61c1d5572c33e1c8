"""
Course Allocation Platform
Worker Scheduler — owns the compliance sweep and dispatch drain loops.

Thread-based: each job runs in its own daemon thread that ticks every
``interval`` seconds inside a Flask application context.

Architecture:
    - WorkerScheduler: lifecycle (start / stop / trigger_now) and timing
    - Each job has an in-progress guard; a tick that finds the previous run
      of the same job unfinished is skipped, never overlapped
    - trigger_now() waits on the sweep guard instead of skipping
    - Runs are recorded on the job's ScheduledJob row (run history)
    - init_worker(app) builds the instance once and stores it in
      app.extensions["compliance_worker"]

State machine:
    stopped ──start()──▶ running ──stop() / SIGTERM / SIGINT──▶ stopped
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from typing import Callable

from flask import Flask

from compliance_engine.models import db
from compliance_engine.models.scheduling import ScheduledJob
from compliance_engine.services.compliance_scanner import ComplianceScanner
from compliance_engine.services.dispatch_queue import build_dispatch_queue
from compliance_engine.services.dispatcher import Dispatcher
from compliance_engine.services.email_service import SMTPTransport

logger = logging.getLogger(__name__)

SWEEP_JOB = "compliance_sweep"
DRAIN_JOB = "dispatch_drain"

STOPPED = "stopped"
RUNNING = "running"


class _PeriodicJob:
    """A named unit of work with its own interval and in-progress guard."""

    def __init__(self, name: str, interval: float, fn: Callable, description: str = ""):
        self.name = name
        self.interval = interval
        self.fn = fn
        self.description = description
        self.in_progress = threading.Lock()
        self.thread: threading.Thread | None = None


class WorkerScheduler:
    """
    Background worker for the compliance engine.

    Constructed once per process by ``init_worker``; never a module global.
    """

    def __init__(self, app: Flask, *, scanner: ComplianceScanner, dispatcher: Dispatcher,
                 sweep_interval: float = 300, drain_interval: float = 30):
        self._app = app
        self.scanner = scanner
        self.dispatcher = dispatcher
        self._jobs = {
            SWEEP_JOB: _PeriodicJob(SWEEP_JOB, sweep_interval, scanner.sweep,
                                    "Scan active allocations for missing weekly activity logs"),
            DRAIN_JOB: _PeriodicJob(DRAIN_JOB, drain_interval, dispatcher.drain,
                                    "Send queued notification emails"),
        }
        self._state = STOPPED
        self._state_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._stop_event.set()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == RUNNING

    def start(self) -> bool:
        """Start both timers. Returns False (with a warning) if already running."""
        with self._state_lock:
            if self._state == RUNNING:
                logger.warning("Compliance worker already running; start() ignored")
                return False
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._state = RUNNING
            for job in self._jobs.values():
                job.thread = threading.Thread(
                    target=self._loop,
                    args=(job, stop_event),
                    name=f"compliance-worker-{job.name}",
                    daemon=True,
                )
                job.thread.start()
        logger.info("Compliance worker started (sweep every %ss, drain every %ss)",
                    self._jobs[SWEEP_JOB].interval, self._jobs[DRAIN_JOB].interval)
        return True

    def stop(self) -> bool:
        """
        Cancel future ticks of both timers. In-flight ticks finish on their own.

        Safe to call from a signal handler. Returns False (with a warning) if
        already stopped.
        """
        with self._state_lock:
            if self._state == STOPPED:
                logger.warning("Compliance worker not running; stop() ignored")
                return False
            self._state = STOPPED
            self._stop_event.set()
        logger.info("Compliance worker stopped")
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the worker is stopped; returns True once stopped."""
        return self._stop_event.wait(timeout)

    def join(self, timeout: float | None = None) -> None:
        """Wait for timer threads (and any in-flight tick) to exit."""
        for job in self._jobs.values():
            if job.thread is not None and job.thread is not threading.current_thread():
                job.thread.join(timeout)

    def install_signal_handlers(self) -> None:
        """Stop the worker on SIGTERM / SIGINT. Main thread only."""
        def _handle(signum, _frame):
            logger.info("Received signal %s, stopping compliance worker", signum)
            self.stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, _handle)

    # ── Execution ─────────────────────────────────────────────────────────

    def _loop(self, job: _PeriodicJob, stop_event: threading.Event) -> None:
        while not stop_event.wait(job.interval):
            self.run_job(job.name)

    def trigger_now(self) -> dict:
        """Run one compliance sweep synchronously, after any in-flight sweep."""
        return self.run_job(SWEEP_JOB, wait=True)

    def run_job(self, job_name: str, *, wait: bool = False) -> dict:
        """
        Execute a single job by name.

        With ``wait=False`` a job whose previous run is still in progress is
        skipped; with ``wait=True`` the call blocks until it can run.

        Returns:
            Dict with job_name, status, duration_ms, result or error.
        """
        job = self._jobs.get(job_name)
        if not job:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not job.in_progress.acquire(blocking=wait):
            logger.warning("Skipping %s tick: previous run still in progress", job_name)
            return {"job_name": job_name, "status": "skipped", "duration_ms": 0,
                    "result": None, "error": None}
        try:
            return self._execute(job)
        finally:
            job.in_progress.release()

    def _execute(self, job: _PeriodicJob) -> dict:
        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with self._app.app_context():
                result = job.fn()
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job.name, exc)

        duration_ms = int((time.monotonic() - start) * 1000)

        # Update DB record
        try:
            with self._app.app_context():
                record = self._job_record(job)
                record.record_run(
                    status=status,
                    duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=error,
                )
                db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job.name)

        return {
            "job_name": job.name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    # ── Registry ──────────────────────────────────────────────────────────

    @staticmethod
    def _job_record(job: _PeriodicJob) -> ScheduledJob:
        record = ScheduledJob.query.filter_by(job_name=job.name).first()
        if record is None:
            record = ScheduledJob(
                job_name=job.name,
                description=job.description,
                interval_seconds=int(job.interval),
            )
            db.session.add(record)
            db.session.flush()
        return record

    def list_jobs(self) -> list[dict]:
        """List registered jobs with their DB run history."""
        jobs = []
        for name, job in self._jobs.items():
            record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "interval_seconds": job.interval,
                "in_progress": job.in_progress.locked(),
                "db_record": record.to_dict() if record else None,
            })
        return jobs


def init_worker(app: Flask) -> WorkerScheduler:
    """Build the dispatch queue, scanner, dispatcher and scheduler for ``app``."""
    cfg = app.config
    queue = build_dispatch_queue(cfg)
    scanner = ComplianceScanner(
        queue=queue,
        grace_weeks=cfg.get("COMPLIANCE_GRACE_WEEKS", 2),
    )
    dispatcher = Dispatcher(
        queue=queue,
        transport=SMTPTransport.from_config(cfg),
        batch_size=cfg.get("DISPATCH_BATCH_SIZE", 10),
    )
    worker = WorkerScheduler(
        app,
        scanner=scanner,
        dispatcher=dispatcher,
        sweep_interval=cfg.get("COMPLIANCE_SWEEP_INTERVAL_SECONDS", 300),
        drain_interval=cfg.get("DISPATCH_DRAIN_INTERVAL_SECONDS", 30),
    )
    app.extensions["dispatch_queue"] = queue
    app.extensions["compliance_worker"] = worker
    logger.info("Compliance worker initialized (queue backend=%s)", queue.backend)
    return worker
