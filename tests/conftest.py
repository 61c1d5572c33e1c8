"""
Shared pytest fixtures for the compliance engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - queue: fresh in-memory dispatch queue
    - make_allocation / auth_headers: seed and auth helpers
"""

import pytest

from compliance_engine import create_app
from compliance_engine.models import db as _db
from compliance_engine.models.allocation import (
    ActivityTracker,
    CourseAllocation,
    Facilitator,
    Manager,
    Module,
)
from compliance_engine.services.dispatch_queue import MemoryDispatchQueue
from compliance_engine.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    shared_queue = app.extensions["dispatch_queue"]
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
    # The app-wide memory queue outlives a single test
    while shared_queue.pop() is not None:
        pass


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def queue():
    return MemoryDispatchQueue()


# ── Seed helpers ─────────────────────────────────────────────────────────

_counter = {"n": 0}


def _next():
    _counter["n"] += 1
    return _counter["n"]


def create_allocation(*, with_manager=True, manager_email="manager@uni.test",
                      facilitator_email="facilitator@uni.test", grace_weeks=None,
                      is_active=True, manager=None):
    """Create manager → facilitator → module → allocation and return the allocation."""
    n = _next()
    if manager is None and with_manager:
        manager = Manager(name=f"Manager {n}",
                          email=manager_email and manager_email.replace("@", f"+{n}@"))
        _db.session.add(manager)
        _db.session.flush()

    facilitator = Facilitator(
        name=f"Facilitator {n}",
        email=facilitator_email and facilitator_email.replace("@", f"+{n}@"),
        manager_id=manager.id if manager else None,
    )
    module = Module(code=f"MOD{n:03d}", name=f"Distributed Systems {n}")
    _db.session.add_all([facilitator, module])
    _db.session.flush()

    allocation = CourseAllocation(
        module_id=module.id,
        facilitator_id=facilitator.id,
        trimester=1,
        year=2025,
        is_active=is_active,
        compliance_grace_weeks=grace_weeks,
    )
    _db.session.add(allocation)
    _db.session.commit()
    return allocation


def submit_activity_log(allocation, week_number, *, is_active=True):
    record = ActivityTracker(allocation_id=allocation.id, week_number=week_number,
                             is_active=is_active)
    _db.session.add(record)
    _db.session.commit()
    return record


@pytest.fixture()
def make_allocation():
    return create_allocation


@pytest.fixture()
def auth_headers(app):
    """Return a factory producing Authorization headers for a recipient."""
    def _headers(recipient_id, role):
        token = generate_access_token(recipient_id, role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture()
def submit_log():
    return submit_activity_log
