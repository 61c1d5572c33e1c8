"""
Tests — Notification & scheduler HTTP API.

Covers:
    1. Authentication (JWT identity)
    2. Listing, paging and unread count
    3. Mark read / mark all read
    4. Manager-only scheduler endpoints
    5. Health endpoints
"""

from datetime import date

import pytest

from compliance_engine.services.notification import NotificationLedger


def _notify(recipient_id="fac-1", recipient_type="facilitator", title="Reminder"):
    return NotificationLedger.create(
        recipient_id=recipient_id,
        recipient_type=recipient_type,
        type="reminder" if recipient_type == "facilitator" else "alert",
        title=title,
        message="Please submit your activity log.",
    )


@pytest.fixture()
def facilitator_headers(auth_headers):
    return auth_headers("fac-1", "facilitator")


@pytest.fixture()
def manager_headers(auth_headers):
    return auth_headers("mgr-1", "manager")


# ═══════════════════════════════════════════════════════════════════════════
#  1. AUTHENTICATION
# ═══════════════════════════════════════════════════════════════════════════

class TestAuthentication:
    def test_missing_token(self, client):
        res = client.get("/api/v1/notifications")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_invalid_token(self, client):
        res = client.get("/api/v1/notifications/unread-count",
                         headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_unknown_role_is_rejected(self, client, auth_headers):
        res = client.get("/api/v1/notifications", headers=auth_headers("x-1", "student"))
        assert res.status_code == 401


# ═══════════════════════════════════════════════════════════════════════════
#  2. LISTING
# ═══════════════════════════════════════════════════════════════════════════

class TestListing:
    def test_list_is_scoped_to_caller(self, client, facilitator_headers):
        _notify(title="Mine")
        _notify(recipient_id="fac-2", title="Theirs")
        res = client.get("/api/v1/notifications", headers=facilitator_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert [n["title"] for n in data["notifications"]] == ["Mine"]
        assert data["unread_count"] == 1
        assert data["limit"] == 50
        assert data["offset"] == 0

    def test_unread_count_independent_of_limit(self, client, facilitator_headers):
        for i in range(3):
            _notify(title=f"Reminder {i}")
        res = client.get("/api/v1/notifications?limit=1&unread_only=true",
                         headers=facilitator_headers)
        data = res.get_json()
        assert len(data["notifications"]) == 1
        assert data["notifications"][0]["title"] == "Reminder 2"
        assert data["unread_count"] == 3

    @pytest.mark.parametrize("query", ["limit=0", "limit=101", "offset=-1", "limit=abc"])
    def test_bad_paging(self, client, facilitator_headers, query):
        res = client.get(f"/api/v1/notifications?{query}", headers=facilitator_headers)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_unread_count_endpoint(self, client, facilitator_headers):
        _notify()
        _notify()
        res = client.get("/api/v1/notifications/unread-count", headers=facilitator_headers)
        assert res.get_json() == {"unread_count": 2}


# ═══════════════════════════════════════════════════════════════════════════
#  3. READ STATE
# ═══════════════════════════════════════════════════════════════════════════

class TestReadState:
    def test_mark_read_once(self, client, facilitator_headers):
        n = _notify()
        res = client.put(f"/api/v1/notifications/{n.id}/read", headers=facilitator_headers)
        assert res.status_code == 200
        assert res.get_json() == {"success": True}

        again = client.put(f"/api/v1/notifications/{n.id}/read", headers=facilitator_headers)
        assert again.status_code == 404
        assert again.get_json()["error"] == "Notification not found or already read"

    def test_cannot_mark_someone_elses(self, client, facilitator_headers):
        n = _notify(recipient_id="fac-2")
        res = client.put(f"/api/v1/notifications/{n.id}/read", headers=facilitator_headers)
        assert res.status_code == 404
        assert NotificationLedger.unread_count("fac-2", "facilitator") == 1

    def test_mark_all_read(self, client, facilitator_headers):
        _notify()
        _notify()
        _notify(recipient_id="fac-2")
        res = client.put("/api/v1/notifications/read-all", headers=facilitator_headers)
        assert res.get_json() == {"updated": 2}

        count = client.get("/api/v1/notifications/unread-count", headers=facilitator_headers)
        assert count.get_json()["unread_count"] == 0
        assert NotificationLedger.unread_count("fac-2", "facilitator") == 1


# ═══════════════════════════════════════════════════════════════════════════
#  4. SCHEDULER
# ═══════════════════════════════════════════════════════════════════════════

class TestSchedulerAPI:
    def test_facilitator_cannot_trigger_sweep(self, client, facilitator_headers):
        res = client.post("/api/v1/scheduler/compliance-sweep", headers=facilitator_headers)
        assert res.status_code == 403

    def test_manager_triggers_sweep(self, app, client, auth_headers, make_allocation, monkeypatch):
        allocation = make_allocation()
        worker = app.extensions["compliance_worker"]
        monkeypatch.setattr(worker.scanner, "_today", lambda: date(2025, 1, 15))
        manager_id = allocation.facilitator.manager_id

        res = client.post("/api/v1/scheduler/compliance-sweep",
                          headers=auth_headers(manager_id, "manager"))
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "success"
        assert data["result"]["week_number"] == 3
        assert data["result"]["reminders_created"] == 1
        assert data["result"]["alerts_created"] == 1

        inbox = client.get("/api/v1/notifications", headers=auth_headers(manager_id, "manager"))
        assert inbox.get_json()["notifications"][0]["type"] == "alert"

    def test_list_jobs(self, client, manager_headers):
        res = client.get("/api/v1/scheduler/jobs", headers=manager_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["state"] == "stopped"
        assert {j["job_name"] for j in data["items"]} == {"compliance_sweep", "dispatch_drain"}

    def test_list_jobs_requires_manager(self, client, facilitator_headers):
        res = client.get("/api/v1/scheduler/jobs", headers=facilitator_headers)
        assert res.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
#  5. HEALTH + ERRORS
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:
    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200

    def test_live_reports_queue_and_worker(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["dispatch_queue"]["backend"] == "memory"
        assert checks["worker"]["state"] == "stopped"

    def test_unknown_api_route(self, client):
        res = client.get("/api/v1/nowhere")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Not found"
