"""
Tests — Activity log submission events.
"""

import pytest

from compliance_engine.core.exceptions import NotFoundError
from compliance_engine.models.notification import Notification
from compliance_engine.services.dispatch_queue import ACTIVITY_LOG_CREATED, ACTIVITY_LOG_UPDATED
from compliance_engine.services.submission_events import notify_activity_log


class TestNotifyActivityLog:
    def test_created_notifies_manager(self, queue, make_allocation, submit_log):
        allocation = make_allocation()
        record = submit_log(allocation, 4)

        notif = notify_activity_log(record, queue=queue)
        assert notif.type == "submission"
        assert notif.recipient_type == "manager"
        assert notif.recipient_id == allocation.facilitator.manager_id
        assert notif.related_entity_type == "activity_tracker"
        assert notif.related_entity_id == record.id
        assert notif.title == "Activity Log Submitted"
        assert allocation.facilitator.name in notif.message
        assert notif.metadata_["week_number"] == 4

        intent = queue.pop()
        assert intent.kind == ACTIVITY_LOG_CREATED
        assert intent.notification_id == notif.id
        assert intent.week_number == 4

    def test_updated_uses_update_kind(self, queue, make_allocation, submit_log):
        record = submit_log(make_allocation(), 2)
        notif = notify_activity_log(record, queue=queue, updated=True)
        assert notif.title == "Activity Log Updated"
        assert queue.pop().kind == ACTIVITY_LOG_UPDATED

    def test_manager_without_email_gets_in_app_only(self, queue, make_allocation, submit_log):
        record = submit_log(make_allocation(manager_email=None), 2)
        notify_activity_log(record, queue=queue)
        assert Notification.query.count() == 1
        assert queue.size() == 0

    def test_missing_manager_raises(self, queue, make_allocation, submit_log):
        record = submit_log(make_allocation(with_manager=False), 2)
        with pytest.raises(NotFoundError):
            notify_activity_log(record, queue=queue)
        assert Notification.query.count() == 0

    def test_default_call_uses_app_queue(self, app, make_allocation, submit_log):
        shared_queue = app.extensions["dispatch_queue"]
        record = submit_log(make_allocation(), 3)

        notif = notify_activity_log(record)
        assert shared_queue.size() == 1
        intent = shared_queue.pop()
        assert intent.kind == ACTIVITY_LOG_CREATED
        assert intent.notification_id == notif.id
        assert intent.week_number == 3
