#!/usr/bin/env python3
"""
Tests for the job entry points and the queue dispatcher.

Job tests commit their fixtures first: every entry point opens its own
unit of work on the shared in-memory database.
"""

import unittest
from unittest.mock import MagicMock, Mock, patch

from redis.exceptions import RedisError
from sqlalchemy import select

from database.models import Notification, NotificationBatch
from notification.jobs import NotificationDispatcher, NotificationJobs, handle_send_event
from notification.models import SendRequest
from notification.resolvers import DatabaseUserResolver
from tests.support import OTHER_TENANT_ID, TENANT_ID, USER_ID, DatabaseTestCase, RecordingChannel, build_context


def _send_event(**data):
    data.setdefault("title", "Invoice overdue")
    return {"notification_type": "invoice_overdue", "user_ids": [USER_ID], "data": data}


class JobsTestCase(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.add_user(USER_ID)
        self.add_address(USER_ID, "slack", "U0001ABC")

    @property
    def jobs(self):
        return NotificationJobs(self.context, session_factory=self.session_factory)

    def use_channel(self, channel):
        self.channel = channel
        self.context = build_context(self.clock, channels=[channel])

    def _rows(self, user_id=USER_ID):
        stmt = select(Notification).where(Notification.user_id == user_id).order_by(Notification.created_at)
        return list(self.session.execute(stmt).scalars().all())


class TestSendEvent(JobsTestCase):

    def setUp(self):
        super().setUp()
        self.add_type("invoice_overdue")

    def test_send_and_deliver(self):
        self.commit()

        result = self.jobs.handle_send_event(TENANT_ID, _send_event(invoice_id="inv-1"))

        self.assertEqual(result.created, 1)
        self.assertEqual(len(self.channel.sent), 1)
        row = self.session.get(Notification, result.notification_ids[0])
        self.assertEqual(row.status, "sent")
        self.assertEqual(row.tenant_id, TENANT_ID)

    def test_replayed_event_not_redelivered(self):
        self.commit()
        event = _send_event()
        event["idempotency_key"] = "evt-1"

        first = self.jobs.handle_send_event(TENANT_ID, event)
        replay = self.jobs.handle_send_event(TENANT_ID, event)

        self.assertEqual(replay.duplicates, 1)
        self.assertEqual(replay.notification_ids, first.notification_ids)
        self.assertEqual(len(self.channel.sent), 1)

    def test_deferred_delivery_by_sweep(self):
        self.commit()

        result = self.jobs.handle_send_event(TENANT_ID, _send_event(), deliver_now=False)
        self.assertEqual(self.channel.sent, [])

        totals = self.jobs.run_due_sweep()

        self.assertEqual(totals, {"released": 0, "claimed": 1, "sent": 1, "failed": 0, "tenant_errors": 0})
        self.assertEqual(self.jobs.run_due_sweep()["claimed"], 0)
        self.assertEqual(self.session.get(Notification, result.notification_ids[0]).status, "sent")

    def test_quiet_hours_deferral_released_by_sweep(self):
        type_id = self.services().catalog.get_type_by_name("invoice_overdue").id
        self.services().preferences.update_preference(
            USER_ID, type_id, quiet_hours={"start": "08:00", "end": "10:00"}
        )
        self.commit()

        result = self.jobs.handle_send_event(TENANT_ID, _send_event())

        self.assertEqual(self.channel.sent, [])
        self.assertEqual(self.jobs.run_due_sweep()["claimed"], 0)

        self.clock.advance(hours=1)
        self.assertEqual(self.jobs.run_due_sweep()["sent"], 1)
        self.assertEqual(self.session.get(Notification, result.notification_ids[0]).status, "sent")

    def test_rows_without_adapter_do_not_block_sweep(self):
        notification_type = self.services().catalog.get_type_by_name("invoice_overdue")
        stuck_ids = [self.add_notification(notification_type, channel="sms").id for _ in range(3)]
        self.clock.advance(minutes=1)
        deliverable_id = self.add_notification(notification_type).id
        self.commit()

        totals = self.jobs.run_due_sweep(limit=3)

        self.assertEqual(totals["claimed"], 1)
        self.assertEqual(totals["sent"], 1)
        self.assertEqual(len(self.channel.sent), 1)
        self.assertEqual(self.session.get(Notification, deliverable_id).status, "sent")
        for stuck_id in stuck_ids:
            self.assertEqual(self.session.get(Notification, stuck_id).status, "pending")

    def test_tenant_failure_isolated(self):
        self.add_tenant(OTHER_TENANT_ID)
        self.add_user("other-user", tenant_id=OTHER_TENANT_ID)
        self.add_address("other-user", "slack", "U0002XYZ", tenant_id=OTHER_TENANT_ID)
        other_type = self.add_type("invoice_overdue", tenant_id=OTHER_TENANT_ID)
        self.add_notification(other_type, user_id="other-user")
        self.add_notification(self.services().catalog.get_type_by_name("invoice_overdue"))
        self.commit()

        def resolver_factory(session, header):
            if header.tenant_id == OTHER_TENANT_ID:
                raise RuntimeError("directory unavailable")
            return DatabaseUserResolver(session, header)

        self.context.user_resolver_factory = resolver_factory
        totals = self.jobs.run_due_sweep()

        self.assertEqual(totals["claimed"], 2)
        self.assertEqual(totals["sent"], 1)
        self.assertEqual(totals["tenant_errors"], 1)
        self.assertEqual([r.status for r in self._rows("other-user")], ["pending"])


class TestBatchSweep(JobsTestCase):

    def setUp(self):
        super().setUp()
        self.add_type(
            "invoice_overdue", default_frequency="batched", default_batch_interval={"type": "minutes", "value": 15}
        )

    def _send_two(self):
        self.jobs.handle_send_event(TENANT_ID, _send_event(title="First"))
        self.clock.advance(minutes=1)
        self.jobs.handle_send_event(TENANT_ID, _send_event(title="Second"))

    def test_due_batch_delivered_as_digest(self):
        self.commit()
        self._send_two()
        self.assertEqual(self.channel.sent, [])

        self.assertEqual(self.jobs.deliver_due_batches()["claimed"], 0)

        self.clock.advance(minutes=14)
        totals = self.jobs.deliver_due_batches()

        self.assertEqual(totals, {"claimed": 1, "sent": 1, "failed": 0, "cancelled": 0, "errors": 0})
        self.assertEqual(len(self.channel.sent), 1)
        self.assertEqual(self.channel.sent[0][2].title, "You have 2 notifications")
        self.assertEqual([r.status for r in self._rows()], ["sent", "sent"])

    def test_failed_batch_released_to_individual_delivery(self):
        self.use_channel(RecordingChannel(fail=True))
        self.commit()
        self._send_two()
        self.clock.advance(minutes=14)

        self.assertEqual(self.jobs.deliver_due_batches()["failed"], 1)
        batch = self.session.execute(select(NotificationBatch)).scalar_one()
        self.assertEqual(batch.status, "failed")
        self.session.close()

        self.use_channel(RecordingChannel())
        totals = self.jobs.run_due_sweep()

        self.assertEqual(totals["released"], 2)
        self.assertEqual(totals["sent"], 2)
        self.assertEqual(self.jobs.release_failed_batches(), 0)
        rows = self._rows()
        self.assertEqual([r.status for r in rows], ["sent", "sent"])
        self.assertEqual([r.batch_id for r in rows], [None, None])


class TestNotificationDispatcher(unittest.TestCase):

    def test_sync_mode_runs_inline(self):
        jobs = Mock()
        jobs.run_due_sweep.return_value = {"claimed": 0}
        dispatcher = NotificationDispatcher(jobs, use_async_queue=False)

        outcome = dispatcher.dispatch_due_sweep()

        self.assertFalse(dispatcher.async_mode)
        self.assertFalse(outcome.queued)
        self.assertEqual(outcome.result, {"claimed": 0})

    def test_inline_send_uses_callers_services(self):
        jobs = Mock()
        services = Mock()
        dispatcher = NotificationDispatcher(jobs, use_async_queue=False)
        request = SendRequest(notification_type="invoice_overdue")

        dispatcher.dispatch_send(TENANT_ID, request, services=services)
        jobs.fan_out.assert_called_once_with(services, request)

        dispatcher.dispatch_send(TENANT_ID, request)
        jobs.handle_send_event.assert_called_once_with(TENANT_ID, request)

    @patch('notification.jobs.Queue')
    @patch('notification.jobs.Redis')
    def test_redis_failure_falls_back_to_sync(self, mock_redis, mock_queue):
        mock_redis.from_url.return_value.ping.side_effect = RedisError("connection refused")
        jobs = Mock()

        dispatcher = NotificationDispatcher(jobs)
        dispatcher.dispatch_batch_sweep()

        self.assertFalse(dispatcher.async_mode)
        mock_queue.assert_not_called()
        jobs.deliver_due_batches.assert_called_once_with()

    @patch('notification.jobs.Queue')
    @patch('notification.jobs.Redis')
    def test_async_mode_enqueues(self, mock_redis, mock_queue):
        queue = MagicMock()
        queue.enqueue.return_value.id = "job-1"
        mock_queue.return_value = queue
        jobs = Mock()

        dispatcher = NotificationDispatcher(jobs, redis_url="redis://cache:6379/1", queue_name="herald")
        request = SendRequest(notification_type="invoice_overdue", user_ids=[USER_ID], idempotency_key="evt-1")
        outcome = dispatcher.dispatch_send(TENANT_ID, request)

        self.assertTrue(outcome.queued)
        self.assertEqual(outcome.job_id, "job-1")
        mock_redis.from_url.assert_called_once_with("redis://cache:6379/1")
        mock_queue.assert_called_once_with("herald", connection=mock_redis.from_url.return_value)

        args, kwargs = queue.enqueue.call_args
        self.assertIs(args[0], handle_send_event)
        self.assertEqual(args[1], TENANT_ID)
        self.assertEqual(args[2]["idempotency_key"], "evt-1")
        self.assertEqual(kwargs["job_timeout"], "5m")
        jobs.handle_send_event.assert_not_called()


if __name__ == '__main__':
    unittest.main()
