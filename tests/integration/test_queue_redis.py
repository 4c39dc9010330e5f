#!/usr/bin/env python3
"""
Integration Test: job queue with real Redis

Enqueues send events and sweeps through the dispatcher and runs them
with an in-process RQ worker, so the queued entry points are exercised
end to end against the in-memory test database.

Usage:
    REDIS_URL=redis://localhost:6379/1 \
    python -m pytest tests/integration/test_queue_redis.py -v
"""

import os
import unittest
import uuid
from unittest.mock import patch

from rq import SimpleWorker
from rq.job import Job

from notification.jobs import NotificationDispatcher, NotificationJobs
from notification.models import SendRequest
from tests.support import TENANT_ID, USER_ID, DatabaseTestCase

REDIS_URL = os.environ.get('REDIS_URL')

# Keep test jobs out of the production database
if REDIS_URL and REDIS_URL.endswith('/0'):
    REDIS_URL = REDIS_URL[:-2] + '/1'


@unittest.skipIf(not REDIS_URL, "REDIS_URL not set")
class TestQueueWithRedis(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.add_user(USER_ID)
        self.add_address(USER_ID, "slack", "U0001ABC")
        self.add_type("invoice_overdue")
        self.commit()

        jobs = NotificationJobs(self.context, session_factory=self.session_factory)
        patcher = patch('notification.jobs._jobs', jobs)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.queue_name = f"herald-test-{uuid.uuid4().hex[:8]}"
        self.dispatcher = NotificationDispatcher(jobs, redis_url=REDIS_URL, queue_name=self.queue_name)
        if not self.dispatcher.async_mode:
            self.skipTest("Redis not reachable")

    def tearDown(self):
        self.dispatcher.queue.empty()
        self.dispatcher.queue.delete(delete_jobs=True)
        super().tearDown()

    def _work(self):
        worker = SimpleWorker([self.dispatcher.queue], connection=self.dispatcher.redis_conn)
        worker.work(burst=True)

    def test_send_event_processed_by_worker(self):
        request = SendRequest(notification_type="invoice_overdue", user_ids=[USER_ID], data={"title": "Invoice overdue"})

        outcome = self.dispatcher.dispatch_send(TENANT_ID, request)
        self.assertTrue(outcome.queued)
        self.assertEqual(self.channel.sent, [])

        self._work()

        job = Job.fetch(outcome.job_id, connection=self.dispatcher.redis_conn)
        self.assertEqual(job.get_status(), "finished")
        self.assertEqual(job.return_value()["created"], 1)
        self.assertEqual(len(self.channel.sent), 1)

    def test_replayed_event_delivered_once(self):
        request = SendRequest(
            notification_type="invoice_overdue",
            user_ids=[USER_ID],
            data={"title": "Invoice overdue"},
            idempotency_key="evt-1"
        )

        self.dispatcher.dispatch_send(TENANT_ID, request)
        replay = self.dispatcher.dispatch_send(TENANT_ID, request)
        self._work()

        job = Job.fetch(replay.job_id, connection=self.dispatcher.redis_conn)
        self.assertEqual(job.return_value()["duplicates"], 1)
        self.assertEqual(len(self.channel.sent), 1)

    def test_sweeps_enqueued(self):
        due = self.dispatcher.dispatch_due_sweep()
        batches = self.dispatcher.dispatch_batch_sweep()

        self._work()

        due_job = Job.fetch(due.job_id, connection=self.dispatcher.redis_conn)
        batch_job = Job.fetch(batches.job_id, connection=self.dispatcher.redis_conn)
        self.assertEqual(due_job.return_value()["claimed"], 0)
        self.assertEqual(batch_job.return_value()["claimed"], 0)


if __name__ == '__main__':
    unittest.main()
