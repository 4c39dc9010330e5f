#!/usr/bin/env python3
"""
Tests for the sweep scheduler tick in main.py.
"""

import unittest
from unittest.mock import Mock

from main import run_tick
from notification.jobs import Dispatch


class TestRunTick(unittest.TestCase):

    def setUp(self):
        self.dispatcher = Mock()
        self.dispatcher.dispatch_due_sweep.return_value = Dispatch(result={"claimed": 0})
        self.dispatcher.dispatch_batch_sweep.return_value = Dispatch(job_id="job-7")
        self.intervals = {"pending": 60, "batches": 300}
        self.next_due = {"pending": 0.0, "batches": 0.0}

    def test_first_tick_runs_both_sweeps(self):
        run_tick(self.dispatcher, 1000.0, self.next_due, self.intervals)

        self.dispatcher.dispatch_due_sweep.assert_called_once_with()
        self.dispatcher.dispatch_batch_sweep.assert_called_once_with()
        self.assertEqual(self.next_due, {"pending": 1060.0, "batches": 1300.0})

    def test_sweeps_wait_for_their_interval(self):
        run_tick(self.dispatcher, 1000.0, self.next_due, self.intervals)
        run_tick(self.dispatcher, 1030.0, self.next_due, self.intervals)
        run_tick(self.dispatcher, 1060.0, self.next_due, self.intervals)

        self.assertEqual(self.dispatcher.dispatch_due_sweep.call_count, 2)
        self.assertEqual(self.dispatcher.dispatch_batch_sweep.call_count, 1)

    def test_failing_sweep_does_not_block_the_other(self):
        self.dispatcher.dispatch_due_sweep.side_effect = RuntimeError("database unavailable")

        run_tick(self.dispatcher, 1000.0, self.next_due, self.intervals)

        self.dispatcher.dispatch_batch_sweep.assert_called_once_with()
        # The failed sweep still waits a full interval before retrying
        self.assertEqual(self.next_due["pending"], 1060.0)


if __name__ == '__main__':
    unittest.main()
