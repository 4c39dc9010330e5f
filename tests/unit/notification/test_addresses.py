#!/usr/bin/env python3
"""
Tests for channel addresses and provider feedback (bounces, complaints, unsubscribes).
"""

import unittest

from database.models import BounceComplaint
from tests.support import USER_ID, DatabaseTestCase, RecordingChannel, build_context


class TestChannelAddressService(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.add_user(USER_ID)
        self.add_user("user-2")
        self.context = build_context(self.clock, channels=[RecordingChannel("slack"), RecordingChannel("email")])
        self.addresses = self.services().addresses

    def test_upsert_creates_address(self):
        row = self.addresses.upsert_address(USER_ID, "email", "  ada@example.com ")

        self.assertEqual(row.address, "ada@example.com")
        self.assertFalse(row.is_verified)
        self.assertFalse(row.is_disabled)
        self.assertEqual([r.channel for r in self.addresses.list_addresses(USER_ID)], ["email"])

    def test_upsert_rejects_bad_input(self):
        with self.assertRaises(ValueError):
            self.addresses.upsert_address(USER_ID, "pager", "123")
        with self.assertRaises(ValueError):
            self.addresses.upsert_address(USER_ID, "email", "bad-address")
        with self.assertRaises(ValueError):
            self.addresses.upsert_address(USER_ID, "email", "   ")

    def test_changed_address_resets_state(self):
        row = self.add_address(USER_ID, "email", "old@example.com", is_disabled=True, bounce_count=3,
                               disabled_reason="hard_bounce", is_verified=True)

        updated = self.addresses.upsert_address(USER_ID, "email", "new@example.com")

        self.assertEqual(updated.id, row.id)
        self.assertFalse(updated.is_disabled)
        self.assertFalse(updated.is_verified)
        self.assertEqual(updated.bounce_count, 0)
        self.assertIsNone(updated.disabled_reason)

    def test_same_address_keeps_state(self):
        self.add_address(USER_ID, "email", "ada@example.com", is_verified=True, bounce_count=1)
        row = self.addresses.upsert_address(USER_ID, "email", "ada@example.com")
        self.assertTrue(row.is_verified)
        self.assertEqual(row.bounce_count, 1)

    def test_hard_bounces_disable_at_threshold(self):
        row = self.add_address(USER_ID, "email", "ada@example.com")

        for n in range(1, 3):
            result = self.addresses.record_event("email", "ada@example.com", "hard_bounce", "ses", f"evt-{n}")
            self.assertEqual(result.disabled_address_ids, [])
        result = self.addresses.record_event("email", "ada@example.com", "hard_bounce", "ses", "evt-3")

        self.assertEqual(result.disabled_address_ids, [row.id])
        self.assertEqual(row.bounce_count, 3)
        self.assertTrue(row.is_disabled)
        self.assertEqual(row.disabled_reason, "hard_bounce")

    def test_complaint_disables_immediately(self):
        row = self.add_address(USER_ID, "email", "ada@example.com")

        result = self.addresses.record_event("email", "ada@example.com", "complaint", "ses", "evt-1")

        self.assertEqual(result.disabled_address_ids, [row.id])
        self.assertEqual(row.complaint_count, 1)

    def test_unsubscribe_disables_every_match(self):
        first = self.add_address(USER_ID, "email", "shared@example.com")
        second = self.add_address("user-2", "email", "shared@example.com")

        result = self.addresses.record_event("email", "shared@example.com", "unsubscribe", "ses", "evt-1")

        self.assertEqual(result.matched_addresses, 2)
        self.assertEqual(sorted(result.disabled_address_ids), sorted([first.id, second.id]))
        self.assertEqual(first.disabled_reason, "unsubscribe")

    def test_soft_bounce_only_recorded(self):
        row = self.add_address(USER_ID, "email", "ada@example.com")

        result = self.addresses.record_event(
            "email", "ada@example.com", "soft_bounce", "ses", "evt-1", details={"smtp": "452"}
        )

        self.assertIsNotNone(result.event_id)
        self.assertFalse(row.is_disabled)
        self.assertEqual(row.bounce_count, 0)
        event = self.session.get(BounceComplaint, result.event_id)
        self.assertEqual(event.channel_address_id, row.id)
        self.assertEqual(event.details, {"smtp": "452"})

    def test_replayed_event_is_noop(self):
        row = self.add_address(USER_ID, "email", "ada@example.com")

        first = self.addresses.record_event("email", "ada@example.com", "hard_bounce", "ses", "evt-1")
        second = self.addresses.record_event("email", "ada@example.com", "hard_bounce", "ses", "evt-1")

        self.assertTrue(second.duplicate)
        self.assertEqual(second.event_id, first.event_id)
        self.assertEqual(row.bounce_count, 1)

    def test_event_without_matching_address(self):
        result = self.addresses.record_event("email", "nobody@example.com", "complaint", "ses", "evt-1")

        self.assertEqual(result.matched_addresses, 0)
        self.assertIsNotNone(result.event_id)
        self.assertIsNone(self.session.get(BounceComplaint, result.event_id).channel_address_id)

    def test_unknown_event_type(self):
        with self.assertRaises(ValueError):
            self.addresses.record_event("email", "ada@example.com", "deferred", "ses", "evt-1")


if __name__ == '__main__':
    unittest.main()
