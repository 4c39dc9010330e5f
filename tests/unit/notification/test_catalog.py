#!/usr/bin/env python3
"""
Tests for notification type administration.
"""

import unittest

from core.context import RequestHeader
from notification.errors import NotFoundError, PreconditionError
from tests.support import OTHER_TENANT_ID, TENANT_ID, DatabaseTestCase


class TestNotificationTypeService(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.catalog = self.services().catalog

    def test_create_with_normalized_fields(self):
        created = self.catalog.create_type(
            name="  invoice_overdue ",
            category="billing",
            default_channels=["email", "slack", "email"],
            default_frequency="batched",
            default_batch_interval="minutes:30",
            deduplication_config={"strategy": "overwrite", "eventKeyFields": ["invoice_id"]},
        )

        self.assertEqual(created.tenant_id, TENANT_ID)
        self.assertEqual(created.name, "invoice_overdue")
        self.assertEqual(created.default_channels, ["email", "slack"])
        self.assertEqual(created.default_batch_interval, {"type": "minutes", "value": 30})
        self.assertEqual(created.deduplication_config, {
            "strategy": "overwrite", "event_key_fields": ["invoice_id"], "update_window_minutes": 60
        })
        self.assertEqual(created.created_at, self.clock())
        self.assertEqual(self.catalog.get_type_by_name("invoice_overdue").id, created.id)

    def test_create_validation(self):
        self.catalog.create_type(name="invoice_overdue")

        with self.assertRaises(PreconditionError):
            self.catalog.create_type(name="invoice_overdue")
        with self.assertRaises(ValueError):
            self.catalog.create_type(name="digest", default_frequency="batched")
        with self.assertRaises(ValueError):
            self.catalog.create_type(name="x", colour="blue")
        with self.assertRaises(ValueError):
            self.catalog.create_type(name="x", default_priority="urgent")
        with self.assertRaises(ValueError):
            self.catalog.create_type(name="  ")
        with self.assertRaises(ValueError):
            self.catalog.create_type(name="x", default_expires_after_hours=0)
        with self.assertRaises(ValueError):
            self.catalog.create_type(category="billing")

    def test_update(self):
        created = self.catalog.create_type(name="invoice_overdue")
        self.clock.advance(minutes=5)

        updated = self.catalog.update_type(created.id, description="Overdue invoices", is_active=False)

        self.assertEqual(updated.description, "Overdue invoices")
        self.assertFalse(updated.is_active)
        self.assertEqual(updated.updated_at, self.clock())

    def test_rename_conflict(self):
        self.catalog.create_type(name="invoice_overdue")
        other = self.catalog.create_type(name="invoice_paid")

        with self.assertRaises(PreconditionError):
            self.catalog.update_type(other.id, name="invoice_overdue")
        with self.assertRaises(NotFoundError):
            self.catalog.update_type("missing", name="x")

    def test_list_filters(self):
        self.catalog.create_type(name="a", category="billing")
        self.catalog.create_type(name="b", category="billing", is_active=False)
        self.catalog.create_type(name="c", category="hr")

        self.assertEqual(len(self.catalog.list_types()), 3)
        self.assertEqual(sorted(t.name for t in self.catalog.list_types(active_only=True)), ["a", "c"])
        self.assertEqual(sorted(t.name for t in self.catalog.list_types(category="billing")), ["a", "b"])

    def test_tenant_isolation(self):
        created = self.catalog.create_type(name="invoice_overdue")
        self.add_tenant(OTHER_TENANT_ID)
        other_catalog = self.services(RequestHeader(tenant_id=OTHER_TENANT_ID)).catalog

        with self.assertRaises(NotFoundError):
            other_catalog.get_type(created.id)
        self.assertEqual(other_catalog.list_types(), [])
        # Same name is free in another tenant
        self.assertEqual(other_catalog.create_type(name="invoice_overdue").tenant_id, OTHER_TENANT_ID)


if __name__ == '__main__':
    unittest.main()
