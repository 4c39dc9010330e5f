#!/usr/bin/env python3
"""
Tests for minimal and digest message content.
"""

import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from notification.message_builder import DEFAULT_TITLE, NotificationMessageBuilder

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _notification(notification_id, title, body=None, minutes=0, payload=None):
    return SimpleNamespace(
        id=notification_id,
        title=title,
        body=body,
        payload=payload or {},
        created_at=NOW + timedelta(minutes=minutes),
    )


class TestMinimalContent(unittest.TestCase):

    def test_title_and_body(self):
        content = NotificationMessageBuilder.build_minimal_content("Invoice overdue", "Pay **now**")
        self.assertEqual(content.title, "Invoice overdue")
        self.assertEqual(content.text, "Pay **now**")
        self.assertEqual(content.html, "<p>Pay <b>now</b></p>")

    def test_missing_title_uses_default(self):
        content = NotificationMessageBuilder.build_minimal_content(None, None)
        self.assertEqual(content.title, DEFAULT_TITLE)
        self.assertEqual(content.text, DEFAULT_TITLE)

    def test_action_links_included(self):
        content = NotificationMessageBuilder.build_minimal_content(
            "Approve expense",
            "Expense #42 needs approval",
            [
                {"action_type": "approve", "label": "Approve", "url": "https://h.example.com/a?token=x"},
                {"action_type": "reject"},
            ]
        )
        self.assertIn("Approve: https://h.example.com/a?token=x", content.text)
        self.assertIn('<a href="https://h.example.com/a?token=x">Approve</a>', content.html)
        # Links without a URL are not rendered
        self.assertNotIn("Reject", content.text)

    def test_html_escaped(self):
        content = NotificationMessageBuilder.build_minimal_content("t", "<script>alert(1)</script>")
        self.assertNotIn("<script>", content.html)
        self.assertIn("&lt;script&gt;", content.html)

    def test_summarize(self):
        self.assertEqual(NotificationMessageBuilder.summarize("first line\nsecond"), "first line")
        self.assertEqual(NotificationMessageBuilder.summarize(None), "")
        summary = NotificationMessageBuilder.summarize("x" * 300, limit=20)
        self.assertEqual(len(summary), 20)
        self.assertTrue(summary.endswith("…"))


class TestAggregatedContent(unittest.TestCase):

    def test_oldest_first_with_counts(self):
        notifications = [
            _notification("n-2", "Second", "two", minutes=5, payload={"invoice_id": "inv-2"}),
            _notification("n-1", "First", "one", minutes=0),
        ]
        aggregated = NotificationMessageBuilder.build_aggregated_content(notifications)

        self.assertEqual(aggregated.count, 2)
        self.assertEqual([item["notification_id"] for item in aggregated.items], ["n-1", "n-2"])
        self.assertEqual(aggregated.title, "You have 2 notifications")
        self.assertEqual(aggregated.summary, "Second and 1 more")
        self.assertEqual(aggregated.items[1]["metadata"], {"invoice_id": "inv-2"})
        self.assertEqual(aggregated.to_dict()["count"], 2)

    def test_single_item(self):
        aggregated = NotificationMessageBuilder.build_aggregated_content([_notification("n-1", None, "body")])
        self.assertEqual(aggregated.title, "You have 1 notification")
        self.assertEqual(aggregated.items[0]["title"], DEFAULT_TITLE)
        self.assertEqual(aggregated.summary, DEFAULT_TITLE)

    def test_digest_content(self):
        aggregated = NotificationMessageBuilder.build_aggregated_content([
            _notification("n-1", "Invoice <1>", "overdue", minutes=0),
            _notification("n-2", "Invoice 2", None, minutes=1),
        ])
        content = NotificationMessageBuilder.build_digest_content(aggregated)

        self.assertEqual(content.title, "You have 2 notifications")
        self.assertEqual(content.text, "- Invoice <1>: overdue\n- Invoice 2")
        self.assertIn("<li><b>Invoice &lt;1&gt;</b><br/>overdue</li>", content.html)


if __name__ == '__main__':
    unittest.main()
