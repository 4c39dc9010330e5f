#!/usr/bin/env python3
"""
Tests for notification actions, one-click tokens and batch actions.
"""

import unittest

from database.models import NotificationAction, NotificationBatchAction
from notification.actions import ALREADY_ACTIONED, FORBIDDEN, HANDLER_FAILED, NOT_FOUND
from notification.errors import (
    ConfigurationError,
    NotFoundError,
    PermissionDeniedError,
    TokenValidationError,
)
from notification.tokens import ALREADY_USED, INVALID_SIGNATURE, UNSUBSCRIBE_ACTION
from tests.support import OTHER_TENANT_ID, TENANT_ID, USER_ID, DatabaseTestCase, build_context


class FlakyHandler:
    """Fails the first ``failures`` calls, then approves."""

    def __init__(self, failures=1):
        self.failures = failures
        self.calls = []

    def __call__(self, context):
        self.calls.append(context)
        context.notification.title = "Changed by handler"
        if len(self.calls) <= self.failures:
            raise ValueError("ledger locked")
        return {"approved_by": context.user_id, "comment": context.action_data.get("comment")}


class ActionTestCase(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.add_user(USER_ID)
        self.add_user("user-2")
        self.handler = FlakyHandler(failures=0)
        self.context = build_context(self.clock, channels=[self.channel], handlers={"approve": self.handler})
        self.notification_type = self.add_type("expense_approval", requires_action=True)
        self.notification = self.add_notification(self.notification_type, status="sent")

    @property
    def actions(self):
        return self.services().actions

    def _actions_for(self, notification_id):
        return self.session.query(NotificationAction).filter_by(notification_id=notification_id).all()


class TestExecuteAction(ActionTestCase):

    def test_acknowledge_without_handler(self):
        result = self.actions.execute_action(self.notification.id, "acknowledge")

        self.assertTrue(result.success)
        self.assertEqual(result.status, "completed")
        self.assertIsNone(result.result)
        rows = self._actions_for(self.notification.id)
        self.assertEqual([(r.action_type, r.status, r.user_id) for r in rows], [("acknowledge", "completed", USER_ID)])

    def test_repeat_is_already_actioned(self):
        first = self.actions.execute_action(self.notification.id, "acknowledge")
        second = self.actions.execute_action(self.notification.id, "acknowledge")

        self.assertFalse(second.success)
        self.assertEqual(second.error_code, ALREADY_ACTIONED)
        self.assertEqual(second.action_id, first.action_id)
        self.assertEqual(len(self._actions_for(self.notification.id)), 1)

    def test_different_action_types_are_independent(self):
        self.actions.execute_action(self.notification.id, "acknowledge")
        self.assertTrue(self.actions.execute_action(self.notification.id, "approve").success)

    def test_handler_result_stored(self):
        result = self.actions.execute_action(self.notification.id, "approve", {"comment": "fine"})

        self.assertEqual(result.result, {"approved_by": USER_ID, "comment": "fine"})
        self.assertEqual(self.handler.calls[0].action_data, {"comment": "fine"})
        self.assertEqual(self._actions_for(self.notification.id)[0].result["comment"], "fine")

    def test_other_users_notification(self):
        foreign = self.add_notification(self.notification_type, user_id="user-2", status="sent")
        with self.assertRaises(PermissionDeniedError):
            self.actions.execute_action(foreign.id, "acknowledge")
        with self.assertRaises(NotFoundError):
            self.actions.execute_action("missing", "acknowledge")

    def test_failed_handler_logged_and_retryable(self):
        self.handler.failures = 1

        failed = self.actions.execute_action(self.notification.id, "approve")

        self.assertFalse(failed.success)
        self.assertEqual(failed.error_code, HANDLER_FAILED)
        self.assertEqual(failed.error, "ledger locked")
        # Handler side effects are rolled back with its savepoint
        self.assertEqual(self.notification.title, "Invoice overdue")

        retried = self.actions.execute_action(self.notification.id, "approve")

        self.assertTrue(retried.success)
        statuses = sorted(r.status for r in self._actions_for(self.notification.id))
        self.assertEqual(statuses, ["completed", "failed"])

    def test_mark_as_read_builtin(self):
        result = self.actions.execute_action(self.notification.id, "mark_as_read")

        self.assertTrue(result.success)
        self.assertEqual(self.notification.status, "read")
        self.assertEqual(result.result, {"read_at": self.clock().isoformat()})

    def test_mark_as_read_rejects_undelivered(self):
        pending = self.add_notification(self.notification_type)

        result = self.actions.execute_action(pending.id, "mark_as_read")

        self.assertEqual(result.error_code, HANDLER_FAILED)
        self.assertEqual(pending.status, "pending")


class TestTokenActions(ActionTestCase):

    def _token(self, action_type="approve", tenant_id=TENANT_ID, user_id=USER_ID):
        return self.context.token_service.generate(self.notification.id, tenant_id, user_id, action_type)

    def test_execute_with_token(self):
        token = self._token()
        actions = self.services(self.header.__class__(tenant_id=TENANT_ID)).actions

        result = actions.execute_with_token(token, {"comment": "via link"})

        self.assertTrue(result.success)
        row = self._actions_for(self.notification.id)[0]
        self.assertEqual(row.user_id, USER_ID)
        self.assertIsNotNone(row.via_token)

        with self.assertRaises(TokenValidationError) as ctx:
            actions.execute_with_token(token)
        self.assertEqual(ctx.exception.code, ALREADY_USED)

    def test_unsubscribe_link_opts_user_out(self):
        token = self._token(UNSUBSCRIBE_ACTION)
        actions = self.services(self.header.__class__(tenant_id=TENANT_ID)).actions

        result = actions.execute_with_token(token)

        self.assertTrue(result.success)
        self.assertEqual(result.result, {"notification_type_id": self.notification_type.id, "enabled": False})
        preference = self.services().preferences.get_preference(USER_ID, self.notification_type.id)
        self.assertFalse(preference.enabled)
        self.assertEqual(preference.source, "manual")

    def test_failed_handler_leaves_token_usable(self):
        self.handler.failures = 1
        token = self._token()

        self.assertEqual(self.actions.execute_with_token(token).error_code, HANDLER_FAILED)
        self.assertTrue(self.actions.execute_with_token(token).success)

    def test_second_token_for_completed_action(self):
        self.actions.execute_with_token(self._token())

        result = self.actions.execute_with_token(self._token())

        self.assertEqual(result.error_code, ALREADY_ACTIONED)

    def test_tampered_token(self):
        token = self._token()
        tampered = token[:-1] + ("A" if token[-1] != "A" else "B")
        with self.assertRaises(TokenValidationError) as ctx:
            self.actions.execute_with_token(tampered)
        self.assertEqual(ctx.exception.code, INVALID_SIGNATURE)

    def test_token_for_other_tenant(self):
        with self.assertRaises(PermissionDeniedError):
            self.actions.execute_with_token(self._token(tenant_id=OTHER_TENANT_ID))

    def test_tokens_not_configured(self):
        self.context = build_context(self.clock, token_secret=None)
        with self.assertRaises(ConfigurationError):
            self.actions.execute_with_token("anything.at-all")


class TestBatchActions(ActionTestCase):

    def test_all_succeed(self):
        other = self.add_notification(self.notification_type, status="sent")

        result = self.actions.execute_batch_action([self.notification.id, other.id, other.id], "acknowledge")

        self.assertEqual((result.status, result.total, result.succeeded, result.failed), ("completed", 2, 2, 0))
        stored = self.session.get(NotificationBatchAction, result.batch_action_id)
        self.assertEqual(stored.status, "completed")
        self.assertEqual(stored.completed_at, self.clock())
        for row in self._actions_for(other.id):
            self.assertEqual(row.batch_action_id, result.batch_action_id)

    def test_partial(self):
        foreign = self.add_notification(self.notification_type, user_id="user-2", status="sent")

        result = self.actions.execute_batch_action([self.notification.id, foreign.id, "missing"], "acknowledge")

        self.assertEqual((result.status, result.succeeded, result.failed), ("partial", 1, 2))
        self.assertEqual([r.error_code for r in result.results], [None, FORBIDDEN, NOT_FOUND])

    def test_all_fail(self):
        self.actions.execute_action(self.notification.id, "acknowledge")

        result = self.actions.execute_batch_action([self.notification.id], "acknowledge")

        self.assertEqual(result.status, "failed")
        self.assertEqual(result.results[0].error_code, ALREADY_ACTIONED)

    def test_empty_rejected(self):
        with self.assertRaises(ValueError):
            self.actions.execute_batch_action([], "acknowledge")


if __name__ == '__main__':
    unittest.main()
