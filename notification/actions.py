#!/usr/bin/env python3
"""
Action Service

Executes user actions on notifications (approve, acknowledge, mark as
read, ...) at most once per (notification, action type). A completed
action row is the idempotency record; a partial unique index on
``notification_actions`` backs it in storage.

Handlers are plain callables registered by action type. An action type
with no handler is acknowledgment-only: it is logged as completed with
no side effect.

Usage:
    from notification.actions import ActionService

    actions = ActionService(session, header, handlers={'approve': approve_invoice})
    result = actions.execute_action(notification_id, 'approve', {'comment': 'ok'})
"""

import importlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.context import RequestHeader
from database.models import Notification, NotificationAction, NotificationBatchAction, UsedActionToken
from database.repositories import ActionRepository, NotificationRepository
from notification.errors import (
    ConfigurationError,
    NotFoundError,
    PermissionDeniedError,
    TokenValidationError,
)
from notification.models import ActionResult, ActionStatus, BatchActionResult, NotificationStatus
from notification.preferences import PreferencesService
from notification.tokens import ALREADY_USED, UNSUBSCRIBE_ACTION, ActionTokenPayload, ActionTokenService

logger = logging.getLogger(__name__)

# ActionResult.error_code values
ALREADY_ACTIONED = "already_actioned"
NOT_FOUND = "not_found"
FORBIDDEN = "forbidden"
HANDLER_FAILED = "handler_failed"


@dataclass
class ActionContext:
    """Everything a handler may need; handlers run inside the caller's transaction."""
    db: Session
    header: RequestHeader
    notification: Notification
    action_type: str
    user_id: str
    action_data: Dict[str, Any] = field(default_factory=dict)
    now: Optional[datetime] = None
    preferences: Optional[PreferencesService] = None


ActionHandler = Callable[[ActionContext], Optional[Dict[str, Any]]]


def mark_as_read(context: ActionContext) -> Dict[str, Any]:
    """Built-in handler: mark the notification read."""
    notification = context.notification
    if notification.status not in (NotificationStatus.SENT.value, NotificationStatus.READ.value):
        raise ValueError(f"Cannot mark a {notification.status} notification as read")
    now = context.now or datetime.now(timezone.utc)
    NotificationRepository(context.db, context.header).mark_as_read(notification, now)
    return {'read_at': notification.read_at.isoformat()}


def unsubscribe(context: ActionContext) -> Dict[str, Any]:
    """Built-in handler: opt the acting user out of the notification's type."""
    if context.preferences is None:
        raise ConfigurationError("Unsubscribe needs the preferences service")
    row = context.preferences.unsubscribe(context.user_id, context.notification.notification_type_id)
    return {'notification_type_id': row.notification_type_id, 'enabled': row.enabled}


BUILTIN_HANDLERS: Dict[str, ActionHandler] = {
    'mark_as_read': mark_as_read,
    UNSUBSCRIBE_ACTION: unsubscribe,
}


def load_action_handler(path: str) -> ActionHandler:
    """
    Import a handler from "package.module:function".

    Raises:
        ConfigurationError: If the path cannot be imported or is not callable
    """
    module_name, _, attr = path.partition(':')
    if not module_name or not attr:
        raise ConfigurationError(f"Action handler path must be 'module:function', got '{path}'")
    try:
        handler = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load action handler '{path}': {e}") from e
    if not callable(handler):
        raise ConfigurationError(f"Action handler '{path}' is not callable")
    return handler


class ActionService:
    def __init__(
        self,
        db: Session,
        header: RequestHeader,
        handlers: Optional[Dict[str, ActionHandler]] = None,
        token_service: Optional[ActionTokenService] = None,
        preferences: Optional[PreferencesService] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.header = header
        self.handlers = dict(BUILTIN_HANDLERS)
        self.handlers.update(handlers or {})
        self.token_service = token_service
        self.preferences = preferences
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.notifications = NotificationRepository(db, header)
        self.actions = ActionRepository(db, header)

    def _acting_user(self, user_id: Optional[str]) -> str:
        acting = user_id or self.header.user_id
        if not acting:
            raise PermissionDeniedError("An acting user is required")
        return acting

    def execute_action(
        self,
        notification_id: str,
        action_type: str,
        action_data: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        batch_action_id: Optional[str] = None,
        via_token: Optional[str] = None
    ) -> ActionResult:
        """
        Execute one action on one notification.

        Raises:
            NotFoundError: Notification does not exist in this tenant
            PermissionDeniedError: Notification belongs to another user

        Returns:
            ActionResult. A repeat of a completed action returns
            ``error_code='already_actioned'``; a failing handler returns
            ``error_code='handler_failed'`` and is logged as ``failed``.
        """
        acting_user = self._acting_user(user_id)
        notification = self.notifications.get(notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if notification.user_id != acting_user:
            raise PermissionDeniedError(f"Notification {notification_id} belongs to another user")

        existing = self.actions.find_completed(notification_id, action_type)
        if existing is not None:
            return self._already_actioned(existing)

        now = self.clock()
        data = dict(action_data or {})
        handler = self.handlers.get(action_type)
        context = ActionContext(
            db=self.db,
            header=self.header,
            notification=notification,
            action_type=action_type,
            user_id=acting_user,
            action_data=data,
            now=now,
            preferences=self.preferences,
        )

        try:
            with self.db.begin_nested():
                handler_result = handler(context) if handler is not None else None
                action = self.actions.add(NotificationAction(
                    notification_id=notification_id,
                    user_id=acting_user,
                    action_type=action_type,
                    action_data=data,
                    status=ActionStatus.COMPLETED.value,
                    result=handler_result,
                    via_token=via_token,
                    batch_action_id=batch_action_id,
                    created_at=now,
                    completed_at=now,
                ))
        except IntegrityError:
            existing = self.actions.find_completed(notification_id, action_type)
            if existing is None:
                raise
            return self._already_actioned(existing)
        except Exception as e:
            logger.error(f"Action {action_type} on {notification_id} failed: {e}", exc_info=True)
            failed = self.actions.add(NotificationAction(
                notification_id=notification_id,
                user_id=acting_user,
                action_type=action_type,
                action_data=data,
                status=ActionStatus.FAILED.value,
                error=str(e),
                via_token=via_token,
                batch_action_id=batch_action_id,
                created_at=now,
                completed_at=now,
            ))
            return ActionResult(
                success=False,
                notification_id=notification_id,
                action_type=action_type,
                action_id=failed.id,
                status=ActionStatus.FAILED.value,
                error=str(e),
                error_code=HANDLER_FAILED,
            )

        if handler is None:
            logger.info(f"Action {action_type} on {notification_id} acknowledged (no handler)")
        else:
            logger.info(f"Action {action_type} on {notification_id} completed")
        return ActionResult(
            success=True,
            notification_id=notification_id,
            action_type=action_type,
            action_id=action.id,
            status=ActionStatus.COMPLETED.value,
            result=handler_result,
        )

    @staticmethod
    def _already_actioned(existing: NotificationAction) -> ActionResult:
        return ActionResult(
            success=False,
            notification_id=existing.notification_id,
            action_type=existing.action_type,
            action_id=existing.id,
            status=existing.status,
            result=existing.result,
            error="Action already completed",
            error_code=ALREADY_ACTIONED,
        )

    def execute_with_token(
        self,
        token: str,
        action_data: Optional[Dict[str, Any]] = None
    ) -> ActionResult:
        """
        Execute the action encoded in a one-click token.

        The token is consumed only after the action succeeds, so a failed
        handler leaves it usable for a retry.

        Raises:
            ConfigurationError: No token service configured
            TokenValidationError: malformed / invalid_signature / expired / already_used
        """
        if self.token_service is None:
            raise ConfigurationError("Action tokens are not configured")

        validation = self.token_service.validate(token, is_token_used=self.actions.is_token_used)
        if not validation.valid:
            raise TokenValidationError(validation.error)
        payload = validation.payload
        if payload.tenant_id != self.header.tenant_id:
            raise PermissionDeniedError("Token was issued for another tenant")

        result = self.execute_action(
            payload.notification_id,
            payload.action_type,
            action_data=action_data,
            user_id=payload.user_id,
            via_token=payload.token_id,
        )
        if result.success:
            self._consume(payload)
        return result

    def _consume(self, payload: ActionTokenPayload) -> None:
        try:
            with self.db.begin_nested():
                self.actions.mark_token_used(UsedActionToken(
                    token_id=payload.token_id,
                    notification_id=payload.notification_id,
                    expires_at=datetime.fromtimestamp(payload.expires_at, tz=timezone.utc),
                    used_at=self.clock(),
                ))
        except IntegrityError as e:
            raise TokenValidationError(ALREADY_USED) from e

    def execute_batch_action(
        self,
        notification_ids: List[str],
        action_type: str,
        action_data: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> BatchActionResult:
        """
        Run one action across many notifications, sequentially.

        Missing or foreign notifications count as failures. The umbrella
        status is ``completed`` (all succeeded), ``failed`` (none did) or
        ``partial``.
        """
        ids = list(dict.fromkeys(notification_ids or []))
        if not ids:
            raise ValueError("notification_ids must not be empty")
        acting_user = self._acting_user(user_id)

        now = self.clock()
        batch_action = self.actions.add_batch_action(NotificationBatchAction(
            user_id=acting_user,
            action_type=action_type,
            action_data=dict(action_data or {}),
            notification_ids=ids,
            status=ActionStatus.PENDING.value,
            total=len(ids),
            created_at=now,
        ))

        results: List[ActionResult] = []
        for notification_id in ids:
            try:
                result = self.execute_action(
                    notification_id,
                    action_type,
                    action_data=action_data,
                    user_id=acting_user,
                    batch_action_id=batch_action.id,
                )
            except NotFoundError as e:
                result = ActionResult(False, notification_id, action_type, error=str(e), error_code=NOT_FOUND)
            except PermissionDeniedError as e:
                result = ActionResult(False, notification_id, action_type, error=str(e), error_code=FORBIDDEN)
            results.append(result)

        succeeded = sum(1 for r in results if r.success)
        failed = len(results) - succeeded
        if failed == 0:
            status = ActionStatus.COMPLETED.value
        elif succeeded == 0:
            status = ActionStatus.FAILED.value
        else:
            status = ActionStatus.PARTIAL.value

        batch_action.status = status
        batch_action.succeeded = succeeded
        batch_action.failed = failed
        batch_action.completed_at = self.clock()
        self.db.flush()

        logger.info(f"Batch action {action_type} ({batch_action.id}): {succeeded}/{len(ids)} succeeded")
        return BatchActionResult(
            batch_action_id=batch_action.id,
            status=status,
            total=len(ids),
            succeeded=succeeded,
            failed=failed,
            results=results,
        )
