#!/usr/bin/env python3
"""
Notification Service (fan-out)

Turns one logical send request into one Notification row per eligible
(user, channel) pair. Immediate rows are created ``pending``; batched
rows are created ``batched`` and attached to the open batch for their
(user, type, channel).

Retries are safe: an idempotency key maps every (user, channel) of the
request to a fixed stored key, and event keys are resolved through the
type's deduplication policy.

Usage:
    from notification.service import NotificationService
    from notification.models import SendRequest

    service = NotificationService(session, header, user_resolver, preferences)
    result = service.send(SendRequest(
        notification_type="invoice_overdue",
        data={"invoice_id": "inv-1", "title": "Invoice overdue"},
        idempotency_key="evt-123",
    ))
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.context import RequestHeader
from database.models import Notification, NotificationBatch, NotificationType, new_id
from database.repositories import BatchRepository, NotificationRepository, NotificationTypeRepository
from notification.dedup import calculate_event_key, derive_idempotency_key, should_deduplicate
from notification.errors import ConfigurationError, NotFoundError, PermissionDeniedError, PreconditionError
from notification.interfaces import NotificationUser, UserResolver
from notification.models import (
    DEFAULT_DEDUP_CONFIG,
    BatchStatus,
    DedupStrategy,
    DeduplicationConfig,
    FanOutResult,
    NotificationStatus,
    Priority,
    RecipientError,
    SendRequest,
)
from notification.preferences import EffectivePreference, PreferencesService, quiet_hours_end
from notification.scheduling import calculate_scheduled_for
from notification.tokens import ActionTokenService

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Fan-out of send requests into notification records.

    Recipients are processed one at a time; each (user, channel) record
    is written inside its own SAVEPOINT so a failure is reported in the
    result without undoing the other recipients.
    """

    def __init__(
        self,
        db: Session,
        header: RequestHeader,
        user_resolver: UserResolver,
        preferences: Optional[PreferencesService] = None,
        token_service: Optional[ActionTokenService] = None,
        base_url: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.header = header
        self.user_resolver = user_resolver
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.preferences = preferences or PreferencesService(db, header, user_resolver, clock=self.clock)
        self.token_service = token_service
        self.base_url = base_url
        self.types = NotificationTypeRepository(db, header)
        self.notifications = NotificationRepository(db, header)
        self.batches = BatchRepository(db, header)

    def _resolve_type(self, name: str) -> NotificationType:
        notification_type = self.types.get_by_name(name)
        if notification_type is None:
            raise ConfigurationError(f"Unknown notification type: {name}")
        if not notification_type.is_active:
            raise PreconditionError(f"Notification type {name} is not active")
        return notification_type

    def send(self, request: SendRequest) -> FanOutResult:
        """
        Fan a send request out to its recipients.

        Raises:
            ConfigurationError: Unknown notification type
            PreconditionError: Type or tenant inactive

        Returns:
            FanOutResult; per-recipient failures are listed in ``errors``
        """
        tenant_id = self.header.tenant_id
        notification_type = self._resolve_type(request.notification_type)
        if not self.user_resolver.tenant_active(tenant_id):
            raise PreconditionError(f"Tenant {tenant_id} is not active")

        now = self.clock()
        data = dict(request.data or {})
        if request.priority is not None:
            Priority(request.priority)

        dedup_config = DeduplicationConfig.parse(notification_type.deduplication_config)
        event_key = request.event_key
        if event_key:
            dedup_config = dedup_config or DEFAULT_DEDUP_CONFIG
        elif dedup_config and dedup_config.event_key_fields:
            event_key = calculate_event_key(data, dedup_config.event_key_fields)

        if request.user_ids is not None:
            recipients = list(dict.fromkeys(request.user_ids))
        else:
            recipients = self.user_resolver.get_subscribers(tenant_id, notification_type.id)

        result = FanOutResult()
        for user_id in recipients:
            try:
                user = self._eligible_user(user_id)
                if user is None:
                    result.skipped += 1
                    continue
                preference = self.preferences.get_effective_preference(user_id, notification_type)
            except Exception as e:
                logger.error(f"Failed to resolve recipient {user_id}: {e}", exc_info=True)
                result.errors.append(RecipientError(user_id=user_id, error=str(e)))
                continue

            if not preference.enabled or not preference.channels:
                logger.debug(f"User {user_id} not subscribed to {notification_type.name}")
                result.skipped += 1
                continue

            for channel in preference.channels:
                self._fan_out_channel(
                    notification_type, user, preference, channel, request, data,
                    event_key, dedup_config, result, now
                )

        logger.info(
            f"Fan-out of {notification_type.name}: {result.created} created, {result.updated} updated, "
            f"{result.duplicates} duplicates, {result.skipped} skipped, {len(result.errors)} errors"
        )
        return result

    def _eligible_user(self, user_id: str) -> Optional[NotificationUser]:
        user = self.user_resolver.get_user(user_id, self.header.tenant_id)
        if user is None:
            logger.info(f"Skipping recipient {user_id}: user not found")
            return None
        if not user.is_active:
            logger.info(f"Skipping recipient {user_id}: user inactive")
            return None
        if user.tenant_id != self.header.tenant_id:
            logger.warning(f"Skipping recipient {user_id}: belongs to another tenant")
            return None
        return user

    def get_for_user(self, notification_id: str, user_id: Optional[str] = None) -> Notification:
        """
        Raises:
            NotFoundError: No such notification in this tenant
            PermissionDeniedError: Notification belongs to another user
        """
        user_id = user_id or self.header.user_id
        notification = self.notifications.get(notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if notification.user_id != user_id:
            raise PermissionDeniedError(f"Notification {notification_id} belongs to another user")
        return notification

    def list_for_user(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Notification], int]:
        return self.notifications.list_for_user(user_id or self.header.user_id, status, limit, offset)

    def mark_as_read(self, notification_id: str, user_id: Optional[str] = None) -> Notification:
        """
        Mark a delivered notification read; repeating the call keeps the first ``read_at``.

        Raises:
            PreconditionError: Notification was never delivered
        """
        notification = self.get_for_user(notification_id, user_id)
        if notification.status not in (NotificationStatus.SENT.value, NotificationStatus.READ.value):
            raise PreconditionError(f"Cannot mark a {notification.status} notification as read")
        return self.notifications.mark_as_read(notification, self.clock())

    def _fan_out_channel(
        self,
        notification_type: NotificationType,
        user: NotificationUser,
        preference: EffectivePreference,
        channel: str,
        request: SendRequest,
        data: Dict[str, Any],
        event_key: Optional[str],
        dedup_config: Optional[DeduplicationConfig],
        result: FanOutResult,
        now: datetime
    ) -> None:
        stored_key = None
        if request.idempotency_key:
            stored_key = derive_idempotency_key(
                self.header.tenant_id, request.idempotency_key, user.id, channel
            )
        try:
            with self.db.begin_nested():
                self._write_record(
                    notification_type, user, preference, channel, request, data,
                    event_key, dedup_config, stored_key, result, now
                )
        except IntegrityError as e:
            # Lost a race against a concurrent fan-out of the same request
            existing = self.notifications.find_by_idempotency_key(stored_key) if stored_key else None
            if existing is not None:
                result.duplicates += 1
                result.notification_ids.append(existing.id)
                return
            logger.error(f"Conflict writing notification for {user.id} via {channel}: {e}")
            result.errors.append(RecipientError(user_id=user.id, error="conflict", channel=channel))
        except Exception as e:
            logger.error(f"Failed to create notification for {user.id} via {channel}: {e}", exc_info=True)
            result.errors.append(RecipientError(user_id=user.id, error=str(e), channel=channel))

    def _write_record(
        self,
        notification_type: NotificationType,
        user: NotificationUser,
        preference: EffectivePreference,
        channel: str,
        request: SendRequest,
        data: Dict[str, Any],
        event_key: Optional[str],
        dedup_config: Optional[DeduplicationConfig],
        stored_key: Optional[str],
        result: FanOutResult,
        now: datetime
    ) -> None:
        if stored_key:
            existing = self.notifications.find_by_idempotency_key(stored_key)
            if existing is not None:
                logger.debug(f"Idempotent replay for notification {existing.id}")
                result.duplicates += 1
                result.notification_ids.append(existing.id)
                return

        event_version = 1
        if event_key:
            existing = self.notifications.find_latest_by_event_key(
                user.id, notification_type.id, channel, event_key
            )
            strategy = should_deduplicate(existing, event_key, dedup_config, now)
            if strategy == DedupStrategy.IGNORE:
                result.duplicates += 1
                return
            if strategy == DedupStrategy.OVERWRITE:
                self._overwrite(existing, data, now)
                result.updated += 1
                result.notification_ids.append(existing.id)
                return
            if existing is not None:
                event_version = existing.event_version + 1

        user_timezone = (
            preference.timezone
            or self.user_resolver.get_user_timezone(user.id)
            or user.timezone
        )
        priority = request.priority or notification_type.default_priority or Priority.NORMAL.value

        batch = None
        scheduled_for = None
        status = NotificationStatus.PENDING.value
        if preference.is_batched:
            scheduled_for = calculate_scheduled_for(preference.batch_interval, user_timezone, now)
            batch = self._attach_batch(user.id, notification_type, channel, preference, scheduled_for, now)
            scheduled_for = batch.scheduled_for
            status = NotificationStatus.BATCHED.value
        elif priority != Priority.CRITICAL.value and preference.quiet_hours is not None:
            scheduled_for = quiet_hours_end(preference.quiet_hours, user_timezone, now)
            if scheduled_for is not None:
                logger.info(f"User {user.id} in quiet hours, deferring {channel} until {scheduled_for.isoformat()}")

        expires_at = request.expires_at
        if expires_at is None and notification_type.default_expires_after_hours:
            expires_at = now + timedelta(hours=notification_type.default_expires_after_hours)

        notification_id = new_id()
        notification = Notification(
            id=notification_id,
            user_id=user.id,
            notification_type_id=notification_type.id,
            channel=channel,
            title=data.get('title'),
            body=data.get('body') or data.get('message'),
            payload=data,
            action_items=self._action_items(notification_id, user.id, data.get('actions')),
            locale=request.locale or self.user_resolver.get_user_locale(user.id) or user.locale,
            status=status,
            priority=priority,
            scheduled_for=scheduled_for,
            expires_at=expires_at,
            batch_id=batch.id if batch is not None else None,
            event_key=event_key,
            event_version=event_version,
            idempotency_key=stored_key,
            delivery_attempts=[],
            created_at=now,
            updated_at=now,
        )
        self.notifications.add(notification)
        result.created += 1
        result.notification_ids.append(notification_id)

    def _overwrite(self, existing: Notification, data: Dict[str, Any], now: datetime) -> None:
        existing.event_version = existing.event_version + 1
        existing.payload = data
        if data.get('title'):
            existing.title = data['title']
        if data.get('body') or data.get('message'):
            existing.body = data.get('body') or data.get('message')
        existing.updated_at = now
        self.db.flush()
        logger.info(f"Overwrote notification {existing.id} (event version {existing.event_version})")

    def _action_items(
        self,
        notification_id: str,
        user_id: str,
        actions: Any
    ) -> Optional[List[Dict[str, Any]]]:
        """Action items with one-click URLs; URLs are omitted without a token service."""
        if not actions:
            return None
        items = []
        for action in actions:
            if isinstance(action, str):
                action = {'action_type': action}
            action_type = action.get('action_type') or action.get('type')
            if not action_type:
                continue
            item = {'action_type': action_type, 'label': action.get('label')}
            if self.token_service is not None and self.base_url:
                token = self.token_service.generate(
                    notification_id=notification_id,
                    tenant_id=self.header.tenant_id,
                    user_id=user_id,
                    action_type=action_type,
                )
                item['url'] = ActionTokenService.build_action_url(self.base_url, token)
            items.append(item)
        return items or None

    def _attach_batch(
        self,
        user_id: str,
        notification_type: NotificationType,
        channel: str,
        preference: EffectivePreference,
        scheduled_for: datetime,
        now: datetime
    ) -> NotificationBatch:
        """
        Open batch for (user, type, channel), created on first use.

        One batch per key and window may be open. A batch whose window has
        passed is left for the batch sweep. A concurrent creator losing the
        unique-index race re-reads the winner's batch.
        """
        batch = self.batches.find_open(user_id, notification_type.id, channel, now)
        if batch is not None:
            return batch

        try:
            with self.db.begin_nested():
                batch = self.batches.add(NotificationBatch(
                    user_id=user_id,
                    notification_type_id=notification_type.id,
                    channel=channel,
                    batch_interval=preference.batch_interval.to_dict(),
                    status=BatchStatus.PENDING.value,
                    scheduled_for=scheduled_for,
                    delivery_attempts=[],
                    created_at=now,
                    updated_at=now,
                ))
        except IntegrityError:
            batch = self.batches.find_open(user_id, notification_type.id, channel, now)
            if batch is None:
                raise
            return batch

        logger.info(f"Opened batch {batch.id} for user {user_id} via {channel}, due {scheduled_for.isoformat()}")
        return batch
