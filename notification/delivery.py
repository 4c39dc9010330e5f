#!/usr/bin/env python3
"""
Delivery Service

Delivers one notification record through its channel adapter and
records the outcome. Every call re-checks status and expiry first, so
invoking it again for the same record is safe.

Retry bookkeeping: each send appends an attempt to
``delivery_attempts``. A failed send leaves the record ``pending`` for
the next sweep until ``max_attempts`` failures, then it becomes
``failed``. There is no sleep or backoff here; the job trigger owns the
retry cadence.

``deliver_batch`` sends in groups of ``concurrency``. Each group is
prepared and recorded on the calling thread; only the adapter calls
run in the thread pool, so the session is never shared across threads.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from core.context import RequestHeader
from database.models import Notification, NotificationType
from database.repositories import NotificationRepository, NotificationTypeRepository
from notification.channels import ChannelRegistry, NotificationChannel
from notification.interfaces import (
    ChannelAddress,
    NotificationUser,
    RenderOptions,
    TemplateProvider,
    UserResolver,
)
from notification.message_builder import NotificationMessageBuilder
from notification.models import (
    DELIVERABLE_STATUSES,
    BatchDeliveryResult,
    DeliveryResult,
    NotificationStatus,
    RenderedContent,
    RenderResult,
    SendResult,
)

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
DEFAULT_MAX_ATTEMPTS = 3

# DeliveryResult.error_code values
NOT_DELIVERABLE = "not_deliverable"
EXPIRED = "expired"
MAX_ATTEMPTS = "max_attempts"
CHANNEL_NOT_REGISTERED = "channel_not_registered"
NO_DATA_ACCESS = "no_data_access"
SEND_FAILED = "send_failed"


def failed_attempt_count(attempts: Optional[List[Dict[str, Any]]]) -> int:
    return sum(1 for attempt in attempts or [] if not attempt.get('success'))


class _RecipientSnapshot(UserResolver):
    """
    Recipient data fetched before the send phase.

    Adapters receive this instead of the live resolver so they can run in
    worker threads without touching the database session.
    """

    def __init__(
        self,
        user: Optional[NotificationUser],
        address: Optional[ChannelAddress],
        user_id: str,
        channel: str
    ):
        self.user = user
        self.address = address
        self.user_id = user_id
        self.channel = channel

    def get_user(self, user_id: str, tenant_id: str) -> Optional[NotificationUser]:
        return self.user if user_id == self.user_id else None

    def tenant_active(self, tenant_id: str) -> bool:
        return True

    def get_subscribers(self, tenant_id: str, type_id: str) -> List[str]:
        return []

    def get_user_timezone(self, user_id: str) -> Optional[str]:
        return self.user.timezone if self.user and user_id == self.user_id else None

    def get_user_locale(self, user_id: str) -> Optional[str]:
        return self.user.locale if self.user and user_id == self.user_id else None

    def get_user_permissions(self, user_id: str, tenant_id: str) -> List[str]:
        return []

    def user_matches_conditions(self, user_id: str, conditions: Dict[str, Any]) -> bool:
        return False

    def get_user_channel_address(self, user_id: str, channel: str) -> Optional[ChannelAddress]:
        if user_id == self.user_id and channel == self.channel:
            return self.address
        return None


@dataclass
class _PreparedSend:
    notification: Notification
    channel: NotificationChannel
    content: RenderedContent
    recipient: _RecipientSnapshot


class DeliveryService:
    def __init__(
        self,
        db: Session,
        header: RequestHeader,
        channel_registry: ChannelRegistry,
        template_provider: TemplateProvider,
        user_resolver: UserResolver,
        clock: Optional[Callable[[], datetime]] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.db = db
        self.header = header
        self.channel_registry = channel_registry
        self.template_provider = template_provider
        self.user_resolver = user_resolver
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.notifications = NotificationRepository(db, header)
        self.types = NotificationTypeRepository(db, header)

    def deliver(
        self,
        notification: Notification,
        record: bool = True,
        template_key: Optional[str] = None,
        fallback_content: Optional[RenderedContent] = None
    ) -> DeliveryResult:
        """
        Deliver one notification.

        Args:
            notification: Record with its channel fixed
            record: Write status and attempts back to the record. The batch
                aggregator passes False for its transient digest record.
            template_key: Template to use instead of the type's own
            fallback_content: Content used when ``template_key`` has no template

        Returns:
            DeliveryResult; failures are results, not exceptions
        """
        prepared = self._prepare(notification, record, template_key, fallback_content)
        if isinstance(prepared, DeliveryResult):
            return prepared
        send_result = self._send(prepared)
        return self._record(prepared, send_result, record)

    def deliver_by_id(self, notification_id: str) -> Optional[DeliveryResult]:
        notification = self.notifications.get(notification_id)
        if notification is None:
            logger.warning(f"Notification {notification_id} not found for tenant {self.header.tenant_id}")
            return None
        return self.deliver(notification)

    def deliver_batch(self, notifications: List[Notification]) -> BatchDeliveryResult:
        """
        Deliver many notifications, at most ``concurrency`` adapter calls at a time.

        Each group completes before the next starts.
        """
        summary = BatchDeliveryResult(total=len(notifications))
        if not notifications:
            return summary

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="delivery") as pool:
            for start in range(0, len(notifications), self.concurrency):
                group = notifications[start:start + self.concurrency]

                prepared = [self._prepare(n, True, None, None) for n in group]
                sendable = [p for p in prepared if isinstance(p, _PreparedSend)]
                sent = dict(zip(
                    (id(p) for p in sendable),
                    pool.map(self._send, sendable)
                ))

                for item in prepared:
                    if isinstance(item, DeliveryResult):
                        result = item
                    else:
                        result = self._record(item, sent[id(item)], True)
                    summary.results.append(result)
                    if result.success:
                        summary.successful += 1
                    else:
                        summary.failed += 1

        logger.info(f"Batch delivery: {summary.successful}/{summary.total} sent, {summary.failed} failed")
        return summary

    def render(
        self,
        notification: Notification,
        notification_type: Optional[NotificationType],
        template_key: Optional[str] = None,
        fallback_content: Optional[RenderedContent] = None
    ) -> RenderResult:
        """
        Render content for a notification.

        Order: the type's template for (channel, locale), then
        ``fallback_content`` if given, then the channel's generic fallback
        template, then a minimal message from title/body. ``no_data_access``
        is returned as-is; ``empty_content`` falls through to the next step.
        """
        channel = notification.channel
        if template_key is None and notification_type is not None:
            template_key = (notification_type.template_config or {}).get(channel) or notification_type.name

        user = self.user_resolver.get_user(notification.user_id, notification.tenant_id)
        options = RenderOptions(
            locale=notification.locale,
            user=user,
            check_data_access=self.user_resolver.create_data_access_checker(
                notification.user_id, notification.tenant_id
            ),
        )
        data = dict(notification.payload or {})
        data.setdefault('title', notification.title)
        data.setdefault('body', notification.body)
        data.setdefault('notification_id', notification.id)
        data.setdefault('action_items', notification.action_items or [])

        template = None
        if template_key:
            template = self.template_provider.get_template(template_key, channel, notification.locale)
        if template is None and fallback_content is not None:
            return RenderResult(has_content=True, content=fallback_content)
        if template is None:
            template = self.template_provider.get_fallback_template(channel)

        reason = None
        if template is not None:
            rendered = self.template_provider.render_template(template, data, options)
            if rendered.has_content:
                return rendered
            if rendered.reason == NO_DATA_ACCESS:
                return rendered
            reason = rendered.reason
            logger.info(f"Template {template.key}/{channel} produced no content, using minimal message")

        if fallback_content is not None:
            return RenderResult(has_content=True, content=fallback_content, reason=reason)
        content = NotificationMessageBuilder.build_minimal_content(
            notification.title, notification.body, notification.action_items
        )
        return RenderResult(has_content=True, content=content, reason=reason)

    def _prepare(
        self,
        notification: Notification,
        record: bool,
        template_key: Optional[str],
        fallback_content: Optional[RenderedContent]
    ) -> Union[_PreparedSend, DeliveryResult]:
        now = self.clock()

        if notification.status not in DELIVERABLE_STATUSES:
            return DeliveryResult(
                notification_id=notification.id,
                success=False,
                status=notification.status,
                error=f"Notification is {notification.status}",
                error_code=NOT_DELIVERABLE,
            )

        if failed_attempt_count(notification.delivery_attempts) >= self.max_attempts:
            if record:
                notification.status = NotificationStatus.FAILED.value
                notification.updated_at = now
                self.db.flush()
            return DeliveryResult(
                notification_id=notification.id,
                success=False,
                status=NotificationStatus.FAILED.value,
                error="Maximum delivery attempts reached",
                error_code=MAX_ATTEMPTS,
            )

        if notification.expires_at is not None and notification.expires_at < now:
            if record:
                notification.status = NotificationStatus.EXPIRED.value
                notification.updated_at = now
                self.db.flush()
            logger.info(f"Notification {notification.id} expired at {notification.expires_at.isoformat()}")
            return DeliveryResult(
                notification_id=notification.id,
                success=False,
                status=NotificationStatus.EXPIRED.value,
                error="Notification expired",
                error_code=EXPIRED,
            )

        channel = self.channel_registry.get(notification.channel)
        if channel is None:
            logger.error(f"No adapter registered for channel '{notification.channel}'")
            return DeliveryResult(
                notification_id=notification.id,
                success=False,
                status=notification.status,
                error=f"Channel '{notification.channel}' is not registered",
                error_code=CHANNEL_NOT_REGISTERED,
            )

        notification_type = self.types.get(notification.notification_type_id)
        rendered = self.render(notification, notification_type, template_key, fallback_content)
        if not rendered.has_content:
            # no_data_access: never fall back to raw title/body
            if record:
                notification.status = NotificationStatus.SKIPPED.value
                notification.updated_at = now
                self.db.flush()
            return DeliveryResult(
                notification_id=notification.id,
                success=False,
                status=NotificationStatus.SKIPPED.value,
                error="Recipient has no access to the referenced data",
                error_code=NO_DATA_ACCESS,
            )

        recipient = _RecipientSnapshot(
            user=self.user_resolver.get_user(notification.user_id, notification.tenant_id),
            address=self.user_resolver.get_user_channel_address(notification.user_id, notification.channel),
            user_id=notification.user_id,
            channel=notification.channel,
        )
        return _PreparedSend(notification, channel, rendered.content, recipient)

    def _send(self, prepared: _PreparedSend) -> SendResult:
        notification = prepared.notification
        try:
            return prepared.channel.send(notification, prepared.content, prepared.recipient)
        except Exception as e:
            logger.error(
                f"Channel {notification.channel} raised for notification {notification.id}: {e}",
                exc_info=True
            )
            return SendResult(success=False, error=str(e))

    def _record(self, prepared: _PreparedSend, send_result: SendResult, record: bool) -> DeliveryResult:
        notification = prepared.notification
        now = self.clock()
        attempt = {
            'channel': notification.channel,
            'attempted_at': now.isoformat(),
            'success': bool(send_result.success),
            'error': send_result.error,
            'message_id': send_result.message_id,
        }
        attempts = [*(notification.delivery_attempts or []), attempt]

        if send_result.success:
            status = NotificationStatus.SENT.value
        elif failed_attempt_count(attempts) >= self.max_attempts:
            status = NotificationStatus.FAILED.value
        else:
            status = notification.status

        if record:
            notification.delivery_attempts = attempts
            notification.status = status
            notification.updated_at = now
            if send_result.success:
                notification.sent_at = now
            if not notification.title:
                notification.title = prepared.content.title
            if not notification.body:
                notification.body = prepared.content.text
            self.db.flush()

        if send_result.success:
            logger.info(f"Delivered notification {notification.id} via {notification.channel}")
        else:
            logger.warning(
                f"Delivery of {notification.id} via {notification.channel} failed "
                f"({failed_attempt_count(attempts)}/{self.max_attempts}): {send_result.error}"
            )

        return DeliveryResult(
            notification_id=notification.id,
            success=bool(send_result.success),
            status=status,
            error=send_result.error,
            error_code=None if send_result.success else SEND_FAILED,
            message_id=send_result.message_id,
        )
