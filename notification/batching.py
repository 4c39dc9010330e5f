#!/usr/bin/env python3
"""
Batch Aggregator

Releases a due NotificationBatch as one digest message:

1. load the ``batched`` members (expired members are marked ``expired``
   and left out; a batch with no live members is ``cancelled``)
2. build the AggregatedContent and mark the batch ``processing``
3. deliver a transient digest notification through the DeliveryService
4. success: batch and members become ``sent``;
   failure: batch becomes ``failed`` and members stay ``batched`` until
   the catch-up sweep releases them to individual delivery
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from core.context import RequestHeader
from database.models import Notification, NotificationBatch
from database.repositories import NotificationRepository
from notification.delivery import DeliveryService, NOT_DELIVERABLE
from notification.message_builder import NotificationMessageBuilder
from notification.models import (
    PRIORITY_RANK,
    BatchStatus,
    DeliveryResult,
    NotificationStatus,
    Priority,
)

logger = logging.getLogger(__name__)

DIGEST_TEMPLATE_KEY = "batch_digest"
EMPTY_BATCH = "empty_batch"


class BatchAggregator:
    def __init__(
        self,
        db: Session,
        header: RequestHeader,
        delivery: DeliveryService,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.header = header
        self.delivery = delivery
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.notifications = NotificationRepository(db, header)

    def process_batch(self, batch: NotificationBatch) -> DeliveryResult:
        """
        Aggregate and deliver one batch.

        Returns:
            DeliveryResult whose ``notification_id`` is the batch id
        """
        if batch.tenant_id != self.header.tenant_id:
            raise ValueError(f"Batch {batch.id} belongs to another tenant")

        if batch.status != BatchStatus.PENDING.value:
            return DeliveryResult(
                notification_id=batch.id,
                success=False,
                status=batch.status,
                error=f"Batch is {batch.status}",
                error_code=NOT_DELIVERABLE,
            )

        now = self.clock()
        members = [
            n for n in self.notifications.list_for_batch(batch.id)
            if n.status == NotificationStatus.BATCHED.value
        ]

        live = []
        for member in members:
            if member.expires_at is not None and member.expires_at < now:
                member.status = NotificationStatus.EXPIRED.value
                member.updated_at = now
            else:
                live.append(member)

        if not live:
            batch.status = BatchStatus.CANCELLED.value
            batch.updated_at = now
            self.db.flush()
            logger.info(f"Batch {batch.id} has no live notifications, cancelled")
            return DeliveryResult(
                notification_id=batch.id,
                success=False,
                status=batch.status,
                error="No notifications left to deliver",
                error_code=EMPTY_BATCH,
            )

        aggregated = NotificationMessageBuilder.build_aggregated_content(live)
        batch.aggregated_content = aggregated.to_dict()
        batch.status = BatchStatus.PROCESSING.value
        batch.updated_at = now
        self.db.flush()

        digest = self._digest_notification(batch, live, aggregated.to_dict(), now)
        result = self.delivery.deliver(
            digest,
            record=False,
            template_key=DIGEST_TEMPLATE_KEY,
            fallback_content=NotificationMessageBuilder.build_digest_content(aggregated),
        )

        finished = self.clock()
        batch.delivery_attempts = [*(batch.delivery_attempts or []), {
            'channel': batch.channel,
            'attempted_at': finished.isoformat(),
            'success': result.success,
            'error': result.error,
            'message_id': result.message_id,
            'notification_count': len(live),
        }]
        batch.updated_at = finished

        if result.success:
            batch.status = BatchStatus.SENT.value
            batch.sent_at = finished
            for member in live:
                member.status = NotificationStatus.SENT.value
                member.sent_at = finished
                member.updated_at = finished
            logger.info(f"Digest for batch {batch.id} sent with {len(live)} notifications")
        else:
            batch.status = BatchStatus.FAILED.value
            logger.warning(f"Digest for batch {batch.id} failed: {result.error}")

        self.db.flush()
        return DeliveryResult(
            notification_id=batch.id,
            success=result.success,
            status=batch.status,
            error=result.error,
            error_code=result.error_code,
            message_id=result.message_id,
        )

    def release_failed(self, batch: NotificationBatch) -> int:
        """Return the ``batched`` members of a failed batch to individual delivery."""
        if batch.status != BatchStatus.FAILED.value:
            return 0
        return self.notifications.release_failed_batch_members(batch.id)

    @staticmethod
    def _digest_notification(batch: NotificationBatch, members, payload, now: datetime) -> Notification:
        """Transient record carrying the digest; never added to the session."""
        priority = min(
            (m.priority or Priority.NORMAL.value for m in members),
            key=lambda p: PRIORITY_RANK.get(p, PRIORITY_RANK[Priority.NORMAL.value])
        )
        return Notification(
            id=batch.id,
            tenant_id=batch.tenant_id,
            user_id=batch.user_id,
            notification_type_id=batch.notification_type_id,
            channel=batch.channel,
            title=payload['title'],
            body=payload['summary'],
            payload=payload,
            locale=members[0].locale,
            status=NotificationStatus.PENDING.value,
            priority=priority,
            batch_id=batch.id,
            delivery_attempts=[],
            created_at=now,
            updated_at=now,
        )
