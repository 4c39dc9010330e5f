import logging
from datetime import datetime
from typing import List, Sequence

from sqlalchemy import case, or_, select

from database.models import Notification, NotificationBatch
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = case(
    {'critical': 0, 'high': 1, 'normal': 2, 'low': 3},
    value=Notification.priority,
    else_=2
)


class DueWorkRepository(BaseRepository):
    """
    Cross-tenant reader used only by the sweeps.

    Rows are claimed with ``FOR UPDATE SKIP LOCKED`` on PostgreSQL so
    concurrent sweepers split the work; each row is re-scoped to its
    own tenant before any service touches it.
    """

    def claim_due_notifications(self, now: datetime, limit: int, channels: Sequence[str]) -> List[Notification]:
        """Due rows on ``channels`` only; rows for other channels wait for an adapter."""
        stmt = (
            select(Notification)
            .where(
                Notification.status == 'pending',
                Notification.channel.in_(list(channels)),
                or_(Notification.scheduled_for.is_(None), Notification.scheduled_for <= now)
            )
            .order_by(_PRIORITY_ORDER, Notification.created_at, Notification.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(self.db.execute(stmt).scalars().all())

    def claim_due_batches(self, now: datetime, limit: int) -> List[NotificationBatch]:
        stmt = (
            select(NotificationBatch)
            .where(
                NotificationBatch.status == 'pending',
                NotificationBatch.scheduled_for <= now
            )
            .order_by(NotificationBatch.scheduled_for, NotificationBatch.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(self.db.execute(stmt).scalars().all())

    def failed_batches_with_members(self, limit: int) -> List[NotificationBatch]:
        """Failed batches that still hold ``batched`` notifications."""
        stranded = select(Notification.batch_id).where(Notification.status == 'batched')
        stmt = (
            select(NotificationBatch)
            .where(
                NotificationBatch.status == 'failed',
                NotificationBatch.id.in_(stranded)
            )
            .order_by(NotificationBatch.scheduled_for, NotificationBatch.id)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())
