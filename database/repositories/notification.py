import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update

from database.models import Notification, NotificationBatch
from database.repositories.base import TenantScopedRepository

logger = logging.getLogger(__name__)


class NotificationRepository(TenantScopedRepository):
    def get(self, notification_id: str) -> Optional[Notification]:
        stmt = self._scoped(Notification).where(Notification.id == notification_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_many(self, notification_ids: List[str]) -> List[Notification]:
        if not notification_ids:
            return []
        stmt = self._scoped(Notification).where(Notification.id.in_(notification_ids))
        return list(self.db.execute(stmt).scalars().all())

    def list_for_user(
        self,
        user_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Notification], int]:
        stmt = self._scoped(Notification).where(Notification.user_id == user_id)
        if status:
            stmt = stmt.where(Notification.status == status)

        total = self.db.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()

        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all()), total

    def find_by_idempotency_key(self, idempotency_key: str) -> Optional[Notification]:
        stmt = self._scoped(Notification).where(Notification.idempotency_key == idempotency_key)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_latest_by_event_key(
        self,
        user_id: str,
        type_id: str,
        channel: str,
        event_key: str
    ) -> Optional[Notification]:
        stmt = self._scoped(Notification).where(
            Notification.user_id == user_id,
            Notification.notification_type_id == type_id,
            Notification.channel == channel,
            Notification.event_key == event_key
        ).order_by(Notification.event_version.desc()).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_batch(self, batch_id: str) -> List[Notification]:
        stmt = self._scoped(Notification).where(
            Notification.batch_id == batch_id
        ).order_by(Notification.created_at, Notification.id)
        return list(self.db.execute(stmt).scalars().all())

    def add(self, notification: Notification) -> Notification:
        return self._add(notification)

    def mark_as_read(self, notification: Notification, now: datetime) -> Notification:
        if notification.read_at is None:
            notification.read_at = now
        notification.status = 'read'
        self.db.flush()
        return notification

    def release_failed_batch_members(self, batch_id: str) -> int:
        """Move ``batched`` members of a failed batch back to individual delivery."""
        stmt = (
            update(Notification)
            .where(
                Notification.tenant_id == self.tenant_id,
                Notification.batch_id == batch_id,
                Notification.status == 'batched'
            )
            .values(status='pending', batch_id=None)
            .execution_options(synchronize_session='fetch')
        )
        count = self.db.execute(stmt).rowcount
        if count:
            logger.info(f"Released {count} notifications from failed batch {batch_id}")
        return count


class BatchRepository(TenantScopedRepository):
    def get(self, batch_id: str) -> Optional[NotificationBatch]:
        stmt = self._scoped(NotificationBatch).where(NotificationBatch.id == batch_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_open(self, user_id: str, type_id: str, channel: str, now: datetime) -> Optional[NotificationBatch]:
        """Pending batch for the key whose window has not closed yet."""
        stmt = self._scoped(NotificationBatch).where(
            NotificationBatch.user_id == user_id,
            NotificationBatch.notification_type_id == type_id,
            NotificationBatch.channel == channel,
            NotificationBatch.status == 'pending',
            NotificationBatch.scheduled_for >= now
        ).order_by(NotificationBatch.scheduled_for).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, batch: NotificationBatch) -> NotificationBatch:
        return self._add(batch)
