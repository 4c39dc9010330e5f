import logging
from typing import List, Optional

from database.models import NotificationType
from database.repositories.base import TenantScopedRepository

logger = logging.getLogger(__name__)


class NotificationTypeRepository(TenantScopedRepository):
    def get(self, type_id: str) -> Optional[NotificationType]:
        stmt = self._scoped(NotificationType).where(NotificationType.id == type_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_name(self, name: str) -> Optional[NotificationType]:
        stmt = self._scoped(NotificationType).where(NotificationType.name == name)
        return self.db.execute(stmt).scalar_one_or_none()

    def list(self, active_only: bool = False, category: Optional[str] = None) -> List[NotificationType]:
        stmt = self._scoped(NotificationType)
        if active_only:
            stmt = stmt.where(NotificationType.is_active.is_(True))
        if category:
            stmt = stmt.where(NotificationType.category == category)
        return list(self.db.execute(stmt.order_by(NotificationType.name)).scalars().all())

    def list_auto_subscribe(self) -> List[NotificationType]:
        stmt = self._scoped(NotificationType).where(
            NotificationType.auto_subscribe.is_(True),
            NotificationType.is_active.is_(True)
        )
        return list(self.db.execute(stmt).scalars().all())

    def add(self, notification_type: NotificationType) -> NotificationType:
        self._add(notification_type)
        logger.info(f"Created notification type {notification_type.name} for tenant {self.tenant_id}")
        return notification_type
