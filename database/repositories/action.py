from typing import List, Optional

from database.models import NotificationAction, NotificationBatchAction, UsedActionToken
from database.repositories.base import TenantScopedRepository


class ActionRepository(TenantScopedRepository):
    def find_completed(self, notification_id: str, action_type: str) -> Optional[NotificationAction]:
        stmt = self._scoped(NotificationAction).where(
            NotificationAction.notification_id == notification_id,
            NotificationAction.action_type == action_type,
            NotificationAction.status == 'completed'
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_notification(self, notification_id: str) -> List[NotificationAction]:
        stmt = self._scoped(NotificationAction).where(
            NotificationAction.notification_id == notification_id
        ).order_by(NotificationAction.created_at)
        return list(self.db.execute(stmt).scalars().all())

    def list_for_batch_action(self, batch_action_id: str) -> List[NotificationAction]:
        stmt = self._scoped(NotificationAction).where(
            NotificationAction.batch_action_id == batch_action_id
        ).order_by(NotificationAction.created_at)
        return list(self.db.execute(stmt).scalars().all())

    def add(self, action: NotificationAction) -> NotificationAction:
        return self._add(action)

    def get_batch_action(self, batch_action_id: str) -> Optional[NotificationBatchAction]:
        stmt = self._scoped(NotificationBatchAction).where(NotificationBatchAction.id == batch_action_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def add_batch_action(self, batch_action: NotificationBatchAction) -> NotificationBatchAction:
        return self._add(batch_action)

    def is_token_used(self, token_id: str) -> bool:
        stmt = self._scoped(UsedActionToken).where(UsedActionToken.token_id == token_id)
        return self.db.execute(stmt).scalar_one_or_none() is not None

    def mark_token_used(self, used: UsedActionToken) -> UsedActionToken:
        """Raises IntegrityError when the token was consumed concurrently."""
        return self._add(used)
