from typing import List, Optional

from database.models import UserNotificationPreference
from database.repositories.base import TenantScopedRepository


class PreferenceRepository(TenantScopedRepository):
    def get(self, user_id: str, type_id: str) -> Optional[UserNotificationPreference]:
        stmt = self._scoped(UserNotificationPreference).where(
            UserNotificationPreference.user_id == user_id,
            UserNotificationPreference.notification_type_id == type_id
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(self, user_id: str) -> List[UserNotificationPreference]:
        stmt = self._scoped(UserNotificationPreference).where(
            UserNotificationPreference.user_id == user_id
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_type(
        self,
        type_id: str,
        enabled: Optional[bool] = None,
        source: Optional[str] = None
    ) -> List[UserNotificationPreference]:
        stmt = self._scoped(UserNotificationPreference).where(
            UserNotificationPreference.notification_type_id == type_id
        )
        if enabled is not None:
            stmt = stmt.where(UserNotificationPreference.enabled.is_(enabled))
        if source is not None:
            stmt = stmt.where(UserNotificationPreference.source == source)
        return list(self.db.execute(stmt).scalars().all())

    def add(self, preference: UserNotificationPreference) -> UserNotificationPreference:
        return self._add(preference)
