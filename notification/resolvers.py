"""
User resolver backed by the local directory tables.

Deployments embedding the engine in a larger application can supply
their own ``UserResolver``; this one reads ``users``,
``user_customer_assignments``, ``user_notification_preferences`` and
``user_channel_addresses``.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.context import RequestHeader
from database.models import Tenant, User, UserCustomerAssignment
from database.repositories import ChannelAddressRepository, PreferenceRepository
from notification.interfaces import ChannelAddress, NotificationUser, UserResolver

logger = logging.getLogger(__name__)

# Condition keys accepted in NotificationType.subscription_conditions
_CONDITION_ALIASES = {
    'has_customers': 'has_customers',
    'hasCustomers': 'has_customers',
    'has_manager': 'has_manager',
    'hasManager': 'has_manager',
    'has_permission': 'has_permission',
    'hasPermission': 'has_permission',
}


class DatabaseUserResolver(UserResolver):
    def __init__(self, db: Session, header: RequestHeader):
        self.db = db
        self.header = header
        self.preferences = PreferenceRepository(db, header)
        self.addresses = ChannelAddressRepository(db, header)

    def _load_user(self, user_id: str) -> Optional[User]:
        return self.db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()

    def get_user(self, user_id: str, tenant_id: str) -> Optional[NotificationUser]:
        user = self._load_user(user_id)
        if user is None:
            return None
        # The caller compares tenant ids; a mismatch is reported, not hidden
        return NotificationUser(
            id=user.id,
            tenant_id=user.tenant_id,
            email=user.email,
            name=user.display_name,
            timezone=user.timezone,
            locale=user.locale,
            is_active=bool(user.is_active),
        )

    def tenant_active(self, tenant_id: str) -> bool:
        tenant = self.db.execute(select(Tenant).where(Tenant.id == tenant_id)).scalar_one_or_none()
        return tenant is not None and bool(tenant.is_active)

    def get_subscribers(self, tenant_id: str, type_id: str) -> List[str]:
        return [p.user_id for p in self.preferences.list_for_type(type_id, enabled=True)]

    def list_user_ids(self, tenant_id: str) -> List[str]:
        stmt = select(User.id).where(User.tenant_id == tenant_id, User.is_active.is_(True)).order_by(User.id)
        return list(self.db.execute(stmt).scalars().all())

    def get_user_timezone(self, user_id: str) -> Optional[str]:
        user = self._load_user(user_id)
        return user.timezone if user else None

    def get_user_locale(self, user_id: str) -> Optional[str]:
        user = self._load_user(user_id)
        return user.locale if user else None

    def get_user_permissions(self, user_id: str, tenant_id: str) -> List[str]:
        user = self._load_user(user_id)
        if user is None or user.tenant_id != tenant_id:
            return []
        return list(user.permissions or [])

    def user_matches_conditions(self, user_id: str, conditions: Dict[str, Any]) -> bool:
        """
        Evaluate structured subscription conditions.

        Supported keys: ``has_customers`` (bool), ``has_manager`` (bool),
        ``has_permission`` (permission name). Unknown keys fail closed.
        """
        user = self._load_user(user_id)
        if user is None:
            return False

        for raw_key, expected in (conditions or {}).items():
            key = _CONDITION_ALIASES.get(raw_key)
            if key is None:
                logger.warning(f"Unknown subscription condition '{raw_key}'")
                return False

            if key == 'has_customers':
                assignment = self.db.execute(
                    select(UserCustomerAssignment.id)
                    .where(UserCustomerAssignment.user_id == user_id)
                    .limit(1)
                ).first()
                if bool(expected) != (assignment is not None):
                    return False
            elif key == 'has_manager':
                if bool(expected) != bool(user.manager_id):
                    return False
            elif key == 'has_permission':
                if expected not in (user.permissions or []):
                    return False
        return True

    def get_user_channel_address(self, user_id: str, channel: str) -> Optional[ChannelAddress]:
        row = self.addresses.get(user_id, channel)
        if row is None:
            return None
        return ChannelAddress(
            id=row.id,
            tenant_id=row.tenant_id,
            user_id=row.user_id,
            channel=row.channel,
            address=row.address,
            is_verified=bool(row.is_verified),
            is_disabled=bool(row.is_disabled),
            bounce_count=row.bounce_count or 0,
            complaint_count=row.complaint_count or 0,
            verified_at=row.verified_at,
            metadata=dict(row.extra or {}),
        )
