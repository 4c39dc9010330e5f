"""
Notification type administration.

Types are tenant-scoped and never hard-deleted; ``is_active=False``
retires a type while keeping the notifications that reference it valid.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from core.context import RequestHeader
from database.models import NotificationType
from database.repositories import NotificationTypeRepository
from notification.errors import NotFoundError, PreconditionError
from notification.models import BatchInterval, DeduplicationConfig, Frequency, Priority

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    'name',
    'category',
    'description',
    'default_channels',
    'default_frequency',
    'default_batch_interval',
    'default_priority',
    'default_expires_after_hours',
    'required_permission',
    'auto_subscribe',
    'subscription_conditions',
    'requires_action',
    'template_config',
    'deduplication_config',
    'is_active',
)


def _normalize(values: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and canonicalize type fields; raises ValueError on bad input."""
    unknown = set(values) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown notification type fields: {', '.join(sorted(unknown))}")

    normalized = dict(values)
    if 'name' in normalized and not (normalized['name'] or '').strip():
        raise ValueError("Notification type name must not be empty")
    if 'name' in normalized:
        normalized['name'] = normalized['name'].strip()
    if normalized.get('default_frequency') is not None:
        normalized['default_frequency'] = Frequency(normalized['default_frequency']).value
    if normalized.get('default_priority') is not None:
        normalized['default_priority'] = Priority(normalized['default_priority']).value
    if 'default_batch_interval' in normalized:
        interval = BatchInterval.parse(normalized['default_batch_interval'])
        normalized['default_batch_interval'] = interval.to_dict() if interval else None
    if 'deduplication_config' in normalized:
        dedup = DeduplicationConfig.parse(normalized['deduplication_config'])
        normalized['deduplication_config'] = dedup.to_dict() if dedup else None
    if 'default_channels' in normalized:
        normalized['default_channels'] = list(dict.fromkeys(normalized['default_channels'] or []))
    hours = normalized.get('default_expires_after_hours')
    if hours is not None and hours <= 0:
        raise ValueError("default_expires_after_hours must be positive")
    return normalized


class NotificationTypeService:
    def __init__(
        self,
        db: Session,
        header: RequestHeader,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.header = header
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.types = NotificationTypeRepository(db, header)

    def get_type(self, type_id: str) -> NotificationType:
        notification_type = self.types.get(type_id)
        if notification_type is None:
            raise NotFoundError(f"Notification type {type_id} not found")
        return notification_type

    def get_type_by_name(self, name: str) -> NotificationType:
        notification_type = self.types.get_by_name(name)
        if notification_type is None:
            raise NotFoundError(f"Notification type {name} not found")
        return notification_type

    def list_types(self, active_only: bool = False, category: Optional[str] = None) -> List[NotificationType]:
        return self.types.list(active_only=active_only, category=category)

    def create_type(self, **fields: Any) -> NotificationType:
        """
        Raises:
            ValueError: Invalid field values
            PreconditionError: A type with the same name exists in the tenant
        """
        values = _normalize(fields)
        if 'name' not in values:
            raise ValueError("Notification type name is required")
        if self.types.get_by_name(values['name']) is not None:
            raise PreconditionError(f"Notification type {values['name']} already exists")

        if values.get('default_frequency') == Frequency.BATCHED.value and not values.get('default_batch_interval'):
            raise ValueError("Batched types need a default_batch_interval")

        now = self.clock()
        values.setdefault('default_channels', [])
        values.setdefault('template_config', {})
        return self.types.add(NotificationType(created_at=now, updated_at=now, **values))

    def update_type(self, type_id: str, **changes: Any) -> NotificationType:
        notification_type = self.get_type(type_id)
        values = _normalize(changes)

        new_name = values.get('name')
        if new_name and new_name != notification_type.name and self.types.get_by_name(new_name) is not None:
            raise PreconditionError(f"Notification type {new_name} already exists")

        for key, value in values.items():
            setattr(notification_type, key, value)

        if (notification_type.default_frequency == Frequency.BATCHED.value
                and not notification_type.default_batch_interval):
            raise ValueError("Batched types need a default_batch_interval")

        notification_type.updated_at = self.clock()
        self.db.flush()
        if values.get('is_active') is False:
            logger.info(f"Deactivated notification type {notification_type.name}")
        return notification_type
