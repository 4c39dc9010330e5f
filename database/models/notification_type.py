from sqlalchemy import Column, Text, Boolean, Integer, UniqueConstraint

from .base import Base, JSONType, UTCDateTime, new_id, utcnow


class NotificationType(Base):
    """
    Tenant-scoped catalog entry describing one kind of notification.

    Types are soft-disabled through ``is_active`` and never deleted
    while notifications reference them.
    """
    __tablename__ = 'notification_types'

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    category = Column(Text)
    description = Column(Text)

    # Delivery defaults
    default_channels = Column(JSONType, nullable=False, default=list)
    default_frequency = Column(Text, nullable=False, default='immediate')  # immediate | batched
    default_batch_interval = Column(JSONType)  # {"type": "minutes", "value": 15}
    default_priority = Column(Text, nullable=False, default='normal')
    default_expires_after_hours = Column(Integer)

    # Subscription rules
    required_permission = Column(Text)
    auto_subscribe = Column(Boolean, nullable=False, default=False)
    subscription_conditions = Column(JSONType)  # {"has_customers": true, "has_manager": true}

    requires_action = Column(Boolean, nullable=False, default=False)

    # {channel: template key}; the type name is used when a channel is absent
    template_config = Column(JSONType, nullable=False, default=dict)
    # {"strategy": "overwrite", "event_key_fields": [...], "update_window_minutes": 60}
    deduplication_config = Column(JSONType)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_notification_type_tenant_name'),
    )
