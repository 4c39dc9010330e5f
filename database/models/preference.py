from sqlalchemy import Column, Text, Boolean, UniqueConstraint, Index

from .base import Base, JSONType, UTCDateTime, new_id, utcnow


class UserNotificationPreference(Base):
    """
    One user's settings for one notification type.

    Rows are created lazily: on the first preference write, or by the
    auto-subscription refresh (``source='auto'``).
    """
    __tablename__ = 'user_notification_preferences'

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    notification_type_id = Column(Text, nullable=False)

    enabled = Column(Boolean, nullable=False, default=True)
    channels = Column(JSONType)  # None falls back to the type's default channels
    frequency = Column(Text)
    batch_interval = Column(JSONType)
    quiet_hours = Column(JSONType)  # {"start": "22:00", "end": "06:00", "timezone": "..."}
    timezone = Column(Text)

    source = Column(Text, nullable=False, default='manual')  # manual | auto

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'notification_type_id', name='uq_preference_user_type'),
        Index('idx_preference_tenant_type', 'tenant_id', 'notification_type_id'),
    )
