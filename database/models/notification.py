from sqlalchemy import Column, Text, Integer, Index

from .base import Base, JSONType, UTCDateTime, new_id, utcnow


class Notification(Base):
    """
    The unit of delivery: one record per (user, type, channel).

    ``delivery_attempts`` is an ordered JSON list of
    {"channel", "attempted_at", "success", "error", "message_id"} entries.
    Replace the list on append; in-place mutation is not tracked.
    """
    __tablename__ = 'notifications'

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    notification_type_id = Column(Text, nullable=False)
    channel = Column(Text, nullable=False)

    # Content; title/body may stay empty until render time
    title = Column(Text)
    body = Column(Text)
    payload = Column('metadata', JSONType, nullable=False, default=dict)
    action_items = Column(JSONType)
    locale = Column(Text)

    status = Column(Text, nullable=False, default='pending')
    priority = Column(Text, nullable=False, default='normal')

    scheduled_for = Column(UTCDateTime)
    expires_at = Column(UTCDateTime)
    sent_at = Column(UTCDateTime)
    read_at = Column(UTCDateTime)

    batch_id = Column(Text)

    # Deduplication
    event_key = Column(Text)
    event_version = Column(Integer, nullable=False, default=1)
    idempotency_key = Column(Text)

    delivery_attempts = Column(JSONType, nullable=False, default=list)
    engagement = Column(JSONType)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            'uq_notification_idempotency_key', 'idempotency_key', unique=True,
            postgresql_where=idempotency_key.isnot(None),
            sqlite_where=idempotency_key.isnot(None),
        ),
        Index(
            'uq_notification_event_key',
            'user_id', 'notification_type_id', 'channel', 'event_key', 'event_version',
            unique=True,
            postgresql_where=event_key.isnot(None),
            sqlite_where=event_key.isnot(None),
        ),
        Index('idx_notification_due', 'status', 'scheduled_for'),
        Index('idx_notification_user', 'tenant_id', 'user_id', 'created_at'),
        Index('idx_notification_batch', 'batch_id'),
    )


class NotificationBatch(Base):
    """
    Digest of notifications for one (user, type, channel), released at ``scheduled_for``.

    At most one batch per key is ``pending`` (open) at a time.
    """
    __tablename__ = 'notification_batches'

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    notification_type_id = Column(Text, nullable=False)
    channel = Column(Text, nullable=False)

    batch_interval = Column(JSONType)
    status = Column(Text, nullable=False, default='pending')
    scheduled_for = Column(UTCDateTime, nullable=False)
    sent_at = Column(UTCDateTime)

    aggregated_content = Column(JSONType)
    delivery_attempts = Column(JSONType, nullable=False, default=list)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            'uq_notification_batch_open',
            'user_id', 'notification_type_id', 'channel', 'scheduled_for',
            unique=True,
            postgresql_where=status == 'pending',
            sqlite_where=status == 'pending',
        ),
        Index('idx_notification_batch_due', 'status', 'scheduled_for'),
    )
