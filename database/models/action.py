from sqlalchemy import Column, Text, Integer, Index

from .base import Base, JSONType, UTCDateTime, new_id, utcnow


class NotificationAction(Base):
    """
    Audit and idempotency record of one action execution.

    A partial unique index allows one ``completed`` row per
    (notification, action type); failed attempts may repeat.
    """
    __tablename__ = 'notification_actions'

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False)
    notification_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    action_type = Column(Text, nullable=False)
    action_data = Column(JSONType)

    status = Column(Text, nullable=False, default='pending')  # pending | completed | failed
    result = Column(JSONType)
    error = Column(Text)

    via_token = Column(Text)  # token id when executed from a one-click link
    batch_action_id = Column(Text)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    completed_at = Column(UTCDateTime)

    __table_args__ = (
        Index(
            'uq_notification_action_completed', 'notification_id', 'action_type',
            unique=True,
            postgresql_where=status == 'completed',
            sqlite_where=status == 'completed',
        ),
        Index('idx_notification_action_batch', 'batch_action_id'),
    )


class NotificationBatchAction(Base):
    __tablename__ = 'notification_batch_actions'

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    action_type = Column(Text, nullable=False)
    action_data = Column(JSONType)
    notification_ids = Column(JSONType, nullable=False, default=list)

    status = Column(Text, nullable=False, default='pending')  # pending | completed | failed | partial
    total = Column(Integer, nullable=False, default=0)
    succeeded = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    completed_at = Column(UTCDateTime)


class UsedActionToken(Base):
    """Consumed one-click tokens; the primary key makes consumption single-use."""
    __tablename__ = 'used_action_tokens'

    token_id = Column(Text, primary_key=True)
    tenant_id = Column(Text, nullable=False)
    notification_id = Column(Text, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    used_at = Column(UTCDateTime, nullable=False, default=utcnow)
