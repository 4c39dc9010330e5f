from sqlalchemy import Column, Text, Boolean, Integer, UniqueConstraint

from .base import Base, JSONType, UTCDateTime, new_id, utcnow


class UserChannelAddress(Base):
    """
    Destination of one user on one channel.

    ``is_disabled`` is tripped by bounces, complaints or an unsubscribe
    and suppresses every send to the address until it is changed.
    """
    __tablename__ = 'user_channel_addresses'

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    channel = Column(Text, nullable=False)
    address = Column(Text, nullable=False)

    is_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(UTCDateTime)

    is_disabled = Column(Boolean, nullable=False, default=False)
    disabled_reason = Column(Text)
    bounce_count = Column(Integer, nullable=False, default=0)
    complaint_count = Column(Integer, nullable=False, default=0)

    extra = Column('metadata', JSONType, nullable=False, default=dict)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'user_id', 'channel', name='uq_channel_address_user_channel'),
    )


class BounceComplaint(Base):
    """Provider feedback event (bounce, complaint, unsubscribe) for an address."""
    __tablename__ = 'notification_bounce_complaints'

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False)
    channel_address_id = Column(Text)
    channel = Column(Text, nullable=False)
    address = Column(Text, nullable=False)

    event_type = Column(Text, nullable=False)  # hard_bounce | soft_bounce | complaint | unsubscribe
    provider = Column(Text, nullable=False)
    provider_event_id = Column(Text, nullable=False)
    notification_id = Column(Text)
    details = Column(JSONType)

    occurred_at = Column(UTCDateTime, nullable=False, default=utcnow)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('provider', 'provider_event_id', name='uq_bounce_provider_event'),
    )
