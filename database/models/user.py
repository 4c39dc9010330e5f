from sqlalchemy import Column, Text, Boolean, Index, UniqueConstraint

from .base import Base, JSONType, UTCDateTime, new_id, utcnow


class User(Base):
    """
    Directory entry for a notification recipient.

    Owned by the host application; the engine only reads it through
    the user resolver.
    """
    __tablename__ = 'users'

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False, index=True)
    email = Column(Text)
    display_name = Column(Text)

    # Localisation
    timezone = Column(Text)
    locale = Column(Text)

    is_active = Column(Boolean, nullable=False, default=True)
    permissions = Column(JSONType, nullable=False, default=list)

    # Used by subscription conditions ("has a manager")
    manager_id = Column(Text)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_users_tenant_email', 'tenant_id', 'email'),
    )


class UserCustomerAssignment(Base):
    """Customer accounts a user is responsible for ("has customers" condition)."""
    __tablename__ = 'user_customer_assignments'

    id = Column(Text, primary_key=True, default=new_id)
    tenant_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False, index=True)
    customer_id = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'customer_id', name='uq_user_customer_assignment'),
    )
