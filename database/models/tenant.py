from sqlalchemy import Column, Text, Boolean

from .base import Base, UTCDateTime, new_id, utcnow


class Tenant(Base):
    __tablename__ = 'tenants'

    id = Column(Text, primary_key=True, default=new_id)
    name = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
