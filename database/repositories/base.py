from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.context import RequestHeader


class BaseRepository:
    def __init__(self, db: Session):
        self.db = db

    def flush(self) -> None:
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()


class TenantScopedRepository(BaseRepository):
    """
    Repository bound to one tenant.

    Cannot be built without a request header carrying a tenant id; every
    read goes through ``_scoped`` so the tenant predicate is never missed.
    """

    def __init__(self, db: Session, header: Optional[RequestHeader]):
        if header is None or not header.tenant_id:
            raise ValueError(f"{type(self).__name__} requires a tenant context")
        super().__init__(db)
        self.header = header
        self.tenant_id = header.tenant_id

    def _scoped(self, model):
        return select(model).where(model.tenant_id == self.tenant_id)

    def _add(self, entity):
        entity.tenant_id = self.tenant_id
        self.db.add(entity)
        self.db.flush()
        return entity
