import contextlib
import logging

from sqlalchemy.orm import Session

from database import database

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def notification_uow(session_factory=None):
    """Per-unit-of-work transaction scope.

    Yields a fresh Session. Commits on success, rolls back on exception,
    always closes. Repositories and services are built on the yielded
    session by the caller.

    Usage:
        with notification_uow() as session:
            services = context.services(session, RequestHeader.system(tenant_id))
            services.delivery.deliver(notification)
        # commit happens automatically on successful exit
    """
    factory = session_factory or database.SessionLocal
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
