#!/usr/bin/env python3
"""
FastAPI dependencies for dependency injection.
"""

from functools import lru_cache
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from core.app_context import AppContext, TenantServices
from core.context import RequestHeader
from database import database
from database.uow import notification_uow
from notification.jobs import NotificationDispatcher, NotificationJobs
from .config import get_config


@lru_cache()
def get_app_context() -> AppContext:
    """Process-wide AppContext; binds the database engine on first use."""
    config = get_config()
    database.configure(config.database.url)
    return AppContext.build(config)


@lru_cache()
def get_dispatcher() -> NotificationDispatcher:
    config = get_config()
    jobs = NotificationJobs(get_app_context(), sweep_limit=config.schedule.sweep_limit)
    return NotificationDispatcher.from_config(config, jobs)


def get_db(context: AppContext = Depends(get_app_context)) -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a database session.

    The session is one unit of work: committed when the endpoint returns,
    rolled back when it raises.

    Yields:
        Session: Database session that will be automatically closed.
    """
    with notification_uow() as session:
        yield session


def get_request_header(
    x_tenant_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    x_permissions: Optional[str] = Header(None)
) -> RequestHeader:
    """
    Caller identity from the X-Tenant-Id, X-User-Id and X-Permissions headers.

    Raises:
        HTTPException: 401 when the tenant or user id is missing
    """
    if not x_tenant_id or not x_user_id:
        raise HTTPException(status_code=401, detail="X-Tenant-Id and X-User-Id headers are required")
    permissions = [p.strip() for p in (x_permissions or '').split(',')]
    return RequestHeader.from_values(x_tenant_id, x_user_id, permissions)


def get_services(
    db: Session = Depends(get_db),
    header: RequestHeader = Depends(get_request_header),
    context: AppContext = Depends(get_app_context)
) -> TenantServices:
    """Tenant-scoped services for the calling user."""
    return context.services(db, header)
