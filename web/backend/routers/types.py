#!/usr/bin/env python3
"""
Notification type administration endpoints.

Types are never deleted; ``PATCH`` with ``is_active: false`` retires one.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from core.app_context import TenantServices
from ..dependencies import get_services
from ..models.requests import NotificationTypeCreate, NotificationTypeUpdate
from ..models.responses import NotificationTypeOut

router = APIRouter(prefix="/api/notifications/types", tags=["notification-types"])


@router.get("", response_model=List[NotificationTypeOut])
def list_types(
    active_only: bool = Query(False),
    category: Optional[str] = Query(None),
    services: TenantServices = Depends(get_services)
):
    return [
        NotificationTypeOut.model_validate(t)
        for t in services.catalog.list_types(active_only=active_only, category=category)
    ]


@router.post("", response_model=NotificationTypeOut, status_code=201)
def create_type(body: NotificationTypeCreate, services: TenantServices = Depends(get_services)):
    notification_type = services.catalog.create_type(**body.model_dump())
    return NotificationTypeOut.model_validate(notification_type)


@router.get("/{type_id}", response_model=NotificationTypeOut)
def get_type(type_id: str, services: TenantServices = Depends(get_services)):
    return NotificationTypeOut.model_validate(services.catalog.get_type(type_id))


@router.patch("/{type_id}", response_model=NotificationTypeOut)
def update_type(type_id: str, body: NotificationTypeUpdate, services: TenantServices = Depends(get_services)):
    """Update only the fields present in the request body."""
    notification_type = services.catalog.update_type(type_id, **body.model_dump(exclude_unset=True))
    return NotificationTypeOut.model_validate(notification_type)
