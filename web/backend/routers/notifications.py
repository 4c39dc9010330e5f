#!/usr/bin/env python3
"""
Notification endpoints - list, read and mark the caller's notifications.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from core.app_context import TenantServices
from notification.models import NotificationStatus
from ..dependencies import get_services
from ..models.responses import NotificationListResponse, NotificationOut

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    status: Optional[NotificationStatus] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    services: TenantServices = Depends(get_services)
):
    """List the caller's notifications, newest first."""
    items, total = services.notifications.list_for_user(
        status=status.value if status else None,
        limit=limit,
        offset=offset
    )
    return NotificationListResponse(
        total=total,
        limit=limit,
        offset=offset,
        notifications=[NotificationOut.from_model(n) for n in items]
    )


@router.get("/{notification_id}", response_model=NotificationOut)
def get_notification(notification_id: str, services: TenantServices = Depends(get_services)):
    return NotificationOut.from_model(services.notifications.get_for_user(notification_id))


@router.post("/{notification_id}/read", response_model=NotificationOut)
def mark_notification_read(notification_id: str, services: TenantServices = Depends(get_services)):
    """Mark a delivered notification as read. Repeating the call is harmless."""
    return NotificationOut.from_model(services.notifications.mark_as_read(notification_id))
