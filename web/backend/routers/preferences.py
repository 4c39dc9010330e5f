#!/usr/bin/env python3
"""
Preference endpoints - the caller's per-type delivery settings.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends

from core.app_context import TenantServices
from ..dependencies import get_services
from ..models.requests import PreferenceUpdate, RefreshSubscriptionsRequest, SubscribeRequest
from ..models.responses import PreferenceOut, RefreshSubscriptionsResponse

router = APIRouter(prefix="/api/notifications", tags=["preferences"])


def _effective(services: TenantServices, type_id: str) -> PreferenceOut:
    notification_type = services.catalog.get_type(type_id)
    preference = services.preferences.get_effective_preference(services.header.user_id, notification_type)
    return PreferenceOut(**preference.to_dict())


@router.get("/preferences", response_model=List[PreferenceOut])
def list_preferences(services: TenantServices = Depends(get_services)):
    """Effective preferences for every active type."""
    return [
        PreferenceOut(**p.to_dict())
        for p in services.preferences.list_preferences(services.header.user_id)
    ]


@router.get("/preferences/{type_id}", response_model=PreferenceOut)
def get_preference(type_id: str, services: TenantServices = Depends(get_services)):
    return _effective(services, type_id)


@router.put("/preferences/{type_id}", response_model=PreferenceOut)
def update_preference(type_id: str, body: PreferenceUpdate, services: TenantServices = Depends(get_services)):
    services.preferences.update_preference(
        services.header.user_id, type_id, **body.model_dump(exclude_unset=True)
    )
    return _effective(services, type_id)


@router.post("/preferences/{type_id}/subscribe", response_model=PreferenceOut)
def subscribe(
    type_id: str,
    body: Optional[SubscribeRequest] = None,
    services: TenantServices = Depends(get_services)
):
    """Subscribe the caller; permission and subscription conditions are enforced."""
    channels = body.channels if body else None
    services.preferences.subscribe(services.header.user_id, type_id, channels=channels)
    return _effective(services, type_id)


@router.post("/preferences/{type_id}/unsubscribe", response_model=PreferenceOut)
def unsubscribe(type_id: str, services: TenantServices = Depends(get_services)):
    services.preferences.unsubscribe(services.header.user_id, type_id)
    return _effective(services, type_id)


@router.post("/types/{type_id}/refresh-subscriptions", response_model=RefreshSubscriptionsResponse)
def refresh_subscriptions(
    type_id: str,
    body: Optional[RefreshSubscriptionsRequest] = None,
    services: TenantServices = Depends(get_services)
):
    """Reconcile automatic subscriptions with the type's current rules."""
    user_ids = body.user_ids if body else None
    counts = services.preferences.refresh_auto_subscriptions(type_id, user_ids=user_ids)
    return RefreshSubscriptionsResponse(**counts)
