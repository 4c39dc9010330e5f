#!/usr/bin/env python3
"""
Channel address endpoints and provider feedback (bounces, complaints).
"""

from typing import List

from fastapi import APIRouter, Depends

from core.app_context import TenantServices
from ..dependencies import get_services
from ..models.requests import BounceEventRequest, ChannelAddressUpdate
from ..models.responses import ChannelAddressOut, FeedbackResponse

router = APIRouter(prefix="/api/notifications", tags=["channel-addresses"])


@router.get("/channel-addresses", response_model=List[ChannelAddressOut])
def list_channel_addresses(services: TenantServices = Depends(get_services)):
    return [
        ChannelAddressOut.model_validate(a)
        for a in services.addresses.list_addresses(services.header.user_id)
    ]


@router.put("/channel-addresses/{channel}", response_model=ChannelAddressOut)
def upsert_channel_address(
    channel: str,
    body: ChannelAddressUpdate,
    services: TenantServices = Depends(get_services)
):
    """Set the caller's address on a channel; a new address starts unverified and enabled."""
    row = services.addresses.upsert_address(services.header.user_id, channel, body.address)
    return ChannelAddressOut.model_validate(row)


@router.post("/bounces", response_model=FeedbackResponse)
def record_bounce(body: BounceEventRequest, services: TenantServices = Depends(get_services)):
    """Record provider feedback. Replays of the same provider event are no-ops."""
    result = services.addresses.record_event(**body.model_dump())
    return FeedbackResponse(
        event_id=result.event_id,
        duplicate=result.duplicate,
        matched_addresses=result.matched_addresses,
        disabled_address_ids=result.disabled_address_ids
    )
