#!/usr/bin/env python3
"""
Request models for API endpoints.
"""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from notification.models import SendRequest


class SendNotificationRequest(BaseModel):
    """Request to notify users about one event."""
    notification_type: str = Field(..., description="Name of a registered notification type")
    data: Dict[str, Any] = Field(default_factory=dict, description="Template data and metadata")
    user_ids: Optional[List[str]] = Field(
        None,
        description="Explicit recipients; omitted means the type's subscribers"
    )
    event_key: Optional[str] = Field(None, description="Business event key for deduplication")
    idempotency_key: Optional[str] = Field(None, description="Retry key for the whole request")
    priority: Optional[str] = Field(None, description="Priority: critical, high, normal, low")
    expires_at: Optional[datetime] = None
    locale: Optional[str] = None

    def to_send_request(self) -> SendRequest:
        return SendRequest(**self.model_dump())


class NotificationTypeCreate(BaseModel):
    """Request to register a notification type."""
    name: str = Field(..., min_length=1)
    category: Optional[str] = None
    description: Optional[str] = None
    default_channels: List[str] = Field(default_factory=list)
    default_frequency: str = Field(default="immediate", description="immediate or batched")
    default_batch_interval: Optional[Dict[str, Any]] = Field(
        None,
        description='e.g. {"type": "minutes", "value": 15}'
    )
    default_priority: str = "normal"
    default_expires_after_hours: Optional[int] = Field(None, gt=0)
    required_permission: Optional[str] = None
    auto_subscribe: bool = False
    subscription_conditions: Optional[Dict[str, Any]] = None
    requires_action: bool = False
    template_config: Dict[str, Any] = Field(default_factory=dict)
    deduplication_config: Optional[Dict[str, Any]] = None
    is_active: bool = True


class NotificationTypeUpdate(BaseModel):
    """Partial update of a notification type; only fields sent are changed."""
    name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    default_channels: Optional[List[str]] = None
    default_frequency: Optional[str] = None
    default_batch_interval: Optional[Dict[str, Any]] = None
    default_priority: Optional[str] = None
    default_expires_after_hours: Optional[int] = Field(None, gt=0)
    required_permission: Optional[str] = None
    auto_subscribe: Optional[bool] = None
    subscription_conditions: Optional[Dict[str, Any]] = None
    requires_action: Optional[bool] = None
    template_config: Optional[Dict[str, Any]] = None
    deduplication_config: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class PreferenceUpdate(BaseModel):
    """Partial update of the caller's preference for one type."""
    enabled: Optional[bool] = None
    channels: Optional[List[str]] = None
    frequency: Optional[str] = None
    batch_interval: Optional[Dict[str, Any]] = None
    quiet_hours: Optional[Dict[str, Any]] = Field(
        None,
        description='e.g. {"start": "22:00", "end": "07:00", "timezone": "Europe/Paris"}'
    )
    timezone: Optional[str] = None


class SubscribeRequest(BaseModel):
    channels: Optional[List[str]] = None


class RefreshSubscriptionsRequest(BaseModel):
    user_ids: Optional[List[str]] = Field(None, description="Limit the refresh to these users")


class ActionRequest(BaseModel):
    """Request to execute an action on one notification."""
    notification_id: str
    action_type: str
    action_data: Dict[str, Any] = Field(default_factory=dict)


class BatchActionRequest(BaseModel):
    """Request to execute one action across many notifications."""
    notification_ids: List[str] = Field(..., min_length=1)
    action_type: str
    action_data: Dict[str, Any] = Field(default_factory=dict)


class TokenActionRequest(BaseModel):
    """One-click action carried by a signed token."""
    token: str
    action_data: Dict[str, Any] = Field(default_factory=dict)


class ChannelAddressUpdate(BaseModel):
    address: str = Field(..., min_length=1)


class BounceEventRequest(BaseModel):
    """Provider feedback about a delivery address."""
    channel: str
    address: str
    event_type: str = Field(..., description="hard_bounce, soft_bounce, complaint or unsubscribe")
    provider: str
    provider_event_id: str
    notification_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    occurred_at: Optional[datetime] = None
