#!/usr/bin/env python3
"""
Response models for API endpoints.
"""

from dataclasses import asdict
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any


class NotificationOut(BaseModel):
    """One notification as seen by its recipient."""
    id: str
    notification_type_id: str
    channel: str
    title: Optional[str] = None
    body: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    action_items: Optional[List[Dict[str, Any]]] = None
    status: str
    priority: str
    scheduled_for: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    batch_id: Optional[str] = None
    event_key: Optional[str] = None
    event_version: int = 1
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, notification) -> "NotificationOut":
        return cls(
            id=notification.id,
            notification_type_id=notification.notification_type_id,
            channel=notification.channel,
            title=notification.title,
            body=notification.body,
            metadata=notification.payload or {},
            action_items=notification.action_items,
            status=notification.status,
            priority=notification.priority,
            scheduled_for=notification.scheduled_for,
            expires_at=notification.expires_at,
            sent_at=notification.sent_at,
            read_at=notification.read_at,
            batch_id=notification.batch_id,
            event_key=notification.event_key,
            event_version=notification.event_version or 1,
            created_at=notification.created_at,
        )


class NotificationListResponse(BaseModel):
    success: bool = True
    total: int
    limit: int
    offset: int
    notifications: List[NotificationOut]


class SendResponse(BaseModel):
    """Send outcome: a queued job id in async mode, the fan-out result inline."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "queued": False,
                "job_id": None,
                "result": {
                    "notification_ids": ["0f6e..."],
                    "created": 1,
                    "updated": 0,
                    "duplicates": 0,
                    "skipped": 0,
                    "errors": [],
                    "partial": False
                }
            }
        }
    )

    success: bool = True
    queued: bool
    job_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class NotificationTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    category: Optional[str] = None
    description: Optional[str] = None
    default_channels: List[str] = Field(default_factory=list)
    default_frequency: str
    default_batch_interval: Optional[Dict[str, Any]] = None
    default_priority: str
    default_expires_after_hours: Optional[int] = None
    required_permission: Optional[str] = None
    auto_subscribe: bool
    subscription_conditions: Optional[Dict[str, Any]] = None
    requires_action: bool
    template_config: Dict[str, Any] = Field(default_factory=dict)
    deduplication_config: Optional[Dict[str, Any]] = None
    is_active: bool


class PreferenceOut(BaseModel):
    """Effective preference: the stored row merged over type defaults."""
    user_id: str
    notification_type_id: str
    enabled: bool
    channels: List[str]
    frequency: str
    batch_interval: Optional[Dict[str, Any]] = None
    quiet_hours: Optional[Dict[str, Any]] = None
    timezone: Optional[str] = None
    source: Optional[str] = None
    is_default: bool


class RefreshSubscriptionsResponse(BaseModel):
    success: bool = True
    subscribed: int
    unsubscribed: int
    unchanged: int


class ActionResultOut(BaseModel):
    success: bool
    notification_id: str
    action_type: str
    action_id: Optional[str] = None
    status: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def from_result(cls, result) -> "ActionResultOut":
        return cls(**asdict(result))


class BatchActionResultOut(BaseModel):
    batch_action_id: str
    status: str
    total: int
    succeeded: int
    failed: int
    results: List[ActionResultOut]

    @classmethod
    def from_result(cls, result) -> "BatchActionResultOut":
        return cls(**asdict(result))


class ChannelAddressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    channel: str
    address: str
    is_verified: bool
    is_disabled: bool
    disabled_reason: Optional[str] = None
    bounce_count: int
    complaint_count: int


class FeedbackResponse(BaseModel):
    success: bool = True
    event_id: Optional[str] = None
    duplicate: bool
    matched_addresses: int
    disabled_address_ids: List[str]
