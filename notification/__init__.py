"""
Notification Module

Multi-tenant notification engine: fan-out of send requests into
per-channel records, delivery through channel adapters, batching into
digests, deduplication and one-click actions.

Usage:
    from notification import NotificationService, SendRequest

    service = NotificationService(session, header, user_resolver)
    service.send(SendRequest(notification_type='invoice_overdue', data={'invoice_id': 'inv-1'}))

The job entry points live in ``notification.jobs`` and are imported
from there directly.
"""

from notification.errors import (
    NotificationError,
    ConfigurationError,
    NotFoundError,
    PreconditionError,
    PermissionDeniedError,
    TokenValidationError,
)

from notification.models import (
    NotificationStatus,
    BatchStatus,
    Priority,
    Frequency,
    DedupStrategy,
    BatchInterval,
    QuietHours,
    DeduplicationConfig,
    SendRequest,
    DeliveryResult,
    BatchDeliveryResult,
    FanOutResult,
    ActionResult,
    BatchActionResult,
)

from notification.channels import (
    NotificationChannel,
    EmailChannel,
    SlackChannel,
    GoogleChatChannel,
    SmsChannel,
    PushChannel,
    ChannelRegistry,
)

from notification.tokens import ActionTokenService, ActionTokenPayload
from notification.preferences import PreferencesService
from notification.service import NotificationService
from notification.delivery import DeliveryService
from notification.batching import BatchAggregator
from notification.actions import ActionService

__all__ = [
    # Errors
    'NotificationError',
    'ConfigurationError',
    'NotFoundError',
    'PreconditionError',
    'PermissionDeniedError',
    'TokenValidationError',
    # Models
    'NotificationStatus',
    'BatchStatus',
    'Priority',
    'Frequency',
    'DedupStrategy',
    'BatchInterval',
    'QuietHours',
    'DeduplicationConfig',
    'SendRequest',
    'DeliveryResult',
    'BatchDeliveryResult',
    'FanOutResult',
    'ActionResult',
    'BatchActionResult',
    # Channels
    'NotificationChannel',
    'EmailChannel',
    'SlackChannel',
    'GoogleChatChannel',
    'SmsChannel',
    'PushChannel',
    'ChannelRegistry',
    # Services
    'ActionTokenService',
    'ActionTokenPayload',
    'PreferencesService',
    'NotificationService',
    'DeliveryService',
    'BatchAggregator',
    'ActionService',
]
