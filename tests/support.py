"""
Shared fixtures for the unit tests.

Tests run against in-memory SQLite (``build_engine("sqlite://")``), a
fixed clock and a recording channel adapter, so no network or
PostgreSQL is needed.
"""

import threading
import unittest
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy.orm import sessionmaker

from core.app_context import AppContext
from core.config_loader import AppConfig, NotificationConfig
from core.context import RequestHeader
from database.database import build_engine
from database.models import (
    Base,
    Notification,
    NotificationType,
    Tenant,
    User,
    UserChannelAddress,
    UserNotificationPreference,
    new_id,
)
from notification.channels import ChannelRegistry, NotificationChannel
from notification.models import SendResult
from notification.templates import FilesystemTemplateProvider
from notification.tokens import ActionTokenService

TENANT_ID = "tenant-1"
OTHER_TENANT_ID = "tenant-2"
USER_ID = "user-1"
TOKEN_SECRET = "test-secret-that-is-long-enough-for-hmac"

# Monday
FIXED_NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingChannel(NotificationChannel):
    """Channel adapter that records what it would have sent."""

    def __init__(self, channel_name: str = "slack", fail: bool = False, raises: Optional[Exception] = None):
        super().__init__()
        self.channel_name = channel_name
        self.fail = fail
        self.raises = raises
        self.sent = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.channel_name

    def validate_address(self, address: str) -> bool:
        return bool(address) and not address.startswith("bad")

    def send(self, notification, content, user_resolver) -> SendResult:
        address, error = self._resolve_address(notification, user_resolver)
        if address is None:
            return SendResult(success=False, error=error)
        if self.raises is not None:
            raise self.raises
        if self.fail:
            return SendResult(success=False, error="provider unavailable")
        with self._lock:
            self.sent.append((notification.id, address.address, content))
            return SendResult(success=True, message_id=f"{self.channel_name}-{len(self.sent)}")


def make_engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    return engine


def build_context(
    clock: FixedClock,
    channels: Iterable[NotificationChannel] = (),
    template_dir: Optional[str] = None,
    token_secret: Optional[str] = TOKEN_SECRET,
    handlers=None,
    **notification_settings
) -> AppContext:
    config = AppConfig(notifications=NotificationConfig(
        action_token_secret=token_secret,
        template_dir=template_dir,
        use_async_queue=False,
        base_url="https://herald.example.com",
        **notification_settings
    ))
    token_service = ActionTokenService(token_secret, clock=clock) if token_secret else None
    return AppContext(
        config=config,
        channel_registry=ChannelRegistry(channels),
        template_provider=FilesystemTemplateProvider(template_dir),
        token_service=token_service,
        action_handlers=dict(handlers or {}),
        clock=clock,
    )


class DatabaseTestCase(unittest.TestCase):
    """TestCase with a fresh in-memory database, a fixed clock and one tenant."""

    def setUp(self):
        self.engine = make_engine()
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False)
        self.session = self.session_factory()
        self.clock = FixedClock()
        self.header = RequestHeader(tenant_id=TENANT_ID, user_id=USER_ID)
        self.channel = RecordingChannel()
        self.context = build_context(self.clock, channels=[self.channel])
        self.add_tenant(TENANT_ID)

    def tearDown(self):
        self.session.close()
        self.engine.dispose()

    def services(self, header: Optional[RequestHeader] = None):
        return self.context.services(self.session, header or self.header)

    def commit(self):
        """Commit fixtures and release the shared connection for another session."""
        self.session.commit()
        self.session.close()

    def add_tenant(self, tenant_id: str, is_active: bool = True) -> Tenant:
        tenant = Tenant(id=tenant_id, name=f"Tenant {tenant_id}", is_active=is_active)
        self.session.add(tenant)
        self.session.flush()
        return tenant

    def add_user(self, user_id: str = USER_ID, tenant_id: str = TENANT_ID, **fields) -> User:
        fields.setdefault("email", f"{user_id}@example.com")
        fields.setdefault("display_name", user_id.replace("-", " ").title())
        fields.setdefault("permissions", [])
        user = User(id=user_id, tenant_id=tenant_id, **fields)
        self.session.add(user)
        self.session.flush()
        return user

    def add_type(self, name: str = "invoice_overdue", tenant_id: str = TENANT_ID, **fields) -> NotificationType:
        fields.setdefault("default_channels", ["slack"])
        fields.setdefault("template_config", {})
        notification_type = NotificationType(
            id=new_id(),
            tenant_id=tenant_id,
            name=name,
            created_at=self.clock(),
            updated_at=self.clock(),
            **fields
        )
        self.session.add(notification_type)
        self.session.flush()
        return notification_type

    def add_address(
        self,
        user_id: str = USER_ID,
        channel: str = "slack",
        address: str = "U0001ABC",
        tenant_id: str = TENANT_ID,
        **fields
    ) -> UserChannelAddress:
        row = UserChannelAddress(
            id=new_id(),
            tenant_id=tenant_id,
            user_id=user_id,
            channel=channel,
            address=address,
            **fields
        )
        self.session.add(row)
        self.session.flush()
        return row

    def add_preference(self, user_id: str, notification_type: NotificationType, **fields) -> UserNotificationPreference:
        fields.setdefault("enabled", True)
        row = UserNotificationPreference(
            id=new_id(),
            tenant_id=notification_type.tenant_id,
            user_id=user_id,
            notification_type_id=notification_type.id,
            **fields
        )
        self.session.add(row)
        self.session.flush()
        return row

    def add_notification(
        self,
        notification_type: NotificationType,
        user_id: str = USER_ID,
        channel: str = "slack",
        **fields
    ) -> Notification:
        fields.setdefault("status", "pending")
        fields.setdefault("title", "Invoice overdue")
        fields.setdefault("payload", {})
        fields.setdefault("delivery_attempts", [])
        fields.setdefault("created_at", self.clock())
        fields.setdefault("updated_at", self.clock())
        notification = Notification(
            id=new_id(),
            tenant_id=notification_type.tenant_id,
            user_id=user_id,
            notification_type_id=notification_type.id,
            channel=channel,
            **fields
        )
        self.session.add(notification)
        self.session.flush()
        return notification
