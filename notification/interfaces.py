"""
Contracts for the collaborators the engine consumes.

UserResolver adapts the host application's tenant/user/permission model
(read-only). TemplateProvider turns a template plus data into rendered
content. Both are injected; the engine never reaches past them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from notification.models import RenderResult


@dataclass
class NotificationUser:
    id: str
    tenant_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    timezone: Optional[str] = None
    locale: Optional[str] = None
    is_active: bool = True


@dataclass
class ChannelAddress:
    """Destination of one user on one channel (phone number, chat id, device token)."""
    user_id: str
    channel: str
    address: str
    tenant_id: Optional[str] = None
    id: Optional[str] = None
    is_verified: bool = False
    is_disabled: bool = False
    bounce_count: int = 0
    complaint_count: int = 0
    verified_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationDataContext:
    """What a rendered message would reveal, handed to the data-access checker."""
    notification_type: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


DataAccessChecker = Callable[[NotificationDataContext], bool]


@dataclass
class Template:
    key: str
    channel: str
    locale: Optional[str] = None
    subject: Optional[str] = None
    text: Optional[str] = None
    html: Optional[str] = None


@dataclass
class RenderOptions:
    locale: Optional[str] = None
    user: Optional[NotificationUser] = None
    check_data_access: Optional[DataAccessChecker] = None


class UserResolver(ABC):
    """Read-only view of users, tenants and permissions."""

    @abstractmethod
    def get_user(self, user_id: str, tenant_id: str) -> Optional[NotificationUser]:
        pass

    def user_exists(self, user_id: str, tenant_id: str) -> bool:
        return self.get_user(user_id, tenant_id) is not None

    @abstractmethod
    def tenant_active(self, tenant_id: str) -> bool:
        pass

    def get_user_preferences(self, user_id: str, type_id: str) -> Optional[Dict[str, Any]]:
        """Host-side preference overrides; the engine's own table is authoritative."""
        return None

    @abstractmethod
    def get_subscribers(self, tenant_id: str, type_id: str) -> List[str]:
        pass

    def list_user_ids(self, tenant_id: str) -> List[str]:
        """Active users of a tenant, used by the auto-subscription refresh."""
        return []

    @abstractmethod
    def get_user_timezone(self, user_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def get_user_locale(self, user_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def get_user_permissions(self, user_id: str, tenant_id: str) -> List[str]:
        pass

    def user_has_permission(self, user_id: str, tenant_id: str, permission: str) -> bool:
        return permission in self.get_user_permissions(user_id, tenant_id)

    @abstractmethod
    def user_matches_conditions(self, user_id: str, conditions: Dict[str, Any]) -> bool:
        pass

    def create_data_access_checker(self, user_id: str, tenant_id: str) -> DataAccessChecker:
        """Predicate the template provider uses to veto protected data."""
        return lambda context: True

    @abstractmethod
    def get_user_channel_address(self, user_id: str, channel: str) -> Optional[ChannelAddress]:
        pass


class TemplateProvider(ABC):
    """Looks up and renders templates keyed by (template key, channel, locale)."""

    @abstractmethod
    def get_template(self, type_key: str, channel: str, locale: Optional[str] = None) -> Optional[Template]:
        pass

    @abstractmethod
    def render_template(self, template: Template, data: Dict[str, Any], options: RenderOptions) -> RenderResult:
        pass

    @abstractmethod
    def get_fallback_template(self, channel: str) -> Optional[Template]:
        pass

    def template_exists(self, type_key: str, channel: str) -> bool:
        return self.get_template(type_key, channel) is not None
