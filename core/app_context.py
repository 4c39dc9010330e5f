import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from core.config_loader import AppConfig, NotificationConfig
from core.context import RequestHeader
from notification.actions import ActionHandler, ActionService, load_action_handler
from notification.addresses import ChannelAddressService
from notification.batching import BatchAggregator
from notification.catalog import NotificationTypeService
from notification.channels import ChannelRegistry
from notification.delivery import DeliveryService
from notification.interfaces import TemplateProvider, UserResolver
from notification.preferences import PreferencesService
from notification.resolvers import DatabaseUserResolver
from notification.service import NotificationService
from notification.templates import FilesystemTemplateProvider
from notification.tokens import ActionTokenService

logger = logging.getLogger(__name__)

UserResolverFactory = Callable[[Session, RequestHeader], UserResolver]


@dataclass
class TenantServices:
    """Services bound to one session and one tenant."""
    header: RequestHeader
    user_resolver: UserResolver
    preferences: PreferencesService
    notifications: NotificationService
    delivery: DeliveryService
    batching: BatchAggregator
    actions: ActionService
    addresses: ChannelAddressService
    catalog: NotificationTypeService


@dataclass
class AppContext:
    """Application context container that holds all wired dependencies.

    Holds the process-wide pieces (config, channel registry, templates,
    token service, action handlers). Per-request services are built by
    ``services()`` on a session obtained from notification_uow() or the
    web dependency.
    """
    config: AppConfig
    channel_registry: ChannelRegistry
    template_provider: TemplateProvider
    token_service: Optional[ActionTokenService] = None
    action_handlers: Dict[str, ActionHandler] = field(default_factory=dict)
    user_resolver_factory: UserResolverFactory = DatabaseUserResolver
    clock: Optional[Callable[[], datetime]] = None

    @classmethod
    def build(cls, config: AppConfig) -> "AppContext":
        """Build an AppContext from config.

        Raises:
            ConfigurationError: Bad channel setup, unloadable handlers or
                an undersized token secret
        """
        notification_config = config.notifications
        token_service = cls._build_token_service(notification_config)
        channel_registry = ChannelRegistry.from_config(notification_config, token_service=token_service)
        template_provider = FilesystemTemplateProvider(notification_config.template_dir)
        action_handlers = {
            action_type: load_action_handler(path)
            for action_type, path in notification_config.action_handlers.items()
        }

        logger.info(
            f"Herald context built: channels={channel_registry.names()}, "
            f"action tokens {'enabled' if token_service else 'disabled'}"
        )
        return cls(
            config=config,
            channel_registry=channel_registry,
            template_provider=template_provider,
            token_service=token_service,
            action_handlers=action_handlers,
        )

    @staticmethod
    def _build_token_service(config: NotificationConfig) -> Optional[ActionTokenService]:
        """Token service, or None when no secret is configured."""
        if not config.action_token_secret:
            logger.warning("ACTION_TOKEN_SECRET not set - one-click action links disabled")
            return None
        return ActionTokenService(
            config.action_token_secret,
            ttl=timedelta(days=config.action_token_ttl_days),
        )

    def services(self, session: Session, header: RequestHeader) -> TenantServices:
        notification_config = self.config.notifications
        user_resolver = self.user_resolver_factory(session, header)
        preferences = PreferencesService(session, header, user_resolver, clock=self.clock)
        delivery = DeliveryService(
            session,
            header,
            self.channel_registry,
            self.template_provider,
            user_resolver,
            clock=self.clock,
            concurrency=notification_config.delivery_concurrency,
            max_attempts=notification_config.max_delivery_attempts,
        )
        return TenantServices(
            header=header,
            user_resolver=user_resolver,
            preferences=preferences,
            notifications=NotificationService(
                session,
                header,
                user_resolver,
                preferences=preferences,
                token_service=self.token_service,
                base_url=notification_config.base_url,
                clock=self.clock,
            ),
            delivery=delivery,
            batching=BatchAggregator(session, header, delivery, clock=self.clock),
            actions=ActionService(
                session,
                header,
                handlers=self.action_handlers,
                token_service=self.token_service,
                preferences=preferences,
                clock=self.clock,
            ),
            addresses=ChannelAddressService(
                session,
                header,
                self.channel_registry,
                clock=self.clock,
                bounce_disable_threshold=notification_config.bounce_disable_threshold,
                complaint_disable_threshold=notification_config.complaint_disable_threshold,
            ),
            catalog=NotificationTypeService(session, header, clock=self.clock),
        )
