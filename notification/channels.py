#!/usr/bin/env python3
"""
Notification Channels

Every delivery medium implements one contract (``NotificationChannel``):
a name, an address validator and ``send``. The engine never dispatches
on channel names itself; it looks adapters up in an explicitly built
``ChannelRegistry`` that refuses duplicate names.

Usage:
    from notification.channels import ChannelRegistry, EmailChannel, SmsChannel

    registry = ChannelRegistry([EmailChannel(), SmsChannel(config)])
    channel = registry.get('sms')
    result = channel.send(notification, rendered_content, user_resolver)
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List, Iterable, Tuple
import logging
import os
import re
import importlib
import urllib.parse
import uuid

import requests
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import make_msgid

from core.config_loader import ChannelConfig, NotificationConfig
from notification.errors import ConfigurationError
from notification.interfaces import ChannelAddress, UserResolver
from notification.models import RenderedContent, SendResult
from notification.tokens import UNSUBSCRIBE_ACTION, ActionTokenService

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_E164_RE = re.compile(r"^\+[1-9]\d{6,14}$")
_SLACK_ID_RE = re.compile(r"^[UWCGD][A-Z0-9]{2,}$")

SMS_MAX_LENGTH = 1600


def _is_dry_run_mode() -> bool:
    """Check if notification channels should run in dry-run (log-only) mode."""
    return os.environ.get('NOTIFICATION_DRY_RUN', '').lower() in ('true', '1', 'yes')


def _mask_email(email: str) -> str:
    """
    Mask email address for safe logging (PII protection).

    Shows only domain, e.g., "***@example.com"
    """
    if '@' not in email:
        return "***"
    local, domain = email.rsplit('@', 1)
    return f"***@{domain}"


def _mask_address(address: str) -> str:
    """Mask a phone number, chat id or device token for logging."""
    if '@' in address:
        return _mask_email(address)
    if len(address) <= 4:
        return "***"
    return f"***{address[-4:]}"


class NotificationChannel(ABC):
    """
    Abstract base class for all delivery channels.

    ``send`` reports failure through ``SendResult``; it raises only for
    programming errors. Adapters enforce their own I/O timeouts.
    """

    def __init__(self, config: Optional[ChannelConfig] = None):
        self.config = config or ChannelConfig()

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the channel name used in notification records."""
        pass

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        pass

    @abstractmethod
    def send(self, notification, content: RenderedContent, user_resolver: UserResolver) -> SendResult:
        """
        Deliver rendered content for one notification.

        Args:
            notification: Notification record (channel already fixed)
            content: Rendered title/text/html
            user_resolver: Used to look up the destination address

        Returns:
            SendResult with success flag, provider message id or error
        """
        pass

    def get_channel_name(self) -> str:
        return self.name

    @property
    def timeout(self) -> int:
        return self.config.timeout_seconds

    def _resolve_address(
        self,
        notification,
        user_resolver: UserResolver
    ) -> Tuple[Optional[ChannelAddress], Optional[str]]:
        """Look up the user's address; a disabled address is never used."""
        address = user_resolver.get_user_channel_address(notification.user_id, self.name)
        if address is None or not address.address:
            return None, f"No {self.name} address for user {notification.user_id}"
        if address.is_disabled:
            return None, f"{self.name} address disabled"
        return address, None

    def _dry_run(self, address: str, content: RenderedContent) -> SendResult:
        logger.info(f"[DRY RUN] {self.name} to {_mask_address(address)}: {content.title}")
        return SendResult(success=True, message_id=f"dry-run-{uuid.uuid4()}")


class EmailChannel(NotificationChannel):
    """Email channel via SMTP."""

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        unsubscribe_base_url: Optional[str] = None,
        token_service: Optional[ActionTokenService] = None
    ):
        super().__init__(config)
        self.unsubscribe_base_url = unsubscribe_base_url
        self.token_service = token_service

    @property
    def name(self) -> str:
        return 'email'

    def validate_address(self, address: str) -> bool:
        return bool(address) and bool(_EMAIL_RE.match(address))

    def _smtp_settings(self) -> Dict[str, Any]:
        options = self.config.options
        return {
            'host': options.get('smtp_host') or os.environ.get('SMTP_SERVER'),
            'port': int(options.get('smtp_port') or os.environ.get('SMTP_PORT', '587')),
            'username': options.get('smtp_username') or os.environ.get('SMTP_USERNAME'),
            'password': options.get('smtp_password') or os.environ.get('SMTP_PASSWORD'),
            'use_tls': options.get('use_tls', True),
            'from_email': self.config.sender or os.environ.get('FROM_EMAIL', 'noreply@herald.local'),
        }

    def validate_config(self) -> bool:
        settings = self._smtp_settings()
        return bool(settings['host'] and settings['username'] and settings['password'])

    def _resolve_email(self, notification, user_resolver: UserResolver) -> Tuple[Optional[str], Optional[str]]:
        address = user_resolver.get_user_channel_address(notification.user_id, self.name)
        if address is not None:
            if address.is_disabled:
                return None, "email address disabled"
            return address.address, None
        user = user_resolver.get_user(notification.user_id, notification.tenant_id)
        if user is not None and user.email:
            return user.email, None
        return None, f"No email address for user {notification.user_id}"

    def build_message(self, recipient: str, notification, content: RenderedContent) -> MIMEMultipart:
        settings = self._smtp_settings()
        msg = MIMEMultipart('alternative')
        msg['From'] = settings['from_email']
        msg['To'] = recipient
        msg['Subject'] = content.title
        msg['Message-ID'] = make_msgid(domain=settings['from_email'].rsplit('@', 1)[-1])
        msg['X-Notification-Id'] = str(notification.id)
        if self.unsubscribe_base_url and self.token_service is not None:
            token = self.token_service.generate(
                notification_id=str(notification.id),
                tenant_id=notification.tenant_id,
                user_id=notification.user_id,
                action_type=UNSUBSCRIBE_ACTION,
            )
            unsubscribe_url = ActionTokenService.build_action_url(self.unsubscribe_base_url, token)
            msg['List-Unsubscribe'] = f"<{unsubscribe_url}>"
        msg.attach(MIMEText(content.text or '', 'plain', 'utf-8'))
        if content.html:
            msg.attach(MIMEText(content.html, 'html', 'utf-8'))
        return msg

    def send(self, notification, content: RenderedContent, user_resolver: UserResolver) -> SendResult:
        recipient, error = self._resolve_email(notification, user_resolver)
        if recipient is None:
            return SendResult(success=False, error=error)

        if _is_dry_run_mode():
            return self._dry_run(recipient, content)

        if not self.validate_config():
            logger.error("Email not configured - SMTP settings not set")
            return SendResult(success=False, error="email channel not configured")

        settings = self._smtp_settings()
        msg = self.build_message(recipient, notification, content)
        try:
            with smtplib.SMTP(settings['host'], settings['port'], timeout=self.timeout) as server:
                if settings['use_tls']:
                    server.starttls()
                server.login(settings['username'], settings['password'])
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {_mask_email(recipient)}: {e}")
            return SendResult(success=False, error=str(e))

        logger.info(f"Email sent to {_mask_email(recipient)}")
        return SendResult(success=True, message_id=msg['Message-ID'])


class SlackChannel(NotificationChannel):
    """Slack direct messages via the chat.postMessage Web API."""

    DEFAULT_API_URL = "https://slack.com/api/chat.postMessage"

    @property
    def name(self) -> str:
        return 'slack'

    def validate_address(self, address: str) -> bool:
        return bool(address) and bool(_SLACK_ID_RE.match(address))

    def send(self, notification, content: RenderedContent, user_resolver: UserResolver) -> SendResult:
        address, error = self._resolve_address(notification, user_resolver)
        if address is None:
            return SendResult(success=False, error=error)

        if _is_dry_run_mode():
            return self._dry_run(address.address, content)

        token = self.config.api_key or os.environ.get('SLACK_BOT_TOKEN', '')
        if not token:
            logger.error("Slack bot token not configured - SLACK_BOT_TOKEN not set")
            return SendResult(success=False, error="slack channel not configured")

        payload = {
            'channel': address.address,
            'text': f"*{content.title}*\n{content.text}"[:3000],
        }
        try:
            response = requests.post(
                self.config.api_url or self.DEFAULT_API_URL,
                json=payload,
                headers={'Authorization': f"Bearer {token}"},
                timeout=self.timeout
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to send Slack message: {e}")
            return SendResult(success=False, error=str(e))

        if not body.get('ok'):
            error = body.get('error', 'unknown_error')
            logger.error(f"Slack API rejected message: {error}")
            return SendResult(success=False, error=error)

        logger.info(f"Slack message sent to {_mask_address(address.address)}")
        return SendResult(success=True, message_id=body.get('ts'))


class GoogleChatChannel(NotificationChannel):
    """Google Chat via a per-user incoming webhook URL."""

    ALLOWED_HOST = 'chat.googleapis.com'

    @property
    def name(self) -> str:
        return 'gchat'

    def validate_address(self, address: str) -> bool:
        if not address:
            return False
        parsed = urllib.parse.urlparse(address)
        return parsed.scheme == 'https' and parsed.hostname == self.ALLOWED_HOST

    def send(self, notification, content: RenderedContent, user_resolver: UserResolver) -> SendResult:
        address, error = self._resolve_address(notification, user_resolver)
        if address is None:
            return SendResult(success=False, error=error)
        if not self.validate_address(address.address):
            return SendResult(success=False, error="invalid gchat webhook url")

        if _is_dry_run_mode():
            return self._dry_run(address.address, content)

        try:
            response = requests.post(
                address.address,
                json={'text': f"*{content.title}*\n{content.text}"},
                timeout=self.timeout
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to send Google Chat message: {e}")
            return SendResult(success=False, error=str(e))

        logger.info("Google Chat message sent")
        return SendResult(success=True, message_id=body.get('name'))


class SmsChannel(NotificationChannel):
    """SMS via a Twilio-compatible Messages API."""

    DEFAULT_API_URL = "https://api.twilio.com/2010-04-01"

    @property
    def name(self) -> str:
        return 'sms'

    def validate_address(self, address: str) -> bool:
        return bool(address) and bool(_E164_RE.match(address))

    def send(self, notification, content: RenderedContent, user_resolver: UserResolver) -> SendResult:
        address, error = self._resolve_address(notification, user_resolver)
        if address is None:
            return SendResult(success=False, error=error)
        if not self.validate_address(address.address):
            return SendResult(success=False, error="invalid phone number")

        if _is_dry_run_mode():
            return self._dry_run(address.address, content)

        account_sid = self.config.account_id or os.environ.get('TWILIO_ACCOUNT_SID', '')
        auth_token = self.config.api_key or os.environ.get('TWILIO_AUTH_TOKEN', '')
        sender = self.config.sender or os.environ.get('TWILIO_FROM_NUMBER', '')
        if not (account_sid and auth_token and sender):
            logger.error("SMS not configured - Twilio credentials not set")
            return SendResult(success=False, error="sms channel not configured")

        body = content.text if content.text else content.title
        api_url = f"{(self.config.api_url or self.DEFAULT_API_URL).rstrip('/')}/Accounts/{account_sid}/Messages.json"
        try:
            response = requests.post(
                api_url,
                data={'From': sender, 'To': address.address, 'Body': body[:SMS_MAX_LENGTH]},
                auth=(account_sid, auth_token),
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to send SMS to {_mask_address(address.address)}: {e}")
            return SendResult(success=False, error=str(e))

        logger.info(f"SMS sent to {_mask_address(address.address)}")
        return SendResult(success=True, message_id=result.get('sid'))


class PushChannel(NotificationChannel):
    """Mobile push via the FCM HTTP v1 API."""

    DEFAULT_API_URL = "https://fcm.googleapis.com/v1/projects/{project}/messages:send"

    @property
    def name(self) -> str:
        return 'mobile_push'

    def validate_address(self, address: str) -> bool:
        return bool(address) and 20 <= len(address) <= 4096 and not any(c.isspace() for c in address)

    def send(self, notification, content: RenderedContent, user_resolver: UserResolver) -> SendResult:
        address, error = self._resolve_address(notification, user_resolver)
        if address is None:
            return SendResult(success=False, error=error)

        if _is_dry_run_mode():
            return self._dry_run(address.address, content)

        project = self.config.account_id or os.environ.get('FCM_PROJECT_ID', '')
        access_token = self.config.api_key or os.environ.get('FCM_ACCESS_TOKEN', '')
        if not (project and access_token):
            logger.error("Push not configured - FCM project or access token not set")
            return SendResult(success=False, error="mobile_push channel not configured")

        message = {
            'message': {
                'token': address.address,
                'notification': {'title': content.title, 'body': (content.text or '')[:1000]},
                'data': {
                    'notification_id': str(notification.id),
                    'notification_type_id': str(notification.notification_type_id),
                },
            }
        }
        api_url = (self.config.api_url or self.DEFAULT_API_URL).format(project=project)
        try:
            response = requests.post(
                api_url,
                json=message,
                headers={'Authorization': f"Bearer {access_token}"},
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to send push to {_mask_address(address.address)}: {e}")
            return SendResult(success=False, error=str(e))

        logger.info(f"Push sent to {_mask_address(address.address)}")
        return SendResult(success=True, message_id=result.get('name'))


BUILTIN_CHANNELS = {
    'email': EmailChannel,
    'slack': SlackChannel,
    'gchat': GoogleChatChannel,
    'sms': SmsChannel,
    'mobile_push': PushChannel,
}


def load_channel_class(module_path: str) -> type:
    """
    Load a channel class from an installed module ("my_package.channels:CustomChannel").

    Raises:
        ConfigurationError: If the path cannot be imported or is not a channel class
    """
    module_name, _, class_name = module_path.partition(':')
    if not module_name or not class_name:
        raise ConfigurationError(f"Channel path must be 'module:Class', got '{module_path}'")
    try:
        module = importlib.import_module(module_name)
        channel_class = getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load channel '{module_path}': {e}") from e

    if not (isinstance(channel_class, type) and issubclass(channel_class, NotificationChannel)):
        raise ConfigurationError(f"{module_path} is not a NotificationChannel subclass")
    return channel_class


class ChannelRegistry:
    """
    Name -> adapter lookup with at most one adapter per name.

    Built once at startup and passed to the services that deliver.
    """

    def __init__(self, channels: Iterable[NotificationChannel] = ()):
        self._channels: Dict[str, NotificationChannel] = {}
        for channel in channels:
            self.register(channel)

    def register(self, channel: NotificationChannel) -> None:
        """
        Raises:
            ConfigurationError: If an adapter with the same name is registered
        """
        name = channel.name
        if name in self._channels:
            raise ConfigurationError(f"Channel '{name}' is already registered")
        self._channels[name] = channel
        logger.debug(f"Registered channel: {name}")

    def get(self, name: str) -> Optional[NotificationChannel]:
        return self._channels.get(name)

    def require(self, name: str) -> NotificationChannel:
        channel = self._channels.get(name)
        if channel is None:
            raise ConfigurationError(
                f"Unknown channel: {name}. Available: {', '.join(self._channels) or 'none'}"
            )
        return channel

    def names(self) -> List[str]:
        return list(self._channels)

    def __contains__(self, name: str) -> bool:
        return name in self._channels

    def __len__(self) -> int:
        return len(self._channels)

    @classmethod
    def from_config(
        cls,
        config: NotificationConfig,
        token_service: Optional[ActionTokenService] = None
    ) -> "ChannelRegistry":
        """
        Build the registry from configuration.

        Built-in channels are registered when listed in ``config.channels``
        and enabled; ``custom_channels`` adds adapters by import path.
        The token service signs the email unsubscribe link.
        """
        channels: List[NotificationChannel] = []
        for name, channel_config in config.channels.items():
            if not channel_config.enabled:
                continue
            channel_class = BUILTIN_CHANNELS.get(name)
            if channel_class is None:
                raise ConfigurationError(
                    f"Unknown channel '{name}' in configuration. "
                    f"Built-in: {', '.join(BUILTIN_CHANNELS)}"
                )
            if channel_class is EmailChannel:
                channels.append(EmailChannel(
                    channel_config,
                    unsubscribe_base_url=config.base_url,
                    token_service=token_service,
                ))
            else:
                channels.append(channel_class(channel_config))

        for module_path in config.custom_channels:
            channel_class = load_channel_class(module_path)
            channel = channel_class()
            channels.append(channel)
            logger.info(f"Loaded custom channel '{channel.name}' from {module_path}")

        return cls(channels)
