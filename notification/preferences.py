#!/usr/bin/env python3
"""
Preferences Service

Per-user, per-type subscription settings. A user with no row gets the
type's defaults; the first write materializes a row seeded from them.

Usage:
    from notification.preferences import PreferencesService

    preferences = PreferencesService(session, header, user_resolver)
    preferences.subscribe(user_id, type_id, channels=['email'])
    effective = preferences.get_effective_preference(user_id, notification_type)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from core.context import RequestHeader
from database.models import NotificationType, UserNotificationPreference
from database.repositories import NotificationTypeRepository, PreferenceRepository
from notification.errors import NotFoundError, PermissionDeniedError, PreconditionError
from notification.interfaces import UserResolver
from notification.models import BatchInterval, Frequency, QuietHours, SubscriptionSource
from notification.scheduling import resolve_timezone

logger = logging.getLogger(__name__)


def _minutes(hhmm: str) -> int:
    hours, _, minutes = hhmm.partition(':')
    return int(hours) * 60 + int(minutes)


def is_in_quiet_hours(
    quiet_hours: Any,
    user_timezone: Optional[str] = None,
    now: Optional[datetime] = None
) -> bool:
    """
    Whether ``now`` falls inside the quiet window, in the user's local time.

    Both ends are inclusive at minute resolution. A window whose start is
    after its end wraps past midnight: 22:00-06:00 covers 23:30 and 03:00.
    The window's own timezone wins over ``user_timezone``.
    """
    window = QuietHours.parse(quiet_hours)
    if window is None:
        return False

    zone = resolve_timezone(window.timezone or user_timezone)
    local = (now or datetime.now(timezone.utc)).astimezone(zone)
    current = local.hour * 60 + local.minute
    start, end = _minutes(window.start), _minutes(window.end)

    if start > end:
        return current >= start or current <= end
    return start <= current <= end


def quiet_hours_end(
    quiet_hours: Any,
    user_timezone: Optional[str] = None,
    now: Optional[datetime] = None
) -> Optional[datetime]:
    """UTC instant at which the quiet window containing ``now`` ends, or None if not in it."""
    now = now or datetime.now(timezone.utc)
    if not is_in_quiet_hours(quiet_hours, user_timezone, now):
        return None

    window = QuietHours.parse(quiet_hours)
    zone = resolve_timezone(window.timezone or user_timezone)
    local = now.astimezone(zone)
    end = _minutes(window.end)
    current = local.hour * 60 + local.minute

    end_date = local.date()
    if current > end:
        # Wrapped window, still before midnight
        end_date = end_date + timedelta(days=1)
    local_end = datetime(
        end_date.year, end_date.month, end_date.day, end // 60, end % 60, tzinfo=zone
    )
    return local_end.astimezone(timezone.utc)


@dataclass
class EffectivePreference:
    """Preference row merged over type defaults."""
    user_id: str
    notification_type_id: str
    enabled: bool
    channels: List[str] = field(default_factory=list)
    frequency: str = Frequency.IMMEDIATE.value
    batch_interval: Optional[BatchInterval] = None
    quiet_hours: Optional[QuietHours] = None
    timezone: Optional[str] = None
    source: Optional[str] = None
    is_default: bool = True

    @property
    def is_batched(self) -> bool:
        return (
            self.frequency == Frequency.BATCHED.value
            and self.batch_interval is not None
            and not self.batch_interval.is_immediate
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'notification_type_id': self.notification_type_id,
            'enabled': self.enabled,
            'channels': list(self.channels),
            'frequency': self.frequency,
            'batch_interval': self.batch_interval.to_dict() if self.batch_interval else None,
            'quiet_hours': self.quiet_hours.to_dict() if self.quiet_hours else None,
            'timezone': self.timezone,
            'source': self.source,
            'is_default': self.is_default,
        }


class PreferencesService:
    def __init__(
        self,
        db: Session,
        header: RequestHeader,
        user_resolver: UserResolver,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db
        self.header = header
        self.user_resolver = user_resolver
        self.types = NotificationTypeRepository(db, header)
        self.preferences = PreferenceRepository(db, header)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _require_type(self, type_id: str) -> NotificationType:
        notification_type = self.types.get(type_id)
        if notification_type is None:
            raise NotFoundError(f"Notification type {type_id} not found")
        return notification_type

    def get_preference(self, user_id: str, type_id: str) -> Optional[UserNotificationPreference]:
        return self.preferences.get(user_id, type_id)

    def get_effective_preference(
        self,
        user_id: str,
        notification_type: NotificationType
    ) -> EffectivePreference:
        """
        Resolve the settings that apply to one user for one type.

        Precedence: stored preference row, then host-supplied overrides
        from the user resolver, then the type's defaults. Unset fields of
        a row fall through to the type defaults individually.
        """
        row = self.preferences.get(user_id, notification_type.id)
        if row is not None:
            values = {
                'enabled': row.enabled,
                'channels': row.channels,
                'frequency': row.frequency,
                'batch_interval': row.batch_interval,
                'quiet_hours': row.quiet_hours,
                'timezone': row.timezone,
            }
            source = row.source
        else:
            values = self.user_resolver.get_user_preferences(user_id, notification_type.id) or {}
            source = None

        frequency = values.get('frequency') or notification_type.default_frequency or Frequency.IMMEDIATE.value
        interval_raw = values.get('batch_interval') or notification_type.default_batch_interval
        channels = values.get('channels')
        if not channels:
            channels = notification_type.default_channels or []
        enabled = values.get('enabled')

        return EffectivePreference(
            user_id=user_id,
            notification_type_id=notification_type.id,
            enabled=True if enabled is None else bool(enabled),
            channels=list(dict.fromkeys(channels)),
            frequency=frequency,
            batch_interval=BatchInterval.parse(interval_raw),
            quiet_hours=QuietHours.parse(values.get('quiet_hours')),
            timezone=values.get('timezone'),
            source=source,
            is_default=row is None,
        )

    def list_preferences(self, user_id: str) -> List[EffectivePreference]:
        return [
            self.get_effective_preference(user_id, t)
            for t in self.types.list(active_only=True)
        ]

    def _materialize(
        self,
        user_id: str,
        notification_type: NotificationType,
        source: str = SubscriptionSource.MANUAL.value
    ) -> UserNotificationPreference:
        row = self.preferences.get(user_id, notification_type.id)
        if row is not None:
            return row
        row = UserNotificationPreference(
            user_id=user_id,
            notification_type_id=notification_type.id,
            enabled=True,
            channels=list(notification_type.default_channels or []),
            frequency=notification_type.default_frequency,
            batch_interval=notification_type.default_batch_interval,
            source=source,
        )
        self.preferences.add(row)
        logger.info(f"Created {source} preference for user {user_id} on type {notification_type.name}")
        return row

    def update_preference(self, user_id: str, type_id: str, **changes: Any) -> UserNotificationPreference:
        """
        Apply a partial update, creating the row from type defaults first.

        Accepted keys: enabled, channels, frequency, batch_interval,
        quiet_hours, timezone. Invalid values raise ValueError.
        """
        notification_type = self._require_type(type_id)
        allowed = {'enabled', 'channels', 'frequency', 'batch_interval', 'quiet_hours', 'timezone'}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown preference fields: {', '.join(sorted(unknown))}")

        if 'frequency' in changes and changes['frequency'] is not None:
            changes['frequency'] = Frequency(changes['frequency']).value
        if 'batch_interval' in changes:
            parsed = BatchInterval.parse(changes['batch_interval'])
            changes['batch_interval'] = parsed.to_dict() if parsed else None
        if 'quiet_hours' in changes:
            parsed_quiet = QuietHours.parse(changes['quiet_hours'])
            changes['quiet_hours'] = parsed_quiet.to_dict() if parsed_quiet else None
        if changes.get('channels') is not None:
            changes['channels'] = list(dict.fromkeys(changes['channels']))

        row = self._materialize(user_id, notification_type)
        for key, value in changes.items():
            setattr(row, key, value)
        # A user edit takes the row out of auto-subscription management
        row.source = SubscriptionSource.MANUAL.value
        self.db.flush()
        return row

    def check_subscription_allowed(self, user_id: str, notification_type: NotificationType) -> None:
        """
        Raises:
            PreconditionError: Type inactive or subscription conditions unmet
            PermissionDeniedError: Required permission missing
        """
        if not notification_type.is_active:
            raise PreconditionError(f"Notification type {notification_type.name} is not active")

        if notification_type.required_permission and not self.user_resolver.user_has_permission(
            user_id, self.header.tenant_id, notification_type.required_permission
        ):
            raise PermissionDeniedError(
                f"Permission '{notification_type.required_permission}' required "
                f"to subscribe to {notification_type.name}"
            )

        conditions = notification_type.subscription_conditions
        if conditions and not self.user_resolver.user_matches_conditions(user_id, conditions):
            raise PreconditionError(
                f"User {user_id} does not meet the subscription conditions of {notification_type.name}"
            )

    def subscribe(
        self,
        user_id: str,
        type_id: str,
        channels: Optional[List[str]] = None
    ) -> UserNotificationPreference:
        notification_type = self._require_type(type_id)
        self.check_subscription_allowed(user_id, notification_type)

        row = self._materialize(user_id, notification_type)
        row.enabled = True
        row.source = SubscriptionSource.MANUAL.value
        if channels:
            row.channels = list(dict.fromkeys(channels))
        self.db.flush()
        logger.info(f"User {user_id} subscribed to {notification_type.name}")
        return row

    def unsubscribe(self, user_id: str, type_id: str) -> UserNotificationPreference:
        """Disable the type for the user; the row is kept so the opt-out sticks."""
        notification_type = self._require_type(type_id)
        row = self._materialize(user_id, notification_type)
        row.enabled = False
        row.source = SubscriptionSource.MANUAL.value
        self.db.flush()
        logger.info(f"User {user_id} unsubscribed from {notification_type.name}")
        return row

    def get_subscribers(self, type_id: str) -> List[str]:
        return self.user_resolver.get_subscribers(self.header.tenant_id, type_id)

    def _eligible_for_auto(self, user_id: str, notification_type: NotificationType) -> bool:
        user = self.user_resolver.get_user(user_id, self.header.tenant_id)
        if user is None or not user.is_active or user.tenant_id != self.header.tenant_id:
            return False
        try:
            self.check_subscription_allowed(user_id, notification_type)
        except (PreconditionError, PermissionDeniedError):
            return False
        return True

    def refresh_auto_subscriptions(
        self,
        type_id: str,
        user_ids: Optional[List[str]] = None
    ) -> Dict[str, int]:
        """
        Reconcile ``auto`` preference rows with the type's subscription rules.

        Users who qualify get an enabled ``auto`` row; ``auto`` rows of users
        who no longer qualify are disabled. ``manual`` rows are left alone.

        Returns:
            Counts: {'subscribed', 'unsubscribed', 'unchanged'}
        """
        counts = {'subscribed': 0, 'unsubscribed': 0, 'unchanged': 0}
        notification_type = self._require_type(type_id)
        if not notification_type.auto_subscribe:
            logger.info(f"Type {notification_type.name} has auto-subscribe disabled, nothing to refresh")
            return counts

        if user_ids is None:
            user_ids = self.user_resolver.list_user_ids(self.header.tenant_id)

        for user_id in dict.fromkeys(user_ids):
            row = self.preferences.get(user_id, notification_type.id)
            if row is not None and row.source == SubscriptionSource.MANUAL.value:
                counts['unchanged'] += 1
                continue

            eligible = self._eligible_for_auto(user_id, notification_type)
            if eligible and row is None:
                self._materialize(user_id, notification_type, source=SubscriptionSource.AUTO.value)
                counts['subscribed'] += 1
            elif eligible and not row.enabled:
                row.enabled = True
                counts['subscribed'] += 1
            elif not eligible and row is not None and row.enabled:
                row.enabled = False
                counts['unsubscribed'] += 1
            else:
                counts['unchanged'] += 1

        self.db.flush()
        logger.info(
            f"Auto-subscription refresh for {notification_type.name}: "
            f"{counts['subscribed']} subscribed, {counts['unsubscribed']} unsubscribed"
        )
        return counts
