"""
Value types shared across the notification engine.

Enums mirror the string values stored in the database. Dataclasses here
are plain values: batch interval policies, quiet hours, deduplication
policies, and the result objects returned by the services.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class NotificationStatus(str, Enum):
    PENDING = "pending"
    BATCHED = "batched"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    SKIPPED = "skipped"
    READ = "read"


# Only these are eligible for (re)processing; everything else is terminal
DELIVERABLE_STATUSES = frozenset({NotificationStatus.PENDING.value, NotificationStatus.BATCHED.value})


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    PARTIALLY_SENT = "partially_sent"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


PRIORITY_RANK = {
    Priority.CRITICAL.value: 0,
    Priority.HIGH.value: 1,
    Priority.NORMAL.value: 2,
    Priority.LOW.value: 3,
}


class Frequency(str, Enum):
    IMMEDIATE = "immediate"
    BATCHED = "batched"


class DedupStrategy(str, Enum):
    OVERWRITE = "overwrite"
    CREATE_NEW = "create_new"
    IGNORE = "ignore"


class ActionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class SubscriptionSource(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


CHANNEL_NAMES = ('email', 'slack', 'gchat', 'sms', 'mobile_push')


def _parse_datetime(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class BatchInterval:
    """
    Batching policy for a notification type or user preference.

    Accepted forms (``BatchInterval.parse``):
        "immediate", "end_of_day", "minutes:15", "hours:2",
        "custom:2026-03-01T09:00:00Z",
        {"type": "minutes", "value": 15}, {"minutes": 15},
        {"type": "custom", "scheduled_for": "..."}
    """
    kind: str
    value: Optional[int] = None
    scheduled_for: Optional[datetime] = None

    KINDS = ('immediate', 'minutes', 'hours', 'end_of_day', 'custom')

    def __post_init__(self):
        if self.kind not in self.KINDS:
            raise ValueError(f"Unknown batch interval type: {self.kind}")
        if self.kind in ('minutes', 'hours'):
            if not isinstance(self.value, int) or isinstance(self.value, bool) or self.value <= 0:
                raise ValueError(f"Batch interval '{self.kind}' requires a positive integer value")
        if self.kind == 'custom' and self.scheduled_for is None:
            raise ValueError("Batch interval 'custom' requires a timestamp")

    @property
    def is_immediate(self) -> bool:
        return self.kind == 'immediate'

    @classmethod
    def parse(cls, raw: Any) -> Optional["BatchInterval"]:
        if raw is None or raw == {} or raw == "":
            return None
        if isinstance(raw, BatchInterval):
            return raw
        if isinstance(raw, str):
            kind, _, arg = raw.partition(':')
            kind = kind.strip()
            if kind in ('minutes', 'hours'):
                return cls(kind=kind, value=int(arg))
            if kind == 'custom':
                return cls(kind=kind, scheduled_for=_parse_datetime(arg.strip()))
            return cls(kind=kind)
        if isinstance(raw, dict):
            kind = raw.get('type')
            if kind is None:
                # Shorthand: {"minutes": 15} / {"hours": 1}
                for candidate in ('minutes', 'hours'):
                    if candidate in raw:
                        return cls(kind=candidate, value=int(raw[candidate]))
                raise ValueError(f"Cannot parse batch interval: {raw}")
            if kind in ('minutes', 'hours'):
                return cls(kind=kind, value=int(raw.get('value')))
            if kind == 'custom':
                stamp = raw.get('scheduled_for') or raw.get('scheduledFor')
                return cls(kind=kind, scheduled_for=_parse_datetime(stamp) if stamp else None)
            return cls(kind=kind)
        raise ValueError(f"Cannot parse batch interval: {raw!r}")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'type': self.kind}
        if self.value is not None:
            data['value'] = self.value
        if self.scheduled_for is not None:
            data['scheduled_for'] = self.scheduled_for.isoformat()
        return data


@dataclass(frozen=True)
class QuietHours:
    """Local HH:mm window during which immediate delivery is deferred."""
    start: str
    end: str
    timezone: Optional[str] = None

    def __post_init__(self):
        for label, value in (('start', self.start), ('end', self.end)):
            hours, _, minutes = str(value).partition(':')
            if not (hours.isdigit() and minutes.isdigit()
                    and 0 <= int(hours) <= 23 and 0 <= int(minutes) <= 59):
                raise ValueError(f"Quiet hours {label} must be HH:mm, got {value!r}")

    @classmethod
    def parse(cls, raw: Any) -> Optional["QuietHours"]:
        if not raw:
            return None
        if isinstance(raw, QuietHours):
            return raw
        return cls(start=raw['start'], end=raw['end'], timezone=raw.get('timezone'))

    def to_dict(self) -> Dict[str, Any]:
        return {'start': self.start, 'end': self.end, 'timezone': self.timezone}


@dataclass(frozen=True)
class DeduplicationConfig:
    strategy: DedupStrategy
    event_key_fields: List[str] = field(default_factory=list)
    update_window_minutes: int = 60

    @classmethod
    def parse(cls, raw: Any) -> Optional["DeduplicationConfig"]:
        if not raw:
            return None
        if isinstance(raw, DeduplicationConfig):
            return raw
        return cls(
            strategy=DedupStrategy(raw.get('strategy', DedupStrategy.CREATE_NEW.value)),
            event_key_fields=list(raw.get('event_key_fields') or raw.get('eventKeyFields') or []),
            update_window_minutes=int(
                raw.get('update_window_minutes', raw.get('updateWindowMinutes', 60))
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'strategy': self.strategy.value,
            'event_key_fields': list(self.event_key_fields),
            'update_window_minutes': self.update_window_minutes,
        }


# Applied when a request carries an explicit event key but the type has no policy,
# so a retried request is a no-op rather than a second row.
DEFAULT_DEDUP_CONFIG = DeduplicationConfig(strategy=DedupStrategy.IGNORE, update_window_minutes=24 * 60)


@dataclass
class SendRequest:
    """A logical "notify user(s) about event X" request."""
    notification_type: str
    data: Dict[str, Any] = field(default_factory=dict)
    user_ids: Optional[List[str]] = None
    event_key: Optional[str] = None
    idempotency_key: Optional[str] = None
    priority: Optional[str] = None
    expires_at: Optional[datetime] = None
    locale: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.expires_at is not None:
            data['expires_at'] = self.expires_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SendRequest":
        values = dict(data)
        if values.get('expires_at'):
            values['expires_at'] = _parse_datetime(values['expires_at'])
        return cls(**values)


@dataclass
class RenderedContent:
    title: str
    text: str
    html: Optional[str] = None


@dataclass
class RenderResult:
    has_content: bool
    content: Optional[RenderedContent] = None
    reason: Optional[str] = None  # no_data_access | empty_content


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DeliveryResult:
    notification_id: str
    success: bool
    status: str
    error: Optional[str] = None
    error_code: Optional[str] = None
    message_id: Optional[str] = None


@dataclass
class BatchDeliveryResult:
    total: int = 0
    successful: int = 0
    failed: int = 0
    results: List[DeliveryResult] = field(default_factory=list)


@dataclass
class RecipientError:
    user_id: str
    error: str
    channel: Optional[str] = None


@dataclass
class FanOutResult:
    """Outcome of one fan-out request.

    ``notification_ids`` holds every id the request resolved to, whether
    newly created, updated in place or found through its idempotency key.
    """
    notification_ids: List[str] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    duplicates: int = 0
    skipped: int = 0
    errors: List[RecipientError] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['partial'] = self.partial
        return data


@dataclass
class AggregatedContent:
    title: str
    summary: str
    items: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {'title': self.title, 'summary': self.summary, 'count': self.count, 'items': self.items}


@dataclass
class ActionResult:
    success: bool
    notification_id: str
    action_type: str
    action_id: Optional[str] = None
    status: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None  # already_actioned | not_found | forbidden | handler_failed


@dataclass
class BatchActionResult:
    batch_action_id: str
    status: str
    total: int
    succeeded: int
    failed: int
    results: List[ActionResult] = field(default_factory=list)
