"""
Channel addresses and provider feedback.

Addresses are validated by their channel adapter. Provider events
(bounces, complaints, unsubscribes) are recorded once per
(provider, provider_event_id) and may disable the address, after which
every adapter refuses to send to it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.context import RequestHeader
from database.models import BounceComplaint, UserChannelAddress
from database.repositories import ChannelAddressRepository
from notification.channels import ChannelRegistry

logger = logging.getLogger(__name__)

HARD_BOUNCE = "hard_bounce"
SOFT_BOUNCE = "soft_bounce"
COMPLAINT = "complaint"
UNSUBSCRIBE = "unsubscribe"
EVENT_TYPES = (HARD_BOUNCE, SOFT_BOUNCE, COMPLAINT, UNSUBSCRIBE)


@dataclass
class FeedbackResult:
    event_id: Optional[str]
    duplicate: bool = False
    disabled_address_ids: List[str] = field(default_factory=list)
    matched_addresses: int = 0


class ChannelAddressService:
    def __init__(
        self,
        db: Session,
        header: RequestHeader,
        channel_registry: ChannelRegistry,
        clock: Optional[Callable[[], datetime]] = None,
        bounce_disable_threshold: int = 3,
        complaint_disable_threshold: int = 1
    ):
        self.db = db
        self.header = header
        self.channel_registry = channel_registry
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.bounce_disable_threshold = bounce_disable_threshold
        self.complaint_disable_threshold = complaint_disable_threshold
        self.addresses = ChannelAddressRepository(db, header)

    def list_addresses(self, user_id: str) -> List[UserChannelAddress]:
        return self.addresses.list_for_user(user_id)

    def upsert_address(self, user_id: str, channel: str, address: str) -> UserChannelAddress:
        """
        Set a user's address on a channel.

        A changed address starts over: unverified, enabled, counters reset.

        Raises:
            ValueError: Channel not registered or address rejected by the adapter
        """
        adapter = self.channel_registry.get(channel)
        if adapter is None:
            raise ValueError(f"Unknown channel: {channel}")
        address = (address or '').strip()
        if not adapter.validate_address(address):
            raise ValueError(f"Invalid {channel} address")

        now = self.clock()
        row = self.addresses.get(user_id, channel)
        if row is None:
            row = self.addresses.add(UserChannelAddress(
                user_id=user_id,
                channel=channel,
                address=address,
                created_at=now,
                updated_at=now,
            ))
            logger.info(f"Added {channel} address for user {user_id}")
            return row

        if row.address != address:
            row.address = address
            row.is_verified = False
            row.verified_at = None
            row.is_disabled = False
            row.disabled_reason = None
            row.bounce_count = 0
            row.complaint_count = 0
            row.updated_at = now
            self.db.flush()
            logger.info(f"Changed {channel} address for user {user_id}")
        return row

    def record_event(
        self,
        channel: str,
        address: str,
        event_type: str,
        provider: str,
        provider_event_id: str,
        notification_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None
    ) -> FeedbackResult:
        """
        Record a provider feedback event and apply it to matching addresses.

        Hard bounces and complaints count toward their disable thresholds;
        an unsubscribe disables at once; soft bounces are only recorded.
        Replays of the same provider event are no-ops.
        """
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")

        existing = self.addresses.find_event(provider, provider_event_id)
        if existing is not None:
            return FeedbackResult(event_id=existing.id, duplicate=True)

        now = self.clock()
        matches = self.addresses.find_by_address(channel, address)
        result = FeedbackResult(event_id=None, matched_addresses=len(matches))

        try:
            with self.db.begin_nested():
                event = self.addresses.add_event(BounceComplaint(
                    channel_address_id=matches[0].id if matches else None,
                    channel=channel,
                    address=address,
                    event_type=event_type,
                    provider=provider,
                    provider_event_id=provider_event_id,
                    notification_id=notification_id,
                    details=details,
                    occurred_at=occurred_at or now,
                    created_at=now,
                ))
                for row in matches:
                    if self._apply(row, event_type, now):
                        result.disabled_address_ids.append(row.id)
        except IntegrityError:
            existing = self.addresses.find_event(provider, provider_event_id)
            if existing is None:
                raise
            return FeedbackResult(event_id=existing.id, duplicate=True)

        result.event_id = event.id
        if not matches:
            logger.info(f"{event_type} from {provider} for an address with no {channel} registration")
        return result

    def _apply(self, row: UserChannelAddress, event_type: str, now: datetime) -> bool:
        """Update counters; True when this event disabled the address."""
        if event_type == HARD_BOUNCE:
            row.bounce_count = (row.bounce_count or 0) + 1
            trip = row.bounce_count >= self.bounce_disable_threshold
        elif event_type == COMPLAINT:
            row.complaint_count = (row.complaint_count or 0) + 1
            trip = row.complaint_count >= self.complaint_disable_threshold
        elif event_type == UNSUBSCRIBE:
            trip = True
        else:
            trip = False

        row.updated_at = now
        if trip and not row.is_disabled:
            row.is_disabled = True
            row.disabled_reason = event_type
            logger.warning(f"Disabled {row.channel} address {row.id} after {event_type}")
            self.db.flush()
            return True
        self.db.flush()
        return False
