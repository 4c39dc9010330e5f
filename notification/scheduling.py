"""
Batch-interval scheduling.

Maps a batching policy and a user timezone to the instant a batched
notification is released. Interval policies round to fixed boundaries
counted from the Unix epoch, so every notification created inside the
same window lands on the same instant and therefore the same batch.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notification.models import BatchInterval

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
END_OF_DAY = time(23, 59, 59, 999000)
_MICROSECOND = timedelta(microseconds=1)


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Return the IANA zone, falling back to UTC for empty or unknown names."""
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', using UTC")
        return ZoneInfo("UTC")


def next_boundary(now: datetime, period: timedelta) -> datetime:
    """
    First multiple of ``period`` since the epoch strictly after ``now``.

    Calls anywhere inside one window [k*period, (k+1)*period) return the
    same instant; calls in adjacent windows return instants exactly one
    period apart.
    """
    elapsed = (now - EPOCH) // _MICROSECOND
    step = period // _MICROSECOND
    return EPOCH + _MICROSECOND * ((elapsed // step + 1) * step)


def end_of_local_day(now: datetime, user_timezone: Optional[str]) -> datetime:
    """Local 23:59:59.999 of the user's current calendar day, as a UTC instant."""
    zone = resolve_timezone(user_timezone)
    local_date = now.astimezone(zone).date()
    local_end = datetime.combine(local_date, END_OF_DAY, tzinfo=zone)
    return local_end.astimezone(timezone.utc)


def calculate_scheduled_for(
    interval: Any,
    user_timezone: Optional[str],
    now: datetime
) -> datetime:
    """
    Compute the release instant for a batching policy.

    Args:
        interval: BatchInterval or any form accepted by BatchInterval.parse
        user_timezone: IANA timezone of the recipient (UTC if unset)
        now: Current time (timezone-aware)

    Returns:
        Timezone-aware UTC datetime
    """
    policy = BatchInterval.parse(interval)
    if policy is None or policy.kind == 'immediate':
        return now
    if policy.kind == 'minutes':
        return next_boundary(now, timedelta(minutes=policy.value))
    if policy.kind == 'hours':
        return next_boundary(now, timedelta(hours=policy.value))
    if policy.kind == 'end_of_day':
        return end_of_local_day(now, user_timezone)
    # custom: the explicit timestamp, unmodified
    return policy.scheduled_for
