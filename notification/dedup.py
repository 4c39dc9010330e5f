#!/usr/bin/env python3
"""
Event deduplication utilities.

An event key is a stable hash over selected payload fields. Two send
requests with the same event key for the same user, type and channel
refer to the same logical event, and the type's deduplication policy
decides whether the second one overwrites, is ignored, or creates a
new record.

Usage:
    from notification.dedup import calculate_event_key, should_deduplicate

    key = calculate_event_key({'invoice_id': 'inv-1', 'amount': 10}, ['invoice_id'])
    action = should_deduplicate(existing, key, config, now)
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Sequence

from notification.models import DedupStrategy, DeduplicationConfig

EVENT_KEY_SEPARATOR = "|"

logger = logging.getLogger(__name__)


def _lookup(data: Dict[str, Any], field_path: str) -> Any:
    """Resolve a possibly dotted field path ("customer.id") in the payload."""
    value: Any = data
    for part in field_path.split('.'):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _segment(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str, separators=(',', ':'))
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def calculate_event_key(data: Optional[Dict[str, Any]], event_key_fields: Sequence[str]) -> str:
    """
    Hash the configured fields of a payload into an event key.

    Fields are taken in configured order; a missing field contributes an
    empty segment so the position of every other field stays fixed.

    Args:
        data: Send request payload
        event_key_fields: Ordered payload fields that identify the event

    Returns:
        Hex SHA-256 digest
    """
    payload = data or {}
    joined = EVENT_KEY_SEPARATOR.join(_segment(_lookup(payload, f)) for f in event_key_fields)
    return hashlib.sha256(joined.encode('utf-8')).hexdigest()


def should_deduplicate(
    existing: Optional[Any],
    event_key: str,
    config: DeduplicationConfig,
    now: datetime
) -> DedupStrategy:
    """
    Decide how to treat a new event given the latest record for its key.

    Args:
        existing: Latest notification with the same (user, type, channel, event key),
            or None. Only ``event_key`` and ``created_at`` are read.
        event_key: Event key of the new request
        config: Type's deduplication policy
        now: Current time

    Returns:
        CREATE_NEW when there is nothing to deduplicate against or the
        existing record is outside the update window, otherwise the
        configured strategy.
    """
    if existing is None or existing.event_key != event_key:
        return DedupStrategy.CREATE_NEW

    window = timedelta(minutes=config.update_window_minutes)
    if now - existing.created_at > window:
        logger.debug(f"Event key {event_key[:12]} outside {config.update_window_minutes}m window")
        return DedupStrategy.CREATE_NEW

    return config.strategy


def derive_idempotency_key(tenant_id: str, idempotency_key: str, user_id: str, channel: str) -> str:
    """
    Per-record idempotency key for one (user, channel) of a fan-out request.

    A request fans out to many rows while the stored key must stay
    globally unique, so each row stores a hash of the caller's key and
    its own coordinates.
    """
    raw = EVENT_KEY_SEPARATOR.join((tenant_id, idempotency_key, user_id, channel))
    return hashlib.sha256(raw.encode('utf-8')).hexdigest()
