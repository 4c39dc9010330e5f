#!/usr/bin/env python3
"""
Action Tokens - signed one-click action credentials

A token authorizes one user to perform one action on one notification
without a session. Format:

    base64url(json claims) + "." + base64url(hmac_sha256(secret, base64url(json claims) + "."))

The signature has a fixed length (43 characters) and covers the separator,
so any altered character before it fails verification.

Claims: jti (token id), nid (notification), tid (tenant), uid (user),
act (action type), iat / exp (unix seconds).

Usage:
    from notification.tokens import ActionTokenService

    tokens = ActionTokenService(secret)
    token = tokens.generate(notification_id, tenant_id, user_id, 'approve')
    url = tokens.build_action_url('https://app.example.com', token)

    validation = tokens.validate(token, is_token_used=used_tokens.is_used)
    if validation.valid:
        ...
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlencode

from notification.errors import ConfigurationError, TokenValidationError

logger = logging.getLogger(__name__)

TOKEN_SEPARATOR = "."
MIN_SECRET_BYTES = 32
SIGNATURE_LENGTH = 43  # base64url of a 32-byte digest, unpadded
DEFAULT_TOKEN_TTL = timedelta(days=7)
ACTION_TOKEN_PATH = "/api/notifications/actions/token"

# Reason codes
MALFORMED = "malformed"
INVALID_SIGNATURE = "invalid_signature"
EXPIRED = "expired"
ALREADY_USED = "already_used"

# Built-in action carried by the email List-Unsubscribe link
UNSUBSCRIBE_ACTION = "unsubscribe"


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b'=').decode('ascii')


def _b64decode(segment: str) -> bytes:
    padded = segment + '=' * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode('ascii'))


@dataclass(frozen=True)
class ActionTokenPayload:
    token_id: str
    notification_id: str
    tenant_id: str
    user_id: str
    action_type: str
    issued_at: int
    expires_at: int

    def to_claims(self) -> dict:
        return {
            'jti': self.token_id,
            'nid': self.notification_id,
            'tid': self.tenant_id,
            'uid': self.user_id,
            'act': self.action_type,
            'iat': self.issued_at,
            'exp': self.expires_at,
        }

    @classmethod
    def from_claims(cls, claims: dict) -> "ActionTokenPayload":
        payload = cls(
            token_id=claims['jti'],
            notification_id=claims['nid'],
            tenant_id=claims['tid'],
            user_id=claims['uid'],
            action_type=claims['act'],
            issued_at=claims['iat'],
            expires_at=claims['exp'],
        )
        for value in (payload.token_id, payload.notification_id, payload.tenant_id,
                      payload.user_id, payload.action_type):
            if not isinstance(value, str) or not value:
                raise ValueError("token claims must be non-empty strings")
        for value in (payload.issued_at, payload.expires_at):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError("token timestamps must be integers")
        return payload


@dataclass(frozen=True)
class TokenValidation:
    valid: bool
    payload: Optional[ActionTokenPayload] = None
    error: Optional[str] = None


class ActionTokenService:
    """Generates and validates HMAC-signed action tokens."""

    def __init__(
        self,
        secret: Optional[str],
        ttl: timedelta = DEFAULT_TOKEN_TTL,
        is_token_used: Optional[Callable[[str], bool]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            secret: HMAC signing secret, at least 32 bytes
            ttl: Default token lifetime
            is_token_used: Replay check, called with the token id
            clock: Returns the current time (timezone-aware)

        Raises:
            ConfigurationError: If the secret is missing or shorter than 32 bytes
        """
        if not secret or len(secret.encode('utf-8')) < MIN_SECRET_BYTES:
            raise ConfigurationError(
                f"Action token secret must be at least {MIN_SECRET_BYTES} bytes"
            )
        self._secret = secret.encode('utf-8')
        self.ttl = ttl
        self.is_token_used = is_token_used
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._secret, signing_input.encode('ascii'), hashlib.sha256).digest()
        return _b64encode(digest)

    def encode(self, payload: ActionTokenPayload) -> str:
        body = json.dumps(payload.to_claims(), separators=(',', ':'), sort_keys=True)
        signing_input = _b64encode(body.encode('utf-8')) + TOKEN_SEPARATOR
        return signing_input + self._sign(signing_input)

    def generate(
        self,
        notification_id: str,
        tenant_id: str,
        user_id: str,
        action_type: str,
        ttl: Optional[timedelta] = None
    ) -> str:
        """Mint a token for one (notification, user, action) triple."""
        issued = int(self._clock().timestamp())
        lifetime = int((ttl or self.ttl).total_seconds())
        payload = ActionTokenPayload(
            token_id=str(uuid.uuid4()),
            notification_id=str(notification_id),
            tenant_id=str(tenant_id),
            user_id=str(user_id),
            action_type=action_type,
            issued_at=issued,
            expires_at=issued + lifetime,
        )
        return self.encode(payload)

    def decode(self, token: str) -> ActionTokenPayload:
        """
        Verify structure and signature, then return the claims.

        Expiry and replay are not checked here; see ``validate``.

        Raises:
            TokenValidationError: ``malformed`` or ``invalid_signature``
        """
        if not isinstance(token, str):
            raise TokenValidationError(MALFORMED)
        token = token.strip()
        if len(token) <= SIGNATURE_LENGTH + len(TOKEN_SEPARATOR):
            raise TokenValidationError(MALFORMED)

        signing_input, signature = token[:-SIGNATURE_LENGTH], token[-SIGNATURE_LENGTH:]
        try:
            expected = self._sign(signing_input)
        except UnicodeEncodeError:
            raise TokenValidationError(INVALID_SIGNATURE)
        provided = signature.encode('utf-8', errors='replace')
        if not hmac.compare_digest(expected.encode('ascii'), provided):
            raise TokenValidationError(INVALID_SIGNATURE)

        encoded, separator, rest = signing_input.partition(TOKEN_SEPARATOR)
        if not separator or rest or not encoded:
            raise TokenValidationError(MALFORMED)

        try:
            claims = json.loads(_b64decode(encoded).decode('utf-8'))
            if not isinstance(claims, dict):
                raise ValueError("claims must be an object")
            return ActionTokenPayload.from_claims(claims)
        except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError):
            raise TokenValidationError(MALFORMED)

    def validate(
        self,
        token: str,
        is_token_used: Optional[Callable[[str], bool]] = None
    ) -> TokenValidation:
        """
        Full validation: structure, signature, expiry, replay.

        Args:
            token: Opaque token string
            is_token_used: Overrides the replay check given at construction

        Returns:
            TokenValidation with the payload or a reason code
        """
        try:
            payload = self.decode(token)
        except TokenValidationError as e:
            logger.info(f"Action token rejected: {e.code}")
            return TokenValidation(valid=False, error=e.code)

        if payload.expires_at < int(self._clock().timestamp()):
            return TokenValidation(valid=False, payload=payload, error=EXPIRED)

        used_check = is_token_used or self.is_token_used
        if used_check is not None and used_check(payload.token_id):
            return TokenValidation(valid=False, payload=payload, error=ALREADY_USED)

        return TokenValidation(valid=True, payload=payload)

    @staticmethod
    def build_action_url(base_url: str, token: str) -> str:
        """Link that executes the encoded action when opened."""
        return f"{base_url.rstrip('/')}{ACTION_TOKEN_PATH}?{urlencode({'token': token})}"
