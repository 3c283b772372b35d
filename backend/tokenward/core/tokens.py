"""Signed bearer tokens: issue, verify and read claims.

Tokens are HS256 JWTs signed with the process-wide ``settings.secret_key``. Expiry is not
treated as a verification error: ``verify`` accepts an expired but authentic token and
``is_expired`` answers the clock question separately, so callers can tell "forged" from
"stale" and pick a different branch for each.
"""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from jose import JWTError, jwt

from tokenward.config import settings
from tokenward.core.errors import DecodeFailure

Clock = Callable[[], datetime]

_REQUIRED_CLAIMS = ("category", "name", "sub", "role", "ip", "iat", "exp", "jti")


class TokenCategory(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    category: TokenCategory
    subject_name: str
    subject_id: str
    role: str
    bound_ip: str
    issued_at: datetime
    expires_at: datetime
    token_id: str

    def is_expired_at(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def token_hash(token: str) -> str:
    """SHA256 of a token, used as a storage key where the raw value must not be kept."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def fingerprint(token: str | None) -> str:
    """Short, log-safe identifier for a token."""
    if not token:
        return "-"
    return token_hash(token)[:12]


def _timestamp_to_datetime(value: Any) -> datetime:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeFailure("Invalid token timestamps")
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class TokenCodec:
    def __init__(self, secret_key: str, algorithm: str = "HS256", clock: Clock = utcnow):
        if not secret_key:
            raise ValueError("secret_key is required")
        self._key = secret_key
        self._algorithm = algorithm
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def issue(
        self,
        category: TokenCategory,
        subject_id: str,
        display_name: str,
        role: str,
        bound_ip: str,
        ttl_seconds: int,
    ) -> str:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        issued_at = self.now().replace(microsecond=0)
        expires_at = issued_at + timedelta(seconds=ttl_seconds)
        payload = {
            "category": TokenCategory(category).value,
            "name": display_name,
            "sub": subject_id,
            "role": role,
            "ip": bound_ip,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            # Keeps two tokens issued in the same second for the same subject distinct
            "jti": uuid.uuid4().hex,
        }
        result = jwt.encode(payload, self._key, algorithm=self._algorithm)
        return result if isinstance(result, str) else result.decode("utf-8")

    def verify(self, token: str | None) -> TokenClaims:
        """Check signature and structure and return the claims. Raises DecodeFailure."""
        if not isinstance(token, str) or not token.strip():
            raise DecodeFailure("Token missing")
        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except (JWTError, ValueError) as e:
            raise DecodeFailure() from e

        missing = [name for name in _REQUIRED_CLAIMS if payload.get(name) is None]
        if missing:
            raise DecodeFailure(f"Token missing claims: {', '.join(missing)}")
        try:
            category = TokenCategory(payload["category"])
        except ValueError as e:
            raise DecodeFailure("Unknown token category") from e

        issued_at = _timestamp_to_datetime(payload["iat"])
        expires_at = _timestamp_to_datetime(payload["exp"])
        if expires_at <= issued_at:
            raise DecodeFailure("Token expires before it was issued")

        return TokenClaims(
            category=category,
            subject_name=str(payload["name"]),
            subject_id=str(payload["sub"]),
            role=str(payload["role"]),
            bound_ip=str(payload["ip"]),
            issued_at=issued_at,
            expires_at=expires_at,
            token_id=str(payload["jti"]),
        )

    def is_expired(self, token: str | None) -> bool:
        return self.verify(token).is_expired_at(self.now())

    def category(self, token: str | None) -> TokenCategory:
        return self.verify(token).category

    def subject_id(self, token: str | None) -> str:
        return self.verify(token).subject_id

    def display_name(self, token: str | None) -> str:
        return self.verify(token).subject_name

    def role(self, token: str | None) -> str:
        return self.verify(token).role

    def bound_ip(self, token: str | None) -> str:
        return self.verify(token).bound_ip


def get_token_codec() -> TokenCodec:
    """Codec bound to the configured key; FastAPI dependency and default for services."""
    return TokenCodec(settings.secret_key, settings.jwt_algorithm)
