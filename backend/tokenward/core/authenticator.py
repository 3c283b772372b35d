"""Per-request authentication decision.

``RequestAuthenticator.authenticate`` looks at the presented credentials and ends in one of
three outcomes:

* ``Authenticated``: a live access token bound to the request address.
* ``CredentialUpdate``: the access token is missing, stale or unreadable but the refresh token
  is live; the refresh token was rotated and the new pair must be sent back to the client.
* ``Rejected``: anything else. ``Rejected.error`` says why.

The transport layer reads the credentials before calling in and writes cookies afterwards;
nothing here touches the request or response.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from tokenward.core.errors import (
    AuthError,
    CategoryMismatch,
    DecodeFailure,
    ExpiredToken,
    OriginMismatch,
    Unauthenticated,
)
from tokenward.core.tokens import TokenCategory, TokenClaims, TokenCodec, TokenPair, fingerprint
from tokenward.services.audit import ACTION_ORIGIN_MISMATCH, log_rejection
from tokenward.services.rotation import RotationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    subject_id: str
    display_name: str
    role: str

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> "Identity":
        return cls(subject_id=claims.subject_id, display_name=claims.subject_name, role=claims.role)


@dataclass(frozen=True)
class PresentedCredentials:
    access_token: str | None = None
    refresh_token: str | None = None


@dataclass(frozen=True)
class Authenticated:
    identity: Identity


@dataclass(frozen=True)
class CredentialUpdate:
    identity: Identity
    pair: TokenPair


@dataclass(frozen=True)
class Rejected:
    error: AuthError

    @property
    def clears_credentials(self) -> bool:
        return self.error.clears_credentials


AuthOutcome = Union[Authenticated, CredentialUpdate, Rejected]


def verify_refresh_token(codec: TokenCodec, token: str | None) -> TokenClaims:
    """Claims of a present, authentic, unexpired refresh-category token, or raise AuthError."""
    if not token:
        raise Unauthenticated("Refresh token required")
    claims = codec.verify(token)
    if claims.is_expired_at(codec.now()):
        raise ExpiredToken("Refresh token has expired")
    if claims.category is not TokenCategory.REFRESH:
        raise CategoryMismatch("Invalid refresh token")
    return claims


def check_origin(claims: TokenClaims, request_ip: str) -> None:
    if claims.bound_ip != request_ip:
        raise OriginMismatch()


class RequestAuthenticator:
    def __init__(self, codec: TokenCodec, rotation: RotationService):
        self.codec = codec
        self.rotation = rotation

    async def authenticate(self, credentials: PresentedCredentials, request_ip: str) -> AuthOutcome:
        access_error: AuthError | None = None
        if credentials.access_token:
            try:
                access = self.codec.verify(credentials.access_token)
            except DecodeFailure as e:
                # An unreadable access token is handled like a stale one
                logger.debug("Access token rejected (%s); trying refresh", e.detail)
                access_error = e
            else:
                if access.category is not TokenCategory.ACCESS:
                    logger.warning("Access slot holds a %s token (ip=%s)", access.category.value, request_ip)
                    return Rejected(CategoryMismatch("Invalid access token"))
                if not access.is_expired_at(self.codec.now()):
                    rejected = await self._check_origin(access, request_ip)
                    if rejected is not None:
                        return rejected
                    return Authenticated(Identity.from_claims(access))
                access_error = ExpiredToken()

        if not credentials.refresh_token:
            logger.info("No usable token presented (ip=%s)", request_ip)
            return Rejected(access_error or Unauthenticated())

        try:
            refresh = verify_refresh_token(self.codec, credentials.refresh_token)
            pair = await self.rotation.rotate(
                credentials.refresh_token,
                refresh.subject_id,
                refresh.subject_name,
                refresh.role,
                request_ip,
            )
        except AuthError as e:
            logger.info(
                "Refresh path rejected: %s (token=%s, ip=%s)",
                e.code,
                fingerprint(credentials.refresh_token),
                request_ip,
            )
            return Rejected(e)

        issued = self.codec.verify(pair.access_token)
        rejected = await self._check_origin(issued, request_ip)
        if rejected is not None:
            return rejected
        return CredentialUpdate(identity=Identity.from_claims(issued), pair=pair)

    async def _check_origin(self, claims: TokenClaims, request_ip: str) -> Rejected | None:
        """Runs before any identity is bound. Returns a rejection on mismatch."""
        try:
            check_origin(claims, request_ip)
        except OriginMismatch as e:
            logger.warning(
                "Origin mismatch for %s: token ip=%s, request ip=%s",
                claims.subject_id,
                claims.bound_ip,
                request_ip,
            )
            await log_rejection(
                claims.subject_id,
                ACTION_ORIGIN_MISMATCH,
                details={"token_ip": claims.bound_ip, "category": claims.category.value},
                ip_address=request_ip,
            )
            return Rejected(e)
        return None
