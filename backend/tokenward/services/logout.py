"""Logout: invalidate the presented refresh token."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from tokenward.config import settings
from tokenward.core.authenticator import verify_refresh_token
from tokenward.core.errors import InvalidOrExpiredRefreshToken
from tokenward.core.tokens import TokenCodec, fingerprint
from tokenward.services.audit import ACTION_LOGOUT, ACTION_REUSE_SUSPECTED, log_action, log_rejection
from tokenward.services.ledger import TOMBSTONE_LOGOUT, RotationLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogoutAck:
    subject_id: str
    message: str = "Logged out. Please sign in again."


async def logout(
    session: AsyncSession,
    codec: TokenCodec,
    refresh_token: str | None,
    ip: str | None = None,
) -> LogoutAck:
    """Delete the ledger row of ``refresh_token``.

    A second logout with the same token fails because the row is already gone. Clearing the
    client-held credentials is left to the caller (see ``tokenward.api.cookies``).
    """
    claims = verify_refresh_token(codec, refresh_token)
    ledger = RotationLedger(session)
    record = await ledger.find(refresh_token)
    if record is None or not await ledger.delete(refresh_token):
        logger.warning(
            "Logout refused: no ledger record for %s (token=%s)", claims.subject_id, fingerprint(refresh_token)
        )
        await session.rollback()
        await log_rejection(
            claims.subject_id, ACTION_REUSE_SUSPECTED, details={"token": fingerprint(refresh_token)}, ip_address=ip
        )
        raise InvalidOrExpiredRefreshToken()
    if settings.refresh_reuse_tombstones:
        await ledger.add_tombstone(refresh_token, claims.subject_id, TOMBSTONE_LOGOUT, record.expiry)
    await log_action(
        session, claims.subject_id, ACTION_LOGOUT, details={"token": fingerprint(refresh_token)}, ip_address=ip
    )
    logger.info("Logout for %s (%s, ip=%s)", claims.subject_id, claims.subject_name, ip)
    return LogoutAck(subject_id=claims.subject_id)
