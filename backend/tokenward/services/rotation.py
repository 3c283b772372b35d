"""Refresh token rotation: consume the old refresh token, issue and persist a new pair.

A refresh token is single-use. Its ledger row is hard-deleted before the replacement pair is
issued, so a rotation that fails half way leaves the subject signed out rather than holding
two live refresh tokens. Presenting a token whose row is already gone is treated as reuse.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import NoReturn

from sqlalchemy.ext.asyncio import AsyncSession

from tokenward.config import settings
from tokenward.core.errors import InvalidOrExpiredRefreshToken, TokenReuseDetected
from tokenward.core.tokens import TokenCategory, TokenCodec, TokenPair, fingerprint
from tokenward.models.refresh_token import RefreshRecord
from tokenward.services.audit import (
    ACTION_REUSE_DETECTED,
    ACTION_REUSE_SUSPECTED,
    ACTION_ROTATE,
    log_action,
    log_rejection,
)
from tokenward.services.ledger import TOMBSTONE_ROTATED, RotationLedger, to_epoch_millis

logger = logging.getLogger(__name__)


class RotationService:
    def __init__(
        self,
        session: AsyncSession,
        codec: TokenCodec,
        *,
        access_ttl_seconds: int | None = None,
        refresh_ttl_seconds: int | None = None,
        use_tombstones: bool | None = None,
    ):
        self.session = session
        self.codec = codec
        self.ledger = RotationLedger(session)
        self.access_ttl_seconds = (
            settings.access_token_ttl_seconds if access_ttl_seconds is None else access_ttl_seconds
        )
        self.refresh_ttl_seconds = (
            settings.refresh_token_ttl_seconds if refresh_ttl_seconds is None else refresh_ttl_seconds
        )
        self.use_tombstones = settings.refresh_reuse_tombstones if use_tombstones is None else use_tombstones

    async def issue_pair(self, subject_id: str, display_name: str, role: str, ip: str) -> TokenPair:
        """Issue an access/refresh pair bound to ``ip`` and record the refresh token in the ledger."""
        access = self.codec.issue(
            TokenCategory.ACCESS, subject_id, display_name, role, ip, self.access_ttl_seconds
        )
        refresh = self.codec.issue(
            TokenCategory.REFRESH, subject_id, display_name, role, ip, self.refresh_ttl_seconds
        )
        expiry = to_epoch_millis(self.codec.now() + timedelta(seconds=self.refresh_ttl_seconds))
        await self.ledger.insert(
            RefreshRecord(token=refresh, subject_id=subject_id, expiry=expiry, bound_ip=ip)
        )
        return TokenPair(access_token=access, refresh_token=refresh)

    async def rotate(
        self,
        old_refresh_token: str,
        subject_id: str,
        display_name: str,
        role: str,
        ip: str,
    ) -> TokenPair:
        """Replace ``old_refresh_token`` with a new pair.

        Raises InvalidOrExpiredRefreshToken when the ledger has no live row for the token
        (already rotated, logged out, or expired at the store), or TokenReuseDetected when the
        token is known to have been rotated before. Both roll back the session first.
        """
        record = await self.ledger.find(old_refresh_token)
        if record is None:
            await self._reject_missing(old_refresh_token, subject_id, ip)
        if record.subject_id != subject_id:
            logger.warning(
                "Rotation refused: ledger subject %s does not match token subject %s (token=%s)",
                record.subject_id,
                subject_id,
                fingerprint(old_refresh_token),
            )
            raise InvalidOrExpiredRefreshToken()
        if record.expiry <= to_epoch_millis(self.codec.now()):
            logger.info("Rotation refused: ledger row expired (token=%s)", fingerprint(old_refresh_token))
            raise InvalidOrExpiredRefreshToken()

        # Single use: the old row goes before the new pair exists
        if not await self.ledger.delete(old_refresh_token):
            # Another request consumed it between find and delete
            await self._reject_missing(old_refresh_token, subject_id, ip)
        if self.use_tombstones:
            await self.ledger.add_tombstone(old_refresh_token, subject_id, TOMBSTONE_ROTATED, record.expiry)

        pair = await self.issue_pair(subject_id, display_name, role, ip)
        await log_action(
            self.session,
            subject_id,
            ACTION_ROTATE,
            details={"old": fingerprint(old_refresh_token), "new": fingerprint(pair.refresh_token)},
            ip_address=ip,
        )
        logger.info(
            "Rotated refresh token for %s: %s -> %s (ip=%s)",
            subject_id,
            fingerprint(old_refresh_token),
            fingerprint(pair.refresh_token),
            ip,
        )
        return pair

    async def _reject_missing(self, token: str, subject_id: str, ip: str) -> NoReturn:
        reused = False
        if self.use_tombstones:
            tombstone = await self.ledger.find_tombstone(token)
            reused = tombstone is not None and tombstone.reason == TOMBSTONE_ROTATED
        # Release the write lock taken by a failed delete before the audit session writes
        await self.session.rollback()

        if reused:
            logger.warning(
                "Refresh token reuse detected for %s (token=%s, ip=%s)", subject_id, fingerprint(token), ip
            )
            await log_rejection(
                subject_id, ACTION_REUSE_DETECTED, details={"token": fingerprint(token)}, ip_address=ip
            )
            raise TokenReuseDetected()
        logger.warning(
            "No ledger record for refresh token of %s; expired at the store or reused (token=%s, ip=%s)",
            subject_id,
            fingerprint(token),
            ip,
        )
        await log_rejection(
            subject_id, ACTION_REUSE_SUSPECTED, details={"token": fingerprint(token)}, ip_address=ip
        )
        raise InvalidOrExpiredRefreshToken()
