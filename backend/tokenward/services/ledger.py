"""Rotation ledger: point lookups and mutations on refresh token rows."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenward.core.tokens import token_hash
from tokenward.models.refresh_token import RefreshRecord, RefreshTokenTombstone

TOMBSTONE_ROTATED = "rotated"
TOMBSTONE_LOGOUT = "logout"


def to_epoch_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class RotationLedger:
    """Each method is a single statement; none of them commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find(self, token: str) -> RefreshRecord | None:
        r = await self.session.execute(select(RefreshRecord).where(RefreshRecord.token == token))
        return r.scalar_one_or_none()

    async def insert(self, record: RefreshRecord) -> None:
        self.session.add(record)
        await self.session.flush()

    async def delete(self, token: str) -> bool:
        """Hard-delete the row for ``token``. False when no row was there to delete."""
        result = await self.session.execute(delete(RefreshRecord).where(RefreshRecord.token == token))
        return (result.rowcount or 0) > 0

    async def add_tombstone(self, token: str, subject_id: str, reason: str, expiry: int) -> None:
        key = token_hash(token)
        existing = await self.session.get(RefreshTokenTombstone, key)
        if existing is not None:
            return
        self.session.add(
            RefreshTokenTombstone(token_hash=key, subject_id=subject_id, reason=reason, expiry=expiry)
        )
        await self.session.flush()

    async def find_tombstone(self, token: str) -> RefreshTokenTombstone | None:
        r = await self.session.execute(
            select(RefreshTokenTombstone).where(RefreshTokenTombstone.token_hash == token_hash(token))
        )
        return r.scalar_one_or_none()
