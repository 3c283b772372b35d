"""Rotation ledger rows: one row per refresh token that is still usable."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from tokenward.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshRecord(Base):
    __tablename__ = "refresh_token"

    token: Mapped[str] = mapped_column(String(512), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    expiry: Mapped[int] = mapped_column(BigInteger, nullable=False)  # epoch millis
    bound_ip: Mapped[str] = mapped_column(String(45), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"RefreshRecord(subject_id={self.subject_id!r}, expiry={self.expiry}, bound_ip={self.bound_ip!r})"


class RefreshTokenTombstone(Base):
    """Hash of a refresh token that was consumed by rotation or logout."""

    __tablename__ = "refresh_token_tombstones"

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(16), nullable=False)  # "rotated" | "logout"
    expiry: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
