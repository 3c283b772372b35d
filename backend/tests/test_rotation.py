"""Refresh token rotation: single use, reuse detection, ledger bookkeeping."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from tokenward.core.errors import InvalidOrExpiredRefreshToken, TokenReuseDetected
from tokenward.core.tokens import TokenCategory
from tokenward.db.session import async_session_maker
from tokenward.models.audit_log import AuditLog
from tokenward.models.refresh_token import RefreshRecord
from tokenward.services.audit import ACTION_REUSE_DETECTED, ACTION_REUSE_SUSPECTED, ACTION_ROTATE
from tokenward.services.ledger import RotationLedger, to_epoch_millis
from tokenward.services.rotation import RotationService

SUBJECT = ("google:42", "Ada", "USER")
IP = "10.0.0.5"


async def _count_records(session) -> int:
    r = await session.execute(select(func.count()).select_from(RefreshRecord))
    return r.scalar_one()


@pytest.mark.asyncio
async def test_issue_pair_records_refresh_token(session, codec, clock):
    service = RotationService(session, codec, access_ttl_seconds=600, refresh_ttl_seconds=604800)
    pair = await service.issue_pair(*SUBJECT, IP)
    assert codec.category(pair.access_token) is TokenCategory.ACCESS
    assert codec.category(pair.refresh_token) is TokenCategory.REFRESH

    record = await RotationLedger(session).find(pair.refresh_token)
    assert record is not None
    assert record.subject_id == "google:42"
    assert record.bound_ip == IP
    assert record.expiry == to_epoch_millis(clock.current) + 604800 * 1000


@pytest.mark.asyncio
async def test_rotate_consumes_old_and_records_new(session, codec):
    service = RotationService(session, codec)
    first = await service.issue_pair(*SUBJECT, IP)
    await session.commit()

    second = await service.rotate(first.refresh_token, *SUBJECT, IP)
    await session.commit()

    ledger = RotationLedger(session)
    assert await ledger.find(first.refresh_token) is None
    assert await ledger.find(second.refresh_token) is not None
    assert await _count_records(session) == 1
    assert second.refresh_token != first.refresh_token
    assert codec.subject_id(second.access_token) == "google:42"

    r = await session.execute(select(AuditLog).where(AuditLog.action == ACTION_ROTATE))
    assert r.scalar_one().subject_id == "google:42"


@pytest.mark.asyncio
async def test_rotate_twice_rejects_second_call(session, codec):
    service = RotationService(session, codec, use_tombstones=False)
    pair = await service.issue_pair(*SUBJECT, IP)
    await session.commit()
    await service.rotate(pair.refresh_token, *SUBJECT, IP)
    await session.commit()

    with pytest.raises(InvalidOrExpiredRefreshToken) as exc_info:
        await service.rotate(pair.refresh_token, *SUBJECT, IP)
    assert type(exc_info.value) is InvalidOrExpiredRefreshToken


@pytest.mark.asyncio
async def test_rotate_twice_with_tombstones_reports_reuse(session, codec):
    service = RotationService(session, codec, use_tombstones=True)
    pair = await service.issue_pair(*SUBJECT, IP)
    await session.commit()
    await service.rotate(pair.refresh_token, *SUBJECT, IP)
    await session.commit()

    with pytest.raises(TokenReuseDetected) as exc_info:
        await service.rotate(pair.refresh_token, *SUBJECT, IP)
    # Still an InvalidOrExpiredRefreshToken for callers that only know the broader failure
    assert isinstance(exc_info.value, InvalidOrExpiredRefreshToken)

    await session.rollback()
    r = await session.execute(select(AuditLog).where(AuditLog.action == ACTION_REUSE_DETECTED))
    assert r.scalar_one().subject_id == "google:42"


@pytest.mark.asyncio
async def test_rotate_never_inserted_token_creates_nothing(session, codec):
    stray = codec.issue(TokenCategory.REFRESH, *SUBJECT, IP, 604800)
    with pytest.raises(InvalidOrExpiredRefreshToken):
        await RotationService(session, codec).rotate(stray, *SUBJECT, IP)
    assert await _count_records(session) == 0


@pytest.mark.asyncio
async def test_rotate_with_other_ip_binds_new_pair_to_that_ip(session, codec):
    """Binding is checked on later requests, not when rotating."""
    service = RotationService(session, codec)
    pair = await service.issue_pair(*SUBJECT, IP)
    await session.commit()

    rotated = await service.rotate(pair.refresh_token, *SUBJECT, "192.168.1.20")
    assert codec.bound_ip(rotated.access_token) == "192.168.1.20"
    assert codec.bound_ip(rotated.refresh_token) == "192.168.1.20"


@pytest.mark.asyncio
async def test_rotate_rejects_expired_ledger_row(session, codec, clock):
    service = RotationService(session, codec, refresh_ttl_seconds=604800)
    pair = await service.issue_pair(*SUBJECT, IP)
    await session.commit()

    clock.advance(604800)
    with pytest.raises(InvalidOrExpiredRefreshToken):
        await service.rotate(pair.refresh_token, *SUBJECT, IP)


@pytest.mark.asyncio
async def test_rotate_rejects_subject_mismatch(session, codec):
    service = RotationService(session, codec)
    pair = await service.issue_pair(*SUBJECT, IP)
    await session.commit()

    with pytest.raises(InvalidOrExpiredRefreshToken):
        await service.rotate(pair.refresh_token, "naver:7", "Eve", "ADMIN", IP)
    assert await RotationLedger(session).find(pair.refresh_token) is not None


@pytest.mark.asyncio
async def test_zero_ttl_override_is_not_replaced_by_default(session, codec):
    service = RotationService(session, codec, access_ttl_seconds=0)
    assert service.access_ttl_seconds == 0
    with pytest.raises(ValueError):
        await service.issue_pair(*SUBJECT, IP)


async def _rotate_in_own_session(codec, token):
    async with async_session_maker() as s:
        try:
            pair = await RotationService(s, codec, use_tombstones=True).rotate(token, *SUBJECT, IP)
        except InvalidOrExpiredRefreshToken as e:
            return e
        await s.commit()
        return pair


async def _reuse_audits(session) -> list[str]:
    r = await session.execute(
        select(AuditLog.action).where(AuditLog.action.in_([ACTION_REUSE_DETECTED, ACTION_REUSE_SUSPECTED]))
    )
    return list(r.scalars())


@pytest.mark.asyncio
async def test_concurrent_rotation_has_one_winner(session, codec):
    pair = await RotationService(session, codec).issue_pair(*SUBJECT, IP)
    await session.commit()

    results = await asyncio.gather(
        _rotate_in_own_session(codec, pair.refresh_token),
        _rotate_in_own_session(codec, pair.refresh_token),
    )

    rejected = [r for r in results if isinstance(r, InvalidOrExpiredRefreshToken)]
    assert len(rejected) == 1
    assert len(results) - len(rejected) == 1
    assert await _count_records(session) == 1
    assert await RotationLedger(session).find(pair.refresh_token) is None
    assert await _reuse_audits(session) == [ACTION_REUSE_DETECTED]


@pytest.mark.asyncio
async def test_rotation_losing_delete_is_rejected_and_audited(session, codec):
    """Row found, then consumed by another request before this one deletes it."""
    pair = await RotationService(session, codec).issue_pair(*SUBJECT, IP)
    await session.commit()

    async with async_session_maker() as loser_session:
        loser = RotationService(loser_session, codec, use_tombstones=True)
        stale = await loser.ledger.find(pair.refresh_token)
        assert stale is not None

        async with async_session_maker() as winner_session:
            await RotationService(winner_session, codec, use_tombstones=True).rotate(pair.refresh_token, *SUBJECT, IP)
            await winner_session.commit()

        with patch.object(loser.ledger, "find", AsyncMock(return_value=stale)):
            with pytest.raises(TokenReuseDetected):
                await loser.rotate(pair.refresh_token, *SUBJECT, IP)

    assert await _count_records(session) == 1
    assert await _reuse_audits(session) == [ACTION_REUSE_DETECTED]


@pytest.mark.asyncio
async def test_rotation_losing_delete_without_tombstones(session, codec):
    pair = await RotationService(session, codec).issue_pair(*SUBJECT, IP)
    await session.commit()

    async with async_session_maker() as loser_session:
        loser = RotationService(loser_session, codec, use_tombstones=False)
        stale = await loser.ledger.find(pair.refresh_token)

        async with async_session_maker() as winner_session:
            await RotationService(winner_session, codec, use_tombstones=False).rotate(pair.refresh_token, *SUBJECT, IP)
            await winner_session.commit()

        with patch.object(loser.ledger, "find", AsyncMock(return_value=stale)):
            with pytest.raises(InvalidOrExpiredRefreshToken) as exc_info:
                await loser.rotate(pair.refresh_token, *SUBJECT, IP)
    assert type(exc_info.value) is InvalidOrExpiredRefreshToken
    assert await _reuse_audits(session) == [ACTION_REUSE_SUSPECTED]
