"""First token pair after a successful identity-provider login.

``complete_login`` is the entry point for the provider integration: the OAuth handshake runs
elsewhere and hands over the parsed profile and the caller address. No route calls it here.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenward.config import settings
from tokenward.core.providers import ProviderProfile
from tokenward.core.tokens import TokenCodec, TokenPair, fingerprint
from tokenward.models.user import User
from tokenward.services.audit import ACTION_LOGIN, log_action
from tokenward.services.rotation import RotationService

logger = logging.getLogger(__name__)


async def upsert_user(session: AsyncSession, profile: ProviderProfile) -> User:
    """Create the profile row on first login; otherwise refresh name/email and keep the role."""
    r = await session.execute(select(User).where(User.subject_id == profile.subject_id))
    user = r.scalar_one_or_none()
    if user is None:
        user = User(
            subject_id=profile.subject_id,
            name=profile.display_name,
            email=profile.email,
            role=settings.default_role,
        )
        session.add(user)
        await session.flush()
        logger.info("New subject %s registered with role %s", user.subject_id, user.role)
    else:
        user.name = profile.display_name
        user.email = profile.email
        await session.flush()
    return user


async def complete_login(
    session: AsyncSession,
    codec: TokenCodec,
    profile: ProviderProfile,
    ip: str,
) -> TokenPair:
    user = await upsert_user(session, profile)
    pair = await RotationService(session, codec).issue_pair(
        user.subject_id, user.name or "", user.role, ip
    )
    await log_action(
        session, user.subject_id, ACTION_LOGIN, details={"provider": profile.provider}, ip_address=ip
    )
    logger.info(
        "Login for %s via %s (refresh=%s, ip=%s)",
        user.subject_id,
        profile.provider,
        fingerprint(pair.refresh_token),
        ip,
    )
    return pair
