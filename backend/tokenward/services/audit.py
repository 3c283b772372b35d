import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenward.db.session import async_session_maker
from tokenward.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

ACTION_LOGIN = "login"
ACTION_ROTATE = "token.rotate"
ACTION_REUSE_SUSPECTED = "token.reuse_suspected"
ACTION_REUSE_DETECTED = "token.reuse_detected"
ACTION_LOGOUT = "logout"
ACTION_ORIGIN_MISMATCH = "origin.mismatch"


async def log_action(
    session: AsyncSession,
    subject_id: str | None,
    action: str,
    details: dict | None = None,
    ip_address: str | None = None,
) -> None:
    session.add(
        AuditLog(
            subject_id=subject_id,
            action=action,
            details=details,
            ip_address=ip_address,
        )
    )
    await session.flush()


async def log_rejection(
    subject_id: str | None,
    action: str,
    details: dict | None = None,
    ip_address: str | None = None,
) -> None:
    """Record a rejected attempt in its own transaction.

    The request session is rolled back when authentication fails, so rejection events are
    written through a separate session that commits on its own.
    """
    try:
        async with async_session_maker() as session:
            await log_action(session, subject_id, action, details=details, ip_address=ip_address)
            await session.commit()
    except SQLAlchemyError as e:
        logger.warning("Audit: could not record %s for %s: %s", action, subject_id, e)
