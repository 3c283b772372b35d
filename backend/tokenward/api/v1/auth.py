"""Auth: reissue, logout, me."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tokenward.api.cookies import clear_credential_cookies, read_credentials, set_credential_cookies
from tokenward.api.deps import CurrentIdentity, get_client_ip
from tokenward.config import settings
from tokenward.core.authenticator import verify_refresh_token
from tokenward.core.metrics import logouts
from tokenward.core.rate_limit import limiter
from tokenward.core.tokens import TokenCodec, get_token_codec
from tokenward.db.session import get_db
from tokenward.services.logout import logout as terminate_session
from tokenward.services.rotation import RotationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class MessageOut(BaseModel):
    message: str


class IdentityOut(BaseModel):
    subject_id: str
    name: str
    role: str


@router.post(
    "/reissue",
    response_model=MessageOut,
    summary="Exchange the refresh credential for a new credential pair",
    responses={
        401: {"description": "Refresh token missing, invalid, expired or already used"},
    },
)
@limiter.limit(settings.reissue_rate_limit)
async def reissue(
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(get_db)],
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
) -> MessageOut:
    """Rotate the refresh token from the refresh cookie. No other authentication is required."""
    refresh_token = read_credentials(request).refresh_token
    claims = verify_refresh_token(codec, refresh_token)
    ip = get_client_ip(request)
    pair = await RotationService(session, codec).rotate(
        refresh_token, claims.subject_id, claims.subject_name, claims.role, ip
    )
    set_credential_cookies(response, pair)
    logger.info("Reissued credentials for %s (role=%s)", claims.subject_id, claims.role)
    return MessageOut(message="Tokens reissued")


@router.post(
    "/logout",
    response_model=MessageOut,
    summary="Invalidate the refresh credential and clear both cookies",
    responses={
        401: {"description": "Refresh token missing, invalid, expired or already logged out"},
    },
)
@limiter.limit(settings.logout_rate_limit)
async def logout(
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(get_db)],
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
) -> MessageOut:
    ack = await terminate_session(
        session, codec, read_credentials(request).refresh_token, ip=get_client_ip(request)
    )
    clear_credential_cookies(response)
    request.state.identity = None
    logouts.inc()
    return MessageOut(message=ack.message)


@router.get(
    "/me",
    response_model=IdentityOut,
    summary="Get the identity bound to this request",
    responses={
        401: {"description": "Not authenticated, or origin mismatch (credentials cleared)"},
    },
)
async def me(identity: CurrentIdentity) -> IdentityOut:
    return IdentityOut(subject_id=identity.subject_id, name=identity.display_name, role=identity.role)
