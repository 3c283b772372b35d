"""FastAPI dependencies: token codec, client address, authenticated identity."""

import logging
from typing import Annotated

from fastapi import Depends, Request, Response
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from tokenward.api.cookies import read_credentials, set_credential_cookies
from tokenward.core.authenticator import (
    Authenticated,
    CredentialUpdate,
    Identity,
    Rejected,
    RequestAuthenticator,
)
from tokenward.core.metrics import auth_outcomes, auth_rejections
from tokenward.core.tokens import TokenCodec, get_token_codec
from tokenward.db.session import get_db
from tokenward.services.rotation import RotationService

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Observed origin address of the request (peer address)."""
    return get_remote_address(request)


async def require_identity(
    request: Request,
    response: Response,
    session: Annotated[AsyncSession, Depends(get_db)],
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
) -> Identity:
    """Authenticate the request or raise the AuthError that rejected it.

    Reissued credentials are written onto the outgoing response. The identity is also kept on
    ``request.state.identity`` for the rest of this request only.
    """
    request.state.identity = None
    authenticator = RequestAuthenticator(codec, RotationService(session, codec))
    outcome = await authenticator.authenticate(read_credentials(request), get_client_ip(request))

    if isinstance(outcome, Rejected):
        auth_outcomes.labels(outcome="rejected").inc()
        auth_rejections.labels(code=outcome.error.code).inc()
        raise outcome.error
    if isinstance(outcome, CredentialUpdate):
        auth_outcomes.labels(outcome="reissued").inc()
        set_credential_cookies(response, outcome.pair)
    elif isinstance(outcome, Authenticated):
        auth_outcomes.labels(outcome="authenticated").inc()

    request.state.identity = outcome.identity
    return outcome.identity


CurrentIdentity = Annotated[Identity, Depends(require_identity)]
