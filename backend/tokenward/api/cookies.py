"""Credential slots: the access and refresh cookies carried by every request."""

from fastapi import Request, Response

from tokenward.config import settings
from tokenward.core.authenticator import PresentedCredentials
from tokenward.core.tokens import TokenPair


def read_credentials(request: Request) -> PresentedCredentials:
    return PresentedCredentials(
        access_token=request.cookies.get(settings.access_cookie_name) or None,
        refresh_token=request.cookies.get(settings.refresh_cookie_name) or None,
    )


def _set_slot(response: Response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        path=settings.cookie_path,
        domain=settings.cookie_domain or None,
        secure=settings.cookie_secure,
        httponly=True,
        samesite=settings.cookie_samesite,
    )


def set_credential_cookies(response: Response, pair: TokenPair) -> None:
    _set_slot(response, settings.access_cookie_name, pair.access_token, settings.access_cookie_max_age)
    _set_slot(response, settings.refresh_cookie_name, pair.refresh_token, settings.refresh_cookie_max_age)


def clear_credential_cookies(response: Response) -> None:
    """Zero max-age for both slots so the client drops them."""
    _set_slot(response, settings.access_cookie_name, "", 0)
    _set_slot(response, settings.refresh_cookie_name, "", 0)
