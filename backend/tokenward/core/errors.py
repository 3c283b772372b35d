"""Authentication failures. Every one is scoped to a single request and maps to HTTP 401."""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication failures."""

    code = "unauthenticated"
    default_detail = "Not authenticated"
    # When True the client-held access and refresh credentials are cleared as well
    clears_credentials = False

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class Unauthenticated(AuthError):
    pass


class DecodeFailure(AuthError):
    code = "decode_failure"
    default_detail = "Invalid token"


class ExpiredToken(AuthError):
    code = "expired_token"
    default_detail = "Token has expired"


class CategoryMismatch(AuthError):
    code = "category_mismatch"
    default_detail = "Token category is not valid for this operation"


class InvalidOrExpiredRefreshToken(AuthError):
    """No ledger record for an authentic, unexpired refresh token (expired at the store or reused)."""

    code = "invalid_or_expired_refresh_token"
    default_detail = "Invalid or expired refresh token"


class TokenReuseDetected(InvalidOrExpiredRefreshToken):
    """The refresh token is known to have been rotated already."""

    code = "token_reuse_detected"
    default_detail = "Refresh token has already been used"


class OriginMismatch(AuthError):
    code = "origin_mismatch"
    default_detail = "Request origin does not match the token. Please sign in again."
    clears_credentials = True
