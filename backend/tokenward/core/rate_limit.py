"""
Rate limiting for the credential endpoints (reissue, logout).
Keyed by the peer address; in-memory storage unless RATE_LIMIT_STORAGE_URI points at Redis.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from tokenward.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.default_rate_limit],
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.rate_limit_enabled,
)
