from tokenward.models.audit_log import AuditLog
from tokenward.models.refresh_token import RefreshRecord, RefreshTokenTombstone
from tokenward.models.user import User

__all__ = [
    "AuditLog",
    "RefreshRecord",
    "RefreshTokenTombstone",
    "User",
]
