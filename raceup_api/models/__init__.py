from raceup_api.models.user import User
from raceup_api.models.refresh_token import RefreshToken
from raceup_api.models.page_view import PageView
from raceup_api.models.audit_log import AuditLog

__all__ = [
    "User",
    "RefreshToken",
    "PageView",
    "AuditLog",
]
