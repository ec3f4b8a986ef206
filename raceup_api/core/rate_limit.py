"""
Request rate limiting (slowapi). A global default per client IP, plus a stricter
limit on credential endpoints (login, register, OAuth) to slow down guessing.
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from raceup_api.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.default_rate_limit],
    enabled=settings.rate_limit_enabled,
)

AUTH_RATE_LIMIT = settings.auth_rate_limit
