"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the
api/routes/v1/ modules (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Two tiers:
  default_limits     -- every route, Settings.default_rate_limit per client IP
  auth_limit()       -- register/login routes, Settings.auth_rate_limit per client IP

RATE_LIMIT_ENABLED=false turns both off (the test suite does this).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings


def auth_limit() -> str:
    """Limit string for credential-issuing routes, read from settings at check time."""
    return get_settings().auth_rate_limit


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
    default_limits=[get_settings().default_rate_limit],
)
