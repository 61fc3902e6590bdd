"""
api/limiter.py -- Shared slowapi rate limiter for the sign-in endpoints.

Both sign-in routes (POST /api/v1/auth/token and the browser POST /login)
decorate themselves with @limiter.shared_limit(login_rate_limit, scope=SIGN_IN_SCOPE).
The shared scope gives them one counter per client address, so alternating
between the two routes does not buy extra password guesses.

login_rate_limit is a callable, so slowapi reads LOGIN_RATE_LIMIT from the
current settings on every request rather than once at import.

Counters live in RATE_LIMIT_STORAGE (memory:// by default, which is per
process; point it at redis:// when running several workers).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

SIGN_IN_SCOPE = "sign-in"

limiter = Limiter(key_func=get_remote_address, storage_uri=get_settings().rate_limit_storage)


def login_rate_limit() -> str:
    return get_settings().login_rate_limit
