"""
Per-route rate limits for both apps.

Routes carry ``@limiter.limit(user_limit)`` or ``@limiter.limit(admin_limit)``.
The limit strings are callables, so ``configure_limiter`` can apply the
configured values after the routes have been decorated.
"""

from slowapi import Limiter

from sharegate.config import RateLimitConfig
from sharegate.core.utils import get_client_ip

_limits = {
    "user": RateLimitConfig().user_limit,
    "admin": RateLimitConfig().admin_limit,
}

limiter = Limiter(key_func=get_client_ip, storage_uri="memory://")


def user_limit() -> str:
    return _limits["user"]


def admin_limit() -> str:
    return _limits["admin"]


def configure_limiter(config: RateLimitConfig) -> Limiter:
    """Apply ``config`` to the shared limiter and start counting afresh."""
    limiter.enabled = config.enabled
    _limits["user"] = config.user_limit
    _limits["admin"] = config.admin_limit
    limiter.reset()
    return limiter
