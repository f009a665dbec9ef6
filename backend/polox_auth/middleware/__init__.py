"""Rate limiting and response hardening for the Polo X auth core."""

from polox_auth.middleware.rate_limit import (
    ADMIN,
    AUTH,
    GENERAL,
    PASSWORD,
    TOKEN,
    LimiterPolicy,
    RateLimiter,
    rate_limit,
)
from polox_auth.middleware.rate_limit_cleanup import rate_limit_cleanup_loop
from polox_auth.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "ADMIN",
    "AUTH",
    "GENERAL",
    "PASSWORD",
    "TOKEN",
    "LimiterPolicy",
    "RateLimiter",
    "SecurityHeadersMiddleware",
    "rate_limit",
    "rate_limit_cleanup_loop",
]
