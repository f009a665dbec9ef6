"""Background cleanup of idle rate limiter buckets."""

import asyncio

from polox_auth.core.logging import get_logger
from polox_auth.middleware.rate_limit import RateLimiter

logger = get_logger("rate_limit")


async def rate_limit_cleanup_loop(
    rate_limiter: RateLimiter,
    interval_seconds: float = 3600,
    inactive_seconds: int = 86400,
) -> None:
    """Periodic cleanup of inactive rate limit buckets to prevent memory leaks."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            removed = await rate_limiter.cleanup_inactive_buckets(inactive_seconds=inactive_seconds)
            if removed > 0:
                logger.debug(f"Rate limiter cleanup: removed {removed} inactive buckets")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Rate limiter cleanup error: {e}")
