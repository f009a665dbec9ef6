"""Sliding-log rate limiting for the auth endpoints and general API traffic."""

import asyncio
import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from polox_auth.core.logging import get_logger
from polox_auth.services.errors import RateLimitExceededError
from polox_auth.services.identity import Identity, Role
from polox_auth.services.pipeline import Gate, GateContext

logger = get_logger("rate_limit")

OVERRIDE_HEADER = "x-rate-limit-override"
TARGET_HEADER = "x-rate-limit-target"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """In-memory sliding-log limiter.

    Each key keeps the timestamps of its accepted hits inside the trailing
    window, so no key ever exceeds ``limit`` hits in any window-long span.
    Rejected hits are not recorded. Counters are per process.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._buckets: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def hit(self, key: str, limit: int, window_seconds: float) -> RateLimitDecision:
        """Record a hit for ``key`` unless it would exceed ``limit``."""
        async with self._lock:
            now = self._clock()
            bucket = self._buckets.setdefault(key, deque())
            cutoff = now - window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= limit:
                # Time until the oldest hit leaves the window
                retry_after = max(1, math.ceil(bucket[0] + window_seconds - now))
                return RateLimitDecision(False, limit, 0, retry_after)

            bucket.append(now)
            return RateLimitDecision(True, limit, limit - len(bucket))

    async def get_stats(self) -> dict[str, int]:
        """Current hit count per key."""
        async with self._lock:
            return {key: len(bucket) for key, bucket in self._buckets.items()}

    async def reset(self, target: str | None = None) -> int:
        """Drop counters for every key that mentions ``target``, or all of them.

        ``target`` may be a full key, an IP, a user id or an ``ip:email`` pair.
        Returns the number of buckets removed.
        """
        async with self._lock:
            if target is None:
                removed = len(self._buckets)
                self._buckets.clear()
                return removed
            keys_to_remove = [key for key in self._buckets if _key_matches(key, target)]
            for key in keys_to_remove:
                del self._buckets[key]
            return len(keys_to_remove)

    async def cleanup_inactive_buckets(self, inactive_seconds: int = 86400) -> int:
        """Remove buckets with no hit in the last ``inactive_seconds``.

        Returns:
            Number of buckets removed
        """
        async with self._lock:
            cutoff = self._clock() - inactive_seconds
            keys_to_remove = [
                key for key, bucket in self._buckets.items() if not bucket or bucket[-1] < cutoff
            ]
            for key in keys_to_remove:
                del self._buckets[key]

            if keys_to_remove:
                logger.info(f"Cleaned up {len(keys_to_remove)} inactive rate limit buckets")

            return len(keys_to_remove)


def _key_matches(key: str, target: str) -> bool:
    # Stored keys are "<limiter>:<caller key>"
    _, _, caller_key = key.partition(":")
    return (
        key == target
        or caller_key == target
        or caller_key.startswith(f"{target}:")
        or caller_key.endswith(f":{target}")
    )


def _ip_email_key(ctx: GateContext) -> str:
    email = ctx.body_email
    if email is None and ctx.identity is not None:
        email = ctx.identity.account.email
    return f"{ctx.request.ip}:{(email or '').strip().lower()}"


def _ip_key(ctx: GateContext) -> str:
    return ctx.request.ip


def _caller_key(ctx: GateContext) -> str:
    if ctx.identity is not None:
        return f"user:{ctx.identity.user_id}"
    return f"ip:{ctx.request.ip}"


GENERAL_TIERS: dict[Role | None, int] = {
    Role.SUPER_ADMIN: 1000,
    Role.COMPANY_ADMIN: 500,
    Role.MANAGER: 300,
    Role.USER: 200,
    None: 100,
}


@dataclass(frozen=True)
class LimiterPolicy:
    name: str
    window_seconds: int
    max_requests: int | Callable[[Identity | None], int]
    key_func: Callable[[GateContext], str]
    error: str
    message: str

    def limit_for(self, identity: Identity | None) -> int:
        if callable(self.max_requests):
            return self.max_requests(identity)
        return self.max_requests


def _general_limit(identity: Identity | None) -> int:
    return GENERAL_TIERS[identity.role if identity is not None else None]


AUTH = LimiterPolicy(
    name="auth",
    window_seconds=15 * 60,
    max_requests=5,
    key_func=_ip_email_key,
    error="Muitas tentativas de login",
    message="Aguarde 15 minutos antes de tentar novamente",
)

TOKEN = LimiterPolicy(
    name="token",
    window_seconds=5 * 60,
    max_requests=10,
    key_func=_ip_key,
    error="Muitas tentativas de renovação de token",
    message="Aguarde 5 minutos antes de tentar novamente",
)

PASSWORD = LimiterPolicy(
    name="password",
    window_seconds=60 * 60,
    max_requests=3,
    key_func=_ip_email_key,
    error="Muitas tentativas de recuperação de senha",
    message="Aguarde 1 hora antes de solicitar nova recuperação",
)

GENERAL = LimiterPolicy(
    name="general",
    window_seconds=15 * 60,
    max_requests=_general_limit,
    key_func=_caller_key,
    error="Limite de requisições excedido",
    message="Aguarde antes de fazer mais requisições",
)

ADMIN = LimiterPolicy(
    name="admin",
    window_seconds=10 * 60,
    max_requests=50,
    key_func=_caller_key,
    error="Limite de operações administrativas excedido",
    message="Aguarde antes de realizar mais operações administrativas",
)


async def _apply_override(ctx: GateContext, policy: LimiterPolicy) -> bool:
    """Handle ``X-Rate-Limit-Override``; True when this request bypasses limits."""
    if ctx.headers.get(OVERRIDE_HEADER, "").lower() != "true":
        return False

    identity = ctx.identity
    target = ctx.headers.get(TARGET_HEADER)
    if identity is None or not identity.is_super_admin:
        logger.warning(
            "Ignoring rate limit override from non-super-admin caller",
            extra={
                **ctx.request.log_extra(),
                "limiter": policy.name,
                "user_id": str(identity.user_id) if identity else None,
            },
        )
        return False

    removed = 0
    if target:
        removed = await ctx.core.rate_limiter.reset(target)
    logger.warning(
        f"Rate limit override used by super admin {identity.user_id}",
        extra={
            **ctx.request.log_extra(),
            "limiter": policy.name,
            "user_id": str(identity.user_id),
            "target": target,
            "buckets_reset": removed,
        },
    )
    return True


def rate_limit(policy: LimiterPolicy) -> Gate:
    """Gate enforcing ``policy`` for the current caller."""

    async def rate_limit_gate(ctx: GateContext) -> None:
        if ctx.core.settings.rate_limiting_skipped:
            return
        if await _apply_override(ctx, policy):
            return

        key = f"{policy.name}:{policy.key_func(ctx)}"
        decision = await ctx.core.rate_limiter.hit(
            key, policy.limit_for(ctx.identity), policy.window_seconds
        )
        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded ({policy.name})",
                extra={
                    **ctx.request.log_extra(),
                    "limiter": policy.name,
                    "user_id": str(ctx.identity.user_id) if ctx.identity else None,
                    "retry_after": decision.retry_after,
                },
            )
            raise RateLimitExceededError(
                policy.error, retry_after=decision.retry_after, detail=policy.message
            )

    return rate_limit_gate
