"""The authentication core as one constructed service object.

``AuthCore`` owns everything that outlives a request: settings, the token
codec, the database engine, the rate limiter and the background maintenance
tasks. It is created by the application factory, initialised in the
lifespan and stored on ``app.state.auth_core``.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Coroutine
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from polox_auth.core.config import Settings
from polox_auth.core.database import build_engine, build_session_maker
from polox_auth.core.logging import get_logger
from polox_auth.middleware.rate_limit import RateLimiter
from polox_auth.middleware.rate_limit_cleanup import rate_limit_cleanup_loop
from polox_auth.models.base import utc_now
from polox_auth.services.authenticator import Authenticator
from polox_auth.services.authorizer import Authorizer
from polox_auth.services.revocation import RevocationStore
from polox_auth.services.session_store import SessionStore
from polox_auth.services.token_codec import TokenCodec

logger = get_logger("auth_core")


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


class AuthCore:
    def __init__(
        self,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
        engine: AsyncEngine | None = None,
    ):
        self.settings = settings
        self.clock = clock
        self.rate_limiter = RateLimiter(clock=monotonic)
        self.authorizer = Authorizer(settings)
        self._engine = engine
        self._owns_engine = engine is None
        self._codec: TokenCodec | None = None
        self._authenticator: Authenticator | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def codec(self) -> TokenCodec:
        if self._codec is None:
            raise RuntimeError("AuthCore.init() has not been called")
        return self._codec

    @property
    def authenticator(self) -> Authenticator:
        if self._authenticator is None:
            raise RuntimeError("AuthCore.init() has not been called")
        return self._authenticator

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            raise RuntimeError("AuthCore.init() has not been called")
        return self._session_maker

    @property
    def initialized(self) -> bool:
        return self._codec is not None

    async def init(self, *, start_background_tasks: bool = True) -> None:
        """Validate configuration, connect the store and start maintenance loops.

        Raises AuthConfigurationError when the signing keys are missing or
        weak, which aborts application startup.
        """
        if self.initialized:
            return
        settings = self.settings
        settings.validate_signing_keys()
        for warning in settings.check_security_configuration():
            logger.warning(f"Security configuration: {warning}")

        self._codec = TokenCodec.from_settings(settings, clock=self.clock)
        self._authenticator = Authenticator(self._codec, settings, clock=self.clock)
        if self._engine is None:
            self._engine = build_engine(settings)
        self._session_maker = build_session_maker(self._engine)

        if start_background_tasks:
            self._start_task(
                self._periodic(
                    "token blacklist cleanup",
                    settings.blacklist_cleanup_interval_seconds,
                    self.cleanup_expired_blacklist,
                ),
                "blacklist-cleanup",
            )
            self._start_task(
                self._periodic(
                    "stale session sweep",
                    settings.session_cleanup_interval_seconds,
                    self.expire_stale_sessions,
                ),
                "session-sweep",
            )
            self._start_task(rate_limit_cleanup_loop(self.rate_limiter), "rate-limit-cleanup")
        logger.info("Auth core initialized")

    async def close(self) -> None:
        """Cancel background tasks and release the database engine."""
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None
        self._codec = None
        self._authenticator = None
        self._session_maker = None
        logger.info("Auth core closed")

    def _start_task(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(task_done_callback)
        self._tasks.append(task)

    async def _periodic(
        self, label: str, interval_seconds: float, job: Callable[[], Awaitable[int]]
    ) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                removed = await job()
                if removed:
                    logger.info(f"{label}: {removed} row(s) affected")
            except Exception:
                logger.exception(f"Error during {label}")

    async def cleanup_expired_blacklist(self) -> int:
        """Delete blacklist entries whose expiry has passed."""
        async with self.session_maker() as db:
            removed = await RevocationStore(db, clock=self.clock).cleanup_expired()
            await db.commit()
        return removed

    async def expire_stale_sessions(self) -> int:
        """Move active sessions whose expiry has passed to ``expired``."""
        async with self.session_maker() as db:
            expired = await SessionStore(db, clock=self.clock).expire_stale()
            await db.commit()
        return expired
