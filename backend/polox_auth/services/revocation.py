"""Token blacklist backed by the ``token_blacklist`` table."""

import hashlib
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from polox_auth.core.logging import get_logger
from polox_auth.models.base import utc_now
from polox_auth.models.token_blacklist import TokenBlacklist
from polox_auth.services.errors import StoreUnavailableError, store_call

logger = get_logger("revocation")


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw token; the only form that is persisted."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class RevocationStore:
    """Revoked-token lookups and writes for one database session."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        timeout: float = 5.0,
        fail_closed: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self.timeout = timeout
        self.fail_closed = fail_closed
        self._clock = clock

    async def is_revoked(self, raw_token: str) -> bool:
        """Whether the token has an unexpired blacklist entry.

        When the store is unreachable this fails open (returns False) unless
        ``fail_closed`` is set, in which case StoreUnavailableError is raised.
        """
        stmt = select(TokenBlacklist.token_hash).where(
            TokenBlacklist.token_hash == hash_token(raw_token),
            TokenBlacklist.expires_at > self._clock(),
        )
        try:
            result = await store_call(self.session.execute(stmt), self.timeout)
        except StoreUnavailableError:
            if self.fail_closed:
                logger.error("Token blacklist unavailable; rejecting request")
                raise
            logger.warning("Token blacklist unavailable; continuing without revocation check")
            # The failed statement leaves the transaction unusable for later queries
            try:
                await store_call(self.session.rollback(), self.timeout)
            except StoreUnavailableError:
                logger.warning("Rollback after blacklist failure did not complete")
            return False
        return result.scalar_one_or_none() is not None

    async def revoke(self, raw_token: str, expires_at: datetime) -> None:
        """Blacklist a token until ``expires_at``. Revoking twice is a no-op."""
        values = {
            "token_hash": hash_token(raw_token),
            "expires_at": expires_at,
            "created_at": self._clock(),
        }
        dialect = self.session.get_bind().dialect.name
        insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
        stmt = insert(TokenBlacklist).values(**values).on_conflict_do_nothing(
            index_elements=[TokenBlacklist.token_hash]
        )
        await store_call(self.session.execute(stmt), self.timeout)

    async def cleanup_expired(self) -> int:
        """Remove entries whose expiry has passed. Returns count removed."""
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(TokenBlacklist).where(TokenBlacklist.expires_at <= self._clock())
        )
        return result.rowcount
