"""Persisted login sessions.

A session asserts that one specific token pair is still valid for a user,
independently of the tokens' own signatures. The request path never deletes
rows; it only moves them from ``active`` to ``expired``.
"""

import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from polox_auth.core.logging import get_logger
from polox_auth.models.base import utc_now
from polox_auth.models.user_session import SESSION_ACTIVE, SESSION_EXPIRED, UserSession
from polox_auth.services.errors import store_call

logger = get_logger("sessions")


class SessionStore:
    def __init__(
        self,
        session: AsyncSession,
        *,
        timeout: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self.timeout = timeout
        self._clock = clock

    async def _execute(self, stmt: Any) -> Any:
        return await store_call(self.session.execute(stmt), self.timeout)

    async def create(
        self,
        user_id: uuid.UUID,
        company_id: uuid.UUID,
        token_id: str,
        ttl: int,
        *,
        refresh_token_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> UserSession:
        """Open a session bound to ``token_id`` that lives ``ttl`` seconds."""
        now = self._clock()
        row = UserSession(
            user_id=user_id,
            company_id=company_id,
            token_id=token_id,
            refresh_token_id=refresh_token_id,
            status=SESSION_ACTIVE,
            expires_at=now + timedelta(seconds=ttl),
            last_activity_at=now,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await store_call(self.session.flush(), self.timeout)
        return row

    async def find_active(self, user_id: uuid.UUID, token_id: str) -> UserSession | None:
        """The active session bound to access token ``token_id``, if any.

        Expiry is not checked here; callers compare ``expires_at`` themselves
        so they can expire the row lazily.
        """
        result = await self._execute(
            select(UserSession).where(
                UserSession.user_id == user_id,
                UserSession.token_id == token_id,
                UserSession.status == SESSION_ACTIVE,
            )
        )
        return result.scalar_one_or_none()

    async def find_active_by_refresh(
        self, user_id: uuid.UUID, refresh_token_id: str
    ) -> UserSession | None:
        result = await self._execute(
            select(UserSession).where(
                UserSession.user_id == user_id,
                UserSession.refresh_token_id == refresh_token_id,
                UserSession.status == SESSION_ACTIVE,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, session_id: uuid.UUID) -> UserSession | None:
        return await store_call(self.session.get(UserSession, session_id), self.timeout)

    async def touch(self, session_id: uuid.UUID, ttl: int) -> datetime:
        """Slide an active session's expiry to ``ttl`` seconds from now."""
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl)
        await self._execute(
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.status == SESSION_ACTIVE)
            .values(expires_at=expires_at, last_activity_at=now, updated_at=now)
        )
        return now

    async def expire(self, session_id: uuid.UUID) -> bool:
        """Move a session to ``expired``. Returns False if it already was."""
        result: CursorResult[Any] = await self._execute(
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.status == SESSION_ACTIVE)
            .values(status=SESSION_EXPIRED, updated_at=self._clock())
        )
        return result.rowcount > 0

    async def rotate(
        self,
        session_id: uuid.UUID,
        token_id: str,
        refresh_token_id: str,
        ttl: int,
    ) -> bool:
        """Rebind an active session to a newly issued token pair."""
        now = self._clock()
        result: CursorResult[Any] = await self._execute(
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.status == SESSION_ACTIVE)
            .values(
                token_id=token_id,
                refresh_token_id=refresh_token_id,
                expires_at=now + timedelta(seconds=ttl),
                last_activity_at=now,
                updated_at=now,
            )
        )
        return result.rowcount > 0

    async def list_active(self, user_id: uuid.UUID) -> Sequence[UserSession]:
        """Active, unexpired sessions of a user, most recent first."""
        result = await self._execute(
            select(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.status == SESSION_ACTIVE,
                UserSession.expires_at > self._clock(),
            )
            .order_by(UserSession.last_activity_at.desc())
        )
        return result.scalars().all()

    async def expire_all_for_user(
        self, user_id: uuid.UUID, except_session_id: uuid.UUID | None = None
    ) -> int:
        conditions = [UserSession.user_id == user_id, UserSession.status == SESSION_ACTIVE]
        if except_session_id is not None:
            conditions.append(UserSession.id != except_session_id)
        result: CursorResult[Any] = await self._execute(
            update(UserSession)
            .where(*conditions)
            .values(status=SESSION_EXPIRED, updated_at=self._clock())
        )
        return result.rowcount

    async def enforce_limit(self, user_id: uuid.UUID, max_sessions: int) -> int:
        """Expire the oldest active sessions so at most ``max_sessions`` remain."""
        result = await self._execute(
            select(UserSession.id)
            .where(UserSession.user_id == user_id, UserSession.status == SESSION_ACTIVE)
            .order_by(UserSession.created_at.desc())
        )
        surplus = list(result.scalars().all())[max_sessions:]
        if not surplus:
            return 0
        await self._execute(
            update(UserSession)
            .where(UserSession.id.in_(surplus))
            .values(status=SESSION_EXPIRED, updated_at=self._clock())
        )
        logger.info(f"Expired {len(surplus)} session(s) over the limit for user {user_id}")
        return len(surplus)

    async def expire_stale(self) -> int:
        """Expire every active session whose expiry has passed."""
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            update(UserSession)
            .where(UserSession.status == SESSION_ACTIVE, UserSession.expires_at <= self._clock())
            .values(status=SESSION_EXPIRED, updated_at=self._clock())
        )
        return result.rowcount
