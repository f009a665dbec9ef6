"""Request-time authentication decision.

The checks run in a fixed order, each one a terminal failure:

1. ``Authorization: Bearer <token>`` present
2. token not on the blacklist
3. signature, issuer, audience, type and expiry valid
4. user and company exist and are active
5. an active session is bound to the token's jti in the user's tenant
6. that session has not expired

Failures 1-6 are 401s. A store timeout or error at any step is a 500 and
never yields a partial identity.
"""

import uuid
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from polox_auth.core.config import Settings
from polox_auth.core.logging import get_logger
from polox_auth.models.base import utc_now
from polox_auth.services.directory import UserDirectory
from polox_auth.services.errors import (
    AuthenticationError,
    MalformedTokenError,
    MissingTokenError,
    RevokedTokenError,
    SessionExpiredError,
    SessionInvalidError,
    UserInactiveOrNotFoundError,
    store_call,
)
from polox_auth.services.identity import Identity, RequestInfo, SessionInfo
from polox_auth.services.revocation import RevocationStore
from polox_auth.services.session_store import SessionStore
from polox_auth.services.token_codec import TokenCodec

logger = get_logger("authenticator")

BEARER_PREFIX = "Bearer "


def extract_bearer_token(authorization: str | None) -> str | None:
    """The token of a ``Bearer`` header, or None for any other shape."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX) :].strip()
    return token or None


class Authenticator:
    def __init__(
        self,
        codec: TokenCodec,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.codec = codec
        self.settings = settings
        self._clock = clock

    async def authenticate(
        self, db: AsyncSession, authorization: str | None, request: RequestInfo
    ) -> Identity:
        """Resolve the caller's identity or raise an AuthenticationError."""
        try:
            identity = await self._authenticate(db, authorization)
        except AuthenticationError as e:
            logger.warning(
                f"Authentication failed: {e.code}",
                extra={**request.log_extra(), "code": e.code},
            )
            raise

        if self.settings.audit_log_authentication:
            logger.info(
                f"Authenticated user {identity.user_id}",
                extra={
                    **request.log_extra(),
                    "user_id": str(identity.user_id),
                    "company_id": str(identity.tenant_id),
                    "role": identity.role.value,
                },
            )
        return identity

    async def authenticate_optional(
        self, db: AsyncSession, authorization: str | None, request: RequestInfo
    ) -> Identity | None:
        """Like ``authenticate`` but anonymous (None) when no bearer token is sent.

        A token that is present but invalid still fails, unless
        ``optional_auth_downgrade_invalid`` is enabled.
        """
        if extract_bearer_token(authorization) is None:
            return None
        try:
            return await self.authenticate(db, authorization, request)
        except AuthenticationError as e:
            if not self.settings.optional_auth_downgrade_invalid:
                raise
            logger.info(
                f"Optional authentication downgraded to anonymous: {e.code}",
                extra={**request.log_extra(), "code": e.code},
            )
            return None

    async def _authenticate(self, db: AsyncSession, authorization: str | None) -> Identity:
        settings = self.settings
        timeout = settings.store_timeout_seconds

        token = extract_bearer_token(authorization)
        if token is None:
            raise MissingTokenError()

        revocations = RevocationStore(
            db,
            timeout=timeout,
            fail_closed=settings.revocation_fail_closed,
            clock=self._clock,
        )
        if await revocations.is_revoked(token):
            raise RevokedTokenError()

        claims = self.codec.verify_access_token(token)
        try:
            user_id = uuid.UUID(claims.subject_id)
        except ValueError as e:
            raise MalformedTokenError() from e

        account = await UserDirectory(db, timeout=timeout).load_account(user_id)
        if account is None:
            raise UserInactiveOrNotFoundError()

        sessions = SessionStore(db, timeout=timeout, clock=self._clock)
        session = await sessions.find_active(user_id, claims.jti)
        if session is None or session.company_id != account.tenant_id:
            raise SessionInvalidError()

        now = self._clock()
        if session.expires_at <= now:
            await sessions.expire(session.id)
            # The request fails, but the transition must persist
            await store_call(db.commit(), timeout)
            raise SessionExpiredError()

        last_activity = session.last_activity_at
        if settings.extend_on_activity:
            last_activity = await sessions.touch(session.id, settings.session_timeout_seconds)

        return Identity(
            account=account,
            session=SessionInfo(
                id=session.id, token_id=session.token_id, last_activity=last_activity
            ),
            raw_token=token,
            token_expires_at=claims.expires_at,
        )
