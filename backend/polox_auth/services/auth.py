"""Token lifecycle operations: login, refresh, logout and revocation."""

import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from functools import cache
from typing import TYPE_CHECKING

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from sqlalchemy.ext.asyncio import AsyncSession

from polox_auth.core.logging import get_logger
from polox_auth.models.user_session import UserSession
from polox_auth.services.directory import UserDirectory, build_account
from polox_auth.services.errors import (
    AccountLockedError,
    AuthCoreError,
    AuthenticationError,
    CurrentPasswordMismatchError,
    InvalidCredentialsError,
    InvalidSignatureError,
    MalformedTokenError,
    RevokedTokenError,
    SessionExpiredError,
    SessionInvalidError,
    TargetUserNotFoundError,
    TokenNotRevocableError,
    UserInactiveOrNotFoundError,
    store_call,
)
from polox_auth.services.identity import Account, Identity, RequestInfo
from polox_auth.services.revocation import RevocationStore
from polox_auth.services.session_store import SessionStore
from polox_auth.services.token_codec import IssuedToken, TokenClaims

if TYPE_CHECKING:
    from polox_auth.services.auth_core import AuthCore

logger = get_logger("auth")

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except (VerifyMismatchError, InvalidHashError):
        return False


@cache
def _dummy_hash() -> str:
    return hash_password("polox-dummy-password")


@dataclass(frozen=True)
class IssuedSession:
    """Tokens handed to a client together with the session backing them."""

    account: Account
    session: UserSession
    access: IssuedToken
    refresh: IssuedToken


class AuthService:
    """Service for token lifecycle operations within one database session."""

    def __init__(self, core: "AuthCore", session: AsyncSession):
        self.core = core
        self.session = session
        self.settings = core.settings
        self._clock = core.clock
        timeout = self.settings.store_timeout_seconds
        self.directory = UserDirectory(session, timeout=timeout)
        self.sessions = SessionStore(session, timeout=timeout, clock=core.clock)
        self.revocations = RevocationStore(
            session,
            timeout=timeout,
            fail_closed=self.settings.revocation_fail_closed,
            clock=core.clock,
        )

    async def _commit(self) -> None:
        await store_call(self.session.commit(), self.settings.store_timeout_seconds)

    async def _open_session(self, account: Account, request: RequestInfo) -> IssuedSession:
        codec = self.core.codec
        access = codec.issue_access_token(account.user_id)
        refresh = codec.issue_refresh_token(account.user_id)
        # Make room for the new session within the per-user limit
        await self.sessions.enforce_limit(
            account.user_id, self.settings.max_sessions_per_user - 1
        )
        row = await self.sessions.create(
            account.user_id,
            account.tenant_id,
            access.jti,
            self.settings.session_timeout_seconds,
            refresh_token_id=refresh.jti,
            ip_address=request.ip,
            user_agent=request.user_agent,
        )
        return IssuedSession(account=account, session=row, access=access, refresh=refresh)

    async def login(self, email: str, password: str, request: RequestInfo) -> IssuedSession:
        """Check credentials and open a new session.

        Unknown email and wrong password raise the same InvalidCredentialsError.
        Repeated failures lock the account for ``lockout_duration_minutes``.
        """
        user = await self.directory.get_user_by_email(email)
        if user is None:
            # Perform a dummy verification to keep timing uniform
            verify_password(password, _dummy_hash())
            logger.warning("Login failed: unknown email", extra=request.log_extra())
            raise InvalidCredentialsError()

        now = self._clock()
        if user.locked_until is not None and user.locked_until > now:
            logger.warning(
                "Login rejected: account locked",
                extra={**request.log_extra(), "user_id": str(user.id)},
            )
            raise AccountLockedError()

        if not verify_password(password, user.password_hash):
            user.failed_login_attempts += 1
            locked = user.failed_login_attempts >= self.settings.max_failed_login_attempts
            if locked:
                user.locked_until = now + timedelta(
                    minutes=self.settings.lockout_duration_minutes
                )
                user.failed_login_attempts = 0
            # Persist the counter even though the request fails
            await self._commit()
            logger.warning(
                "Login failed: wrong password",
                extra={**request.log_extra(), "user_id": str(user.id), "locked": locked},
            )
            if locked:
                raise AccountLockedError()
            raise InvalidCredentialsError()

        account = build_account(user, user.company)
        if account is None:
            logger.warning(
                "Login rejected: user or company inactive",
                extra={**request.log_extra(), "user_id": str(user.id)},
            )
            raise UserInactiveOrNotFoundError()

        issued = await self._open_session(account, request)
        await self.directory.record_login(user, now)
        logger.info(
            f"User logged in: {user.email}",
            extra={**request.log_extra(), "user_id": str(user.id)},
        )
        return issued

    async def _verify_refresh(self, refresh_token: str) -> TokenClaims:
        if await self.revocations.is_revoked(refresh_token):
            raise RevokedTokenError()
        return self.core.codec.verify_refresh_token(refresh_token)

    async def refresh(self, refresh_token: str, request: RequestInfo) -> IssuedSession:
        """Exchange a refresh token for a new token pair on the same session.

        The presented refresh token is blacklisted; the previous access token
        stops working because the session no longer points at its jti.
        """
        try:
            claims = await self._verify_refresh(refresh_token)
            try:
                user_id = uuid.UUID(claims.subject_id)
            except ValueError as e:
                raise MalformedTokenError() from e

            account = await self.directory.load_account(user_id)
            if account is None:
                raise UserInactiveOrNotFoundError()

            row = await self.sessions.find_active_by_refresh(user_id, claims.jti)
            if row is None or row.company_id != account.tenant_id:
                raise SessionInvalidError()
            if row.expires_at <= self._clock():
                await self.sessions.expire(row.id)
                await self._commit()
                raise SessionExpiredError()
        except AuthCoreError as e:
            logger.warning(
                f"Token refresh failed: {e.code}",
                extra={**request.log_extra(), "code": e.code},
            )
            raise

        codec = self.core.codec
        access = codec.issue_access_token(user_id)
        refresh = codec.issue_refresh_token(user_id)
        await self.sessions.rotate(
            row.id, access.jti, refresh.jti, self.settings.session_timeout_seconds
        )
        await self.revocations.revoke(refresh_token, claims.expires_at)

        if self.settings.audit_log_token_refresh:
            logger.info(
                f"Tokens refreshed for user {user_id}",
                extra={
                    **request.log_extra(),
                    "user_id": str(user_id),
                    "session_id": str(row.id),
                },
            )
        return IssuedSession(account=account, session=row, access=access, refresh=refresh)

    async def _revoke_own_refresh_token(self, identity: Identity, refresh_token: str) -> None:
        try:
            claims = self.core.codec.verify_refresh_token(refresh_token)
        except AuthCoreError as e:
            logger.debug(f"Refresh token not revoked on logout: {e.code}")
            return
        if claims.subject_id != str(identity.user_id):
            logger.warning(
                "Refresh token presented on logout belongs to another user",
                extra={"user_id": str(identity.user_id)},
            )
            return
        await self.revocations.revoke(refresh_token, claims.expires_at)

    async def logout(
        self,
        identity: Identity,
        refresh_token: str | None = None,
        *,
        all_sessions: bool = False,
    ) -> int:
        """End the caller's session (or all of them). Returns sessions expired."""
        await self.revocations.revoke(identity.raw_token, identity.token_expires_at)
        if refresh_token:
            await self._revoke_own_refresh_token(identity, refresh_token)

        expired = 1 if await self.sessions.expire(identity.session_id) else 0
        if all_sessions:
            expired += await self.sessions.expire_all_for_user(identity.user_id)

        logger.info(
            f"User logged out: {identity.account.email}",
            extra={
                "user_id": str(identity.user_id),
                "session_id": str(identity.session_id),
                "all_sessions": all_sessions,
            },
        )
        return expired

    async def change_password(
        self, identity: Identity, current_password: str, new_password: str
    ) -> int:
        """Replace the password and end every session of the user.

        The access token used for the change is blacklisted; the user must log
        in again. Returns the number of sessions expired.
        """
        user = await self.directory.get_user(identity.user_id)
        if user is None:
            raise UserInactiveOrNotFoundError()
        if not verify_password(current_password, user.password_hash):
            raise CurrentPasswordMismatchError()

        user.password_hash = hash_password(new_password)
        await store_call(self.session.flush(), self.settings.store_timeout_seconds)
        await self.revocations.revoke(identity.raw_token, identity.token_expires_at)
        expired = await self.sessions.expire_all_for_user(identity.user_id)

        logger.info(
            f"Password changed for user: {identity.account.email}",
            extra={"user_id": str(identity.user_id), "sessions_expired": expired},
        )
        return expired

    async def list_sessions(self, identity: Identity) -> Sequence[UserSession]:
        return await self.sessions.list_active(identity.user_id)

    async def revoke_user_sessions(self, actor: Identity, user_id: uuid.UUID) -> int:
        """Expire every session of ``user_id`` on behalf of an administrator.

        Company admins may only target users of their own tenant.
        """
        user = await self.directory.get_user(user_id)
        if user is None:
            raise TargetUserNotFoundError()
        self.core.authorizer.check_same_tenant(actor, user.company_id)

        expired = await self.sessions.expire_all_for_user(user_id)
        logger.warning(
            f"Sessions of user {user_id} revoked by {actor.user_id}",
            extra={
                "user_id": str(actor.user_id),
                "target_user_id": str(user_id),
                "sessions_expired": expired,
            },
        )
        return expired

    async def revoke_token(self, actor: Identity, raw_token: str) -> TokenClaims:
        """Blacklist a specific access or refresh token on behalf of an administrator."""
        codec = self.core.codec
        try:
            try:
                claims = codec.verify_access_token(raw_token)
            except (MalformedTokenError, InvalidSignatureError):
                # Not an access token; try it as a refresh token
                claims = codec.verify_refresh_token(raw_token)
            owner_id = uuid.UUID(claims.subject_id)
        except (AuthenticationError, ValueError) as e:
            raise TokenNotRevocableError() from e
        owner = await self.directory.get_user(owner_id)
        if owner is None:
            raise TargetUserNotFoundError()
        self.core.authorizer.check_same_tenant(actor, owner.company_id)

        await self.revocations.revoke(raw_token, claims.expires_at)
        logger.warning(
            f"Token {claims.jti} of user {owner_id} revoked by {actor.user_id}",
            extra={"user_id": str(actor.user_id), "target_user_id": str(owner_id)},
        )
        return claims
