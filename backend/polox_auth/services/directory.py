"""Read access to users and companies for the auth core."""

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from polox_auth.core.logging import get_logger
from polox_auth.models.company import Company
from polox_auth.models.user import User
from polox_auth.services.errors import store_call
from polox_auth.services.identity import Account, Role, TenantInfo

logger = get_logger("directory")

ACTIVE = "active"


def _string_set(value: object) -> frozenset[str] | None:
    if value is None:
        return frozenset()
    if not isinstance(value, list | tuple) or not all(isinstance(v, str) for v in value):
        return None
    return frozenset(value)


def build_account(user: User, company: Company) -> Account | None:
    """Validate a stored user/company pair into an Account.

    Returns None when either row is not active or the stored role or
    permission lists do not have the expected shape.
    """
    if user.status != ACTIVE or company.status != ACTIVE:
        return None
    role = Role.parse(user.role)
    permissions = _string_set(user.permissions)
    modules = _string_set(company.modules)
    if role is None or permissions is None or modules is None:
        logger.warning(f"User {user.id} has an unreadable role or permission set")
        return None
    return Account(
        user_id=user.id,
        tenant_id=company.id,
        name=user.name,
        email=user.email,
        role=role,
        permissions=permissions,
        status=user.status,
        tenant=TenantInfo(
            id=company.id,
            name=company.name,
            domain=company.domain,
            plan=company.plan,
            modules=modules,
            status=company.status,
        ),
    )


class UserDirectory:
    def __init__(self, session: AsyncSession, *, timeout: float = 5.0):
        self.session = session
        self.timeout = timeout

    async def get_user(self, user_id: uuid.UUID) -> User | None:
        result = await store_call(
            self.session.execute(
                select(User).options(selectinload(User.company)).where(User.id == user_id)
            ),
            self.timeout,
        )
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> User | None:
        result = await store_call(
            self.session.execute(
                select(User)
                .options(selectinload(User.company))
                .where(User.email == email.strip().lower())
            ),
            self.timeout,
        )
        return result.scalar_one_or_none()

    async def load_account(self, user_id: uuid.UUID) -> Account | None:
        """The active account for ``user_id``, or None if unusable."""
        user = await self.get_user(user_id)
        if user is None:
            return None
        return build_account(user, user.company)

    async def record_login(self, user: User, now: datetime) -> None:
        user.last_login_at = now
        user.failed_login_attempts = 0
        user.locked_until = None
        await store_call(self.session.flush(), self.timeout)
