"""Value types describing who is making a request."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class Role(StrEnum):
    SUPER_ADMIN = "super_admin"
    COMPANY_ADMIN = "company_admin"
    MANAGER = "manager"
    USER = "user"

    @classmethod
    def parse(cls, value: object) -> "Role | None":
        """Return the role for a stored value, or None when it is not one."""
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


TENANT_ADMIN_ROLES = frozenset({Role.SUPER_ADMIN, Role.COMPANY_ADMIN})


@dataclass(frozen=True)
class RequestInfo:
    """Request metadata used for logging and rate limit keys."""

    ip: str
    user_agent: str = "unknown"
    method: str = "GET"
    path: str = "/"

    @property
    def endpoint(self) -> str:
        return f"{self.method} {self.path}"

    def log_extra(self) -> dict[str, str]:
        return {"ip": self.ip, "user_agent": self.user_agent, "endpoint": self.endpoint}


@dataclass(frozen=True)
class TenantInfo:
    id: uuid.UUID
    name: str
    domain: str | None
    plan: str
    modules: frozenset[str]
    status: str


@dataclass(frozen=True)
class Account:
    """An active user together with its active tenant, as read from storage."""

    user_id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    email: str
    role: Role
    permissions: frozenset[str]
    status: str
    tenant: TenantInfo


@dataclass(frozen=True)
class SessionInfo:
    id: uuid.UUID
    token_id: str
    last_activity: datetime


@dataclass(frozen=True)
class Identity:
    """An authenticated caller bound to one live session."""

    account: Account
    session: SessionInfo
    # The bearer token that authenticated the request; needed to revoke it
    raw_token: str = field(repr=False, compare=False)
    token_expires_at: datetime = field(compare=False)

    @property
    def user_id(self) -> uuid.UUID:
        return self.account.user_id

    @property
    def tenant_id(self) -> uuid.UUID:
        return self.account.tenant_id

    @property
    def role(self) -> Role:
        return self.account.role

    @property
    def permissions(self) -> frozenset[str]:
        return self.account.permissions

    @property
    def session_id(self) -> uuid.UUID:
        return self.session.id

    @property
    def token_id(self) -> str:
        return self.session.token_id

    @property
    def is_super_admin(self) -> bool:
        return self.account.role is Role.SUPER_ADMIN
