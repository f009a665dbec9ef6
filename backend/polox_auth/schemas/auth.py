"""Pydantic schemas for the authentication API.

Responses are serialised in camelCase; requests accept camelCase or
snake_case field names.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from polox_auth.models.user_session import UserSession
from polox_auth.services.auth import IssuedSession
from polox_auth.services.identity import Account, Identity


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(CamelModel):
    """Request for login."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(CamelModel):
    """Request for token refresh."""

    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(CamelModel):
    """Request for logout with optional refresh token revocation."""

    refresh_token: str | None = Field(
        None,
        description="Refresh token to revoke. If provided, it is blacklisted to prevent reuse.",
    )


class ChangePasswordRequest(CamelModel):
    """Request for password change."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(
        ...,
        min_length=12,
        max_length=128,
        description="New password (minimum 12 characters)",
    )


class RevokeTokenRequest(CamelModel):
    token: str = Field(..., min_length=1)


class MessageResponse(CamelModel):
    """Generic message response."""

    success: bool = True
    message: str


class CompanyResponse(CamelModel):
    id: UUID
    name: str
    domain: str | None
    plan: str
    modules: list[str]
    status: str


class SessionSummary(CamelModel):
    id: UUID
    token_id: str
    last_activity: datetime


class IdentityResponse(CamelModel):
    """The authenticated caller as exposed to clients."""

    id: UUID
    company_id: UUID
    name: str
    email: str
    role: str
    permissions: list[str]
    status: str
    company: CompanyResponse
    session: SessionSummary | None = None

    @classmethod
    def from_account(cls, account: Account, session: SessionSummary | None = None):
        tenant = account.tenant
        return cls(
            id=account.user_id,
            company_id=account.tenant_id,
            name=account.name,
            email=account.email,
            role=account.role.value,
            permissions=sorted(account.permissions),
            status=account.status,
            company=CompanyResponse(
                id=tenant.id,
                name=tenant.name,
                domain=tenant.domain,
                plan=tenant.plan,
                modules=sorted(tenant.modules),
                status=tenant.status,
            ),
            session=session,
        )

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls.from_account(
            identity.account,
            SessionSummary(
                id=identity.session.id,
                token_id=identity.session.token_id,
                last_activity=identity.session.last_activity,
            ),
        )


class TokenResponse(CamelModel):
    """Response with a freshly issued token pair."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(description="Access token lifetime in seconds")
    expires_at: datetime
    refresh_expires_at: datetime
    user: IdentityResponse

    @classmethod
    def from_issued(cls, issued: IssuedSession, expires_in: int) -> "TokenResponse":
        return cls(
            access_token=issued.access.token,
            refresh_token=issued.refresh.token,
            expires_in=expires_in,
            expires_at=issued.access.expires_at,
            refresh_expires_at=issued.refresh.expires_at,
            user=IdentityResponse.from_account(
                issued.account,
                SessionSummary(
                    id=issued.session.id,
                    token_id=issued.access.jti,
                    last_activity=issued.session.last_activity_at,
                ),
            ),
        )


class SessionResponse(CamelModel):
    """One of the caller's active sessions (device list entry)."""

    id: UUID
    ip_address: str | None
    user_agent: str | None
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    is_current: bool

    @classmethod
    def from_row(cls, row: UserSession, current_session_id: UUID) -> "SessionResponse":
        return cls(
            id=row.id,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            created_at=row.created_at,
            last_activity=row.last_activity_at,
            expires_at=row.expires_at,
            is_current=row.id == current_session_id,
        )


class SessionListResponse(CamelModel):
    sessions: list[SessionResponse]


class RevokeSessionsResponse(CamelModel):
    success: bool = True
    user_id: UUID
    sessions_revoked: int


class RateLimitResetRequest(CamelModel):
    target: str | None = Field(
        None, description="Key, IP, user id or ip:email to reset; all counters when omitted"
    )


class RateLimitResetResponse(CamelModel):
    success: bool = True
    buckets_reset: int


class ErrorResponse(BaseModel):
    """Envelope returned for every failed request."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    error: str
    code: str
    timestamp: str
    retry_after: int | None = Field(None, alias="retryAfter")
    message: str | None = None
