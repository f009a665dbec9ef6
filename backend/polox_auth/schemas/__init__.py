# Polo X Auth Pydantic Schemas
from polox_auth.schemas.auth import (
    ChangePasswordRequest,
    ErrorResponse,
    IdentityResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RateLimitResetRequest,
    RateLimitResetResponse,
    RefreshRequest,
    RevokeSessionsResponse,
    RevokeTokenRequest,
    SessionListResponse,
    SessionResponse,
    TokenResponse,
)

__all__ = [
    "ChangePasswordRequest",
    "ErrorResponse",
    "IdentityResponse",
    "LoginRequest",
    "LogoutRequest",
    "MessageResponse",
    "RateLimitResetRequest",
    "RateLimitResetResponse",
    "RefreshRequest",
    "RevokeSessionsResponse",
    "RevokeTokenRequest",
    "SessionListResponse",
    "SessionResponse",
    "TokenResponse",
]
