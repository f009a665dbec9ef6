"""Authentication API endpoints."""

from fastapi import APIRouter, Depends

from polox_auth.api.deps import get_auth_core, get_auth_service, get_request_info, guard
from polox_auth.core.logging import get_logger
from polox_auth.middleware.rate_limit import AUTH, GENERAL, PASSWORD, TOKEN, rate_limit
from polox_auth.schemas.auth import (
    ChangePasswordRequest,
    IdentityResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    SessionListResponse,
    SessionResponse,
    TokenResponse,
)
from polox_auth.services.auth import AuthService
from polox_auth.services.auth_core import AuthCore
from polox_auth.services.identity import Identity, RequestInfo
from polox_auth.services.pipeline import authenticate

logger = get_logger("api.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse, dependencies=[Depends(guard(rate_limit(AUTH)))])
async def login(
    body: LoginRequest,
    info: RequestInfo = Depends(get_request_info),
    core: AuthCore = Depends(get_auth_core),
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Authenticate with email and password and open a new session.

    Rate limited to 5 attempts per 15 minutes per IP and email.
    """
    issued = await auth_service.login(body.email, body.password, info)
    return TokenResponse.from_issued(issued, core.settings.access_token_ttl)


@router.post(
    "/refresh", response_model=TokenResponse, dependencies=[Depends(guard(rate_limit(TOKEN)))]
)
async def refresh_tokens(
    body: RefreshRequest,
    info: RequestInfo = Depends(get_request_info),
    core: AuthCore = Depends(get_auth_core),
    auth_service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Exchange a refresh token for a new token pair (rotation)."""
    issued = await auth_service.refresh(body.refresh_token, info)
    return TokenResponse.from_issued(issued, core.settings.access_token_ttl)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: LogoutRequest | None = None,
    identity: Identity = Depends(guard(authenticate())),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """End the current session.

    The access token is blacklisted for the rest of its lifetime; a refresh
    token sent in the body is blacklisted too.
    """
    await auth_service.logout(identity, body.refresh_token if body else None)
    return MessageResponse(message="Logout realizado com sucesso")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    body: LogoutRequest | None = None,
    identity: Identity = Depends(guard(authenticate())),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """End every session of the current user."""
    expired = await auth_service.logout(
        identity, body.refresh_token if body else None, all_sessions=True
    )
    return MessageResponse(message=f"{expired} sessão(ões) encerrada(s)")


@router.post(
    "/change-password",
    response_model=MessageResponse,
)
async def change_password(
    body: ChangePasswordRequest,
    identity: Identity = Depends(guard(authenticate(), rate_limit(PASSWORD))),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Change the current user's password.

    Every session of the user is ended; the user must log in again.
    """
    await auth_service.change_password(identity, body.current_password, body.new_password)
    return MessageResponse(message="Senha alterada com sucesso. Faça login novamente.")


@router.get("/me", response_model=IdentityResponse)
async def get_current_user_info(
    identity: Identity = Depends(guard(authenticate(), rate_limit(GENERAL))),
) -> IdentityResponse:
    """Get the current user's identity."""
    return IdentityResponse.from_identity(identity)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    identity: Identity = Depends(guard(authenticate(), rate_limit(GENERAL))),
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionListResponse:
    """List the current user's active sessions."""
    rows = await auth_service.list_sessions(identity)
    return SessionListResponse(
        sessions=[SessionResponse.from_row(row, identity.session_id) for row in rows]
    )
