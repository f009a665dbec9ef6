"""Administrative endpoints for forced revocation and rate limit resets."""

from uuid import UUID

from fastapi import APIRouter, Depends

from polox_auth.api.deps import get_auth_core, get_auth_service, guard
from polox_auth.core.logging import get_logger
from polox_auth.middleware.rate_limit import ADMIN, rate_limit
from polox_auth.schemas.auth import (
    MessageResponse,
    RateLimitResetRequest,
    RateLimitResetResponse,
    RevokeSessionsResponse,
    RevokeTokenRequest,
)
from polox_auth.services.auth import AuthService
from polox_auth.services.auth_core import AuthCore
from polox_auth.services.authorizer import require_super_admin, require_tenant_admin
from polox_auth.services.identity import Identity
from polox_auth.services.pipeline import authenticate

logger = get_logger("api.admin")

router = APIRouter(prefix="/admin", tags=["admin"])

tenant_admin = guard(authenticate(), rate_limit(ADMIN), require_tenant_admin())
super_admin = guard(authenticate(), rate_limit(ADMIN), require_super_admin())


@router.post("/users/{user_id}/revoke-sessions", response_model=RevokeSessionsResponse)
async def revoke_user_sessions(
    user_id: UUID,
    identity: Identity = Depends(tenant_admin),
    auth_service: AuthService = Depends(get_auth_service),
) -> RevokeSessionsResponse:
    """Expire every session of a user.

    Company admins may only target users of their own company.
    """
    revoked = await auth_service.revoke_user_sessions(identity, user_id)
    return RevokeSessionsResponse(user_id=user_id, sessions_revoked=revoked)


@router.post("/tokens/revoke", response_model=MessageResponse)
async def revoke_token(
    body: RevokeTokenRequest,
    identity: Identity = Depends(tenant_admin),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Blacklist a specific access or refresh token until it expires."""
    await auth_service.revoke_token(identity, body.token)
    return MessageResponse(message="Token revogado")


@router.post("/rate-limits/reset", response_model=RateLimitResetResponse)
async def reset_rate_limits(
    body: RateLimitResetRequest | None = None,
    identity: Identity = Depends(super_admin),
    core: AuthCore = Depends(get_auth_core),
) -> RateLimitResetResponse:
    """Reset rate limit counters for one target, or all of them."""
    target = body.target if body else None
    removed = await core.rate_limiter.reset(target)
    logger.warning(
        f"Rate limit counters reset by super admin {identity.user_id}",
        extra={"user_id": str(identity.user_id), "target": target, "buckets_reset": removed},
    )
    return RateLimitResetResponse(buckets_reset=removed)
