"""FastAPI dependencies wiring requests into the auth core."""

from collections.abc import Awaitable, Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from polox_auth.core.database import get_db
from polox_auth.core.request_utils import get_client_ip, get_user_agent
from polox_auth.services.auth import AuthService
from polox_auth.services.auth_core import AuthCore
from polox_auth.services.identity import Identity, RequestInfo
from polox_auth.services.pipeline import AuthPipeline, Gate, GateContext

_BODY_METHODS = {"POST", "PUT", "PATCH"}


def get_auth_core(request: Request) -> AuthCore:
    """Dependency to get the application's auth core."""
    return request.app.state.auth_core


def get_request_info(request: Request, core: AuthCore = Depends(get_auth_core)) -> RequestInfo:
    return RequestInfo(
        ip=get_client_ip(request, core.settings.trusted_proxy_ips),
        user_agent=get_user_agent(request),
        method=request.method,
        path=request.url.path,
    )


def get_auth_service(
    core: AuthCore = Depends(get_auth_core),
    db: AsyncSession = Depends(get_db),
) -> AuthService:
    """Dependency to get auth service."""
    return AuthService(core, db)


async def _body_email(request: Request) -> str | None:
    """The ``email`` field of a JSON body, used for per-account limiter keys."""
    if request.method not in _BODY_METHODS:
        return None
    if "application/json" not in request.headers.get("content-type", ""):
        return None
    try:
        body = await request.json()
    except (ValueError, UnicodeDecodeError):
        return None
    if isinstance(body, dict) and isinstance(body.get("email"), str):
        return body["email"]
    return None


def guard(*gates: Gate) -> Callable[..., Awaitable[Identity | None]]:
    """Build a dependency that runs ``gates`` in order and yields the identity.

    The identity is None only for pipelines without an authentication gate or
    with an optional one and an anonymous caller.
    """
    pipeline = AuthPipeline(*gates)

    async def run_gates(
        request: Request,
        core: AuthCore = Depends(get_auth_core),
        db: AsyncSession = Depends(get_db),
        info: RequestInfo = Depends(get_request_info),
    ) -> Identity | None:
        ctx = GateContext(
            core=core,
            db=db,
            request=info,
            headers=request.headers,
            body_email=await _body_email(request),
        )
        return await pipeline.run(ctx)

    return run_gates
