"""Health check endpoint with database connectivity check."""

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from polox_auth.api.deps import get_auth_core
from polox_auth.core.database import check_db_connection
from polox_auth.services.auth_core import AuthCore

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_check(
    response: Response, core: AuthCore = Depends(get_auth_core)
) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if the database is unavailable.
    """
    db_healthy = await check_db_connection(core.session_maker)

    # Set appropriate status code for container orchestration
    if not db_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if db_healthy else "unhealthy",
        version=core.settings.app_version,
        database="connected" if db_healthy else "disconnected",
    )
