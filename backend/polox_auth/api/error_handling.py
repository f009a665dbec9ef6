"""Render auth core failures as the JSON error envelope."""

from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from polox_auth.core.logging import get_logger
from polox_auth.schemas.auth import ErrorResponse
from polox_auth.services.errors import AuthCoreError, RateLimitExceededError

logger = get_logger("errors")


def _timestamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def error_response(
    status_code: int,
    error: str,
    code: str,
    *,
    headers: dict[str, str] | None = None,
    retry_after: int | None = None,
    message: str | None = None,
) -> JSONResponse:
    """Build the ``{success: false, error, code, timestamp}`` envelope."""
    body = ErrorResponse(
        error=error,
        code=code,
        timestamp=_timestamp(),
        retry_after=retry_after,
        message=message,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the envelope handlers for auth errors and validation failures."""

    @app.exception_handler(AuthCoreError)
    async def handle_auth_core_error(request: Request, exc: AuthCoreError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                f"Internal auth error: {exc.code}",
                exc_info=exc.__cause__ or exc,
                extra={"endpoint": f"{request.method} {request.url.path}", "code": exc.code},
            )
        if isinstance(exc, RateLimitExceededError):
            return error_response(
                exc.status_code,
                exc.message,
                exc.code,
                headers=exc.headers,
                retry_after=exc.retry_after,
                message=exc.detail,
            )
        return error_response(exc.status_code, exc.message, exc.code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
        logger.debug(f"Validation error on {request.method} {request.url.path}: {fields}")
        return error_response(
            422,
            "Dados inválidos",
            "VALIDATION_ERROR",
            message=", ".join(f for f in fields if f) or None,
        )
