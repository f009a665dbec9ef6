"""Error taxonomy for the authentication and authorization core.

Every per-request failure is an ``AuthCoreError`` carrying the HTTP status,
a stable machine code and the user-facing message. The API layer renders
them into the ``{success, error, code, timestamp}`` envelope.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError

T = TypeVar("T")


class AuthCoreError(Exception):
    """Base class for failures that map to an HTTP response."""

    status_code: int = 500
    code: str = "INTERNAL_AUTH_ERROR"
    message: str = "Erro interno de autenticação"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    @property
    def headers(self) -> dict[str, str] | None:
        return None


# --- 401 ---


class AuthenticationError(AuthCoreError):
    """The request could not be tied to a valid identity."""

    status_code = 401
    code = "AUTH_ERROR"
    message = "Falha na autenticação"

    @property
    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class MissingTokenError(AuthenticationError):
    code = "TOKEN_REQUIRED"
    message = "Token de acesso requerido"


class MalformedTokenError(AuthenticationError):
    code = "TOKEN_MALFORMED"
    message = "Token inválido"


class InvalidSignatureError(AuthenticationError):
    code = "TOKEN_INVALID"
    message = "Token inválido"


class ExpiredTokenError(AuthenticationError):
    code = "TOKEN_EXPIRED"
    message = "Token expirado"


class TokenIssuerMismatchError(AuthenticationError):
    code = "TOKEN_ISSUER_MISMATCH"
    message = "Token inválido"


class TokenAudienceMismatchError(AuthenticationError):
    code = "TOKEN_AUDIENCE_MISMATCH"
    message = "Token inválido"


class RevokedTokenError(AuthenticationError):
    code = "TOKEN_REVOKED"
    message = "Token inválido ou expirado"


class UserInactiveOrNotFoundError(AuthenticationError):
    """Unknown and inactive accounts share one message."""

    code = "USER_NOT_FOUND_OR_INACTIVE"
    message = "Usuário não encontrado ou inativo"


class SessionInvalidError(AuthenticationError):
    code = "SESSION_INVALID"
    message = "Sessão inválida ou expirada"


class SessionExpiredError(SessionInvalidError):
    code = "SESSION_EXPIRED"
    message = "Sessão expirada"


class AuthenticationRequiredError(AuthenticationError):
    code = "AUTH_REQUIRED"
    message = "Autenticação requerida"


class InvalidCredentialsError(AuthenticationError):
    """Unknown email and wrong password share one message."""

    code = "INVALID_CREDENTIALS"
    message = "Email ou senha inválidos"


class CurrentPasswordMismatchError(AuthCoreError):
    status_code = 400
    code = "INVALID_CURRENT_PASSWORD"
    message = "Senha atual incorreta"


class TargetUserNotFoundError(AuthCoreError):
    status_code = 404
    code = "USER_NOT_FOUND"
    message = "Usuário não encontrado"


class TokenNotRevocableError(AuthCoreError):
    status_code = 400
    code = "TOKEN_NOT_REVOCABLE"
    message = "Token inválido ou já expirado"


class AccountLockedError(AuthCoreError):
    status_code = 423
    code = "ACCOUNT_LOCKED"
    message = "Conta temporariamente bloqueada por excesso de tentativas"


# --- 403 ---


class AuthorizationError(AuthCoreError):
    """An authenticated identity is not allowed to proceed."""

    status_code = 403
    code = "FORBIDDEN"
    message = "Acesso negado"


class InsufficientRoleError(AuthorizationError):
    code = "INSUFFICIENT_ROLE"
    message = "Permissão insuficiente"


class AdminRequiredError(AuthorizationError):
    code = "ADMIN_REQUIRED"
    message = "Acesso restrito a administradores"


class SuperAdminRequiredError(AuthorizationError):
    code = "SUPER_ADMIN_REQUIRED"
    message = "Acesso restrito a super administradores"


class PermissionDeniedError(AuthorizationError):
    code = "ACTION_NOT_PERMITTED"
    message = "Sem permissão para esta ação"


class ModuleNotEnabledError(AuthorizationError):
    code = "MODULE_NOT_ENABLED"
    message = "Módulo não habilitado para sua empresa"


class TenantAccessDeniedError(AuthorizationError):
    code = "COMPANY_ACCESS_DENIED"
    message = "Acesso negado a dados de outra empresa"


# --- 429 ---


class RateLimitExceededError(AuthCoreError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    message = "Limite de requisições excedido"

    def __init__(self, message: str | None = None, *, retry_after: int, detail: str = ""):
        super().__init__(message)
        self.retry_after = retry_after
        self.detail = detail

    @property
    def headers(self) -> dict[str, str] | None:
        return {"Retry-After": str(self.retry_after)}


# --- 500 ---


class InternalAuthError(AuthCoreError):
    """Unexpected failure inside the auth pipeline; details stay in the logs."""


class StoreUnavailableError(InternalAuthError):
    """The relational store timed out or failed during an auth round-trip."""


async def store_call(awaitable: Awaitable[T], timeout: float) -> T:
    """Await a store round-trip, bounded by ``timeout`` seconds.

    Timeouts and database errors surface as ``StoreUnavailableError`` so they
    are never confused with a credential failure.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError as e:
        raise StoreUnavailableError() from e
    except SQLAlchemyError as e:
        raise StoreUnavailableError() from e
