"""Ordered gate pipeline run before a route handler.

A gate is an async callable that inspects and enriches a ``GateContext`` and
raises an ``AuthCoreError`` to stop the request. Routes compose the gates
they need, e.g. ``AuthPipeline(authenticate(), rate_limit(GENERAL),
require_tenant_admin())``.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession

from polox_auth.core.logging import get_logger
from polox_auth.services.errors import AuthCoreError, InternalAuthError
from polox_auth.services.identity import Identity, RequestInfo

if TYPE_CHECKING:
    from polox_auth.services.auth_core import AuthCore

logger = get_logger("pipeline")


@dataclass
class GateContext:
    core: "AuthCore"
    db: AsyncSession
    request: RequestInfo
    headers: Mapping[str, str] = field(default_factory=dict)
    body_email: str | None = None
    identity: Identity | None = None

    @property
    def authorization(self) -> str | None:
        return self.headers.get("authorization")


Gate = Callable[[GateContext], Awaitable[None]]


class AuthPipeline:
    def __init__(self, *gates: Gate):
        self.gates = gates

    async def run(self, ctx: GateContext) -> Identity | None:
        """Run every gate in order and return the resulting identity.

        Anything other than an AuthCoreError escaping a gate is logged and
        replaced by InternalAuthError so no internals reach the client.
        """
        for gate in self.gates:
            try:
                await gate(ctx)
            except AuthCoreError:
                raise
            except Exception as e:
                logger.exception(
                    f"Unexpected error in auth gate {getattr(gate, '__qualname__', gate)!s}",
                    extra=ctx.request.log_extra(),
                )
                raise InternalAuthError() from e
        return ctx.identity


def authenticate() -> Gate:
    """Gate requiring a valid bearer token and live session."""

    async def authenticate_gate(ctx: GateContext) -> None:
        ctx.identity = await ctx.core.authenticator.authenticate(
            ctx.db, ctx.authorization, ctx.request
        )

    return authenticate_gate


def optional_authenticate() -> Gate:
    """Gate that leaves the caller anonymous when no bearer token is sent."""

    async def optional_authenticate_gate(ctx: GateContext) -> None:
        ctx.identity = await ctx.core.authenticator.authenticate_optional(
            ctx.db, ctx.authorization, ctx.request
        )

    return optional_authenticate_gate
