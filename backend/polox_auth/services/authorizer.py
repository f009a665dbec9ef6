"""Role, permission, module and tenant checks applied after authentication."""

import uuid
from collections.abc import Iterable
from typing import Any, NoReturn

from polox_auth.core.config import Settings
from polox_auth.core.logging import get_logger
from polox_auth.services.errors import (
    AdminRequiredError,
    AuthenticationRequiredError,
    AuthorizationError,
    InsufficientRoleError,
    ModuleNotEnabledError,
    PermissionDeniedError,
    SuperAdminRequiredError,
    TenantAccessDeniedError,
)
from polox_auth.services.identity import TENANT_ADMIN_ROLES, Identity, RequestInfo, Role
from polox_auth.services.pipeline import Gate, GateContext

logger = get_logger("authorizer")

WILDCARD = "*"

# Actions each role may perform before per-user permissions narrow them
ROLE_ACTIONS: dict[Role, frozenset[str]] = {
    Role.SUPER_ADMIN: frozenset({WILDCARD}),
    Role.COMPANY_ADMIN: frozenset({"create", "read", "update", "delete", "manage"}),
    Role.MANAGER: frozenset({"create", "read", "update", "assign", "report"}),
    Role.USER: frozenset({"create", "read", "update_own"}),
}


class Authorizer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def _deny(
        self,
        error: AuthorizationError,
        identity: Identity,
        request: RequestInfo | None,
        **details: Any,
    ) -> NoReturn:
        if self.settings.audit_log_permission_denied:
            extra = request.log_extra() if request else {}
            logger.warning(
                f"Access denied: {error.code}",
                extra={
                    **extra,
                    "code": error.code,
                    "user_id": str(identity.user_id),
                    "company_id": str(identity.tenant_id),
                    "role": identity.role.value,
                    **details,
                },
            )
        raise error

    @staticmethod
    def require_identity(identity: Identity | None) -> Identity:
        if identity is None:
            raise AuthenticationRequiredError()
        return identity

    def check_role(
        self,
        identity: Identity | None,
        roles: Iterable[Role],
        request: RequestInfo | None = None,
    ) -> Identity:
        identity = self.require_identity(identity)
        allowed = frozenset(roles)
        if identity.role not in allowed:
            self._deny(
                InsufficientRoleError(),
                identity,
                request,
                required_roles=sorted(r.value for r in allowed),
            )
        return identity

    def check_tenant_admin(
        self, identity: Identity | None, request: RequestInfo | None = None
    ) -> Identity:
        identity = self.require_identity(identity)
        if identity.role not in TENANT_ADMIN_ROLES:
            self._deny(
                AdminRequiredError(),
                identity,
                request,
                required_roles=sorted(r.value for r in TENANT_ADMIN_ROLES),
            )
        return identity

    def check_super_admin(
        self, identity: Identity | None, request: RequestInfo | None = None
    ) -> Identity:
        identity = self.require_identity(identity)
        if identity.role is not Role.SUPER_ADMIN:
            self._deny(
                SuperAdminRequiredError(),
                identity,
                request,
                required_roles=[Role.SUPER_ADMIN.value],
            )
        return identity

    def check_permission(
        self,
        identity: Identity | None,
        action: str,
        resource: str | None = None,
        request: RequestInfo | None = None,
    ) -> Identity:
        """Allow ``action`` when the role permits it and, for users with an
        explicit permission list, that list grants it too.

        Super admins always pass; company admins are not narrowed by their
        explicit permissions.
        """
        identity = self.require_identity(identity)
        if identity.role is Role.SUPER_ADMIN:
            return identity

        role_actions = ROLE_ACTIONS.get(identity.role, frozenset())
        if WILDCARD not in role_actions and action not in role_actions:
            self._deny(
                PermissionDeniedError(f"Sem permissão para '{action}'"),
                identity,
                request,
                action=action,
                resource=resource,
            )

        granted = identity.permissions
        if granted and identity.role is not Role.COMPANY_ADMIN:
            if not (
                action in granted
                or WILDCARD in granted
                or (resource is not None and f"{action}:{resource}" in granted)
            ):
                self._deny(
                    PermissionDeniedError(
                        f"Sem permissão específica para '{action}'",
                        code="USER_PERMISSION_DENIED",
                    ),
                    identity,
                    request,
                    action=action,
                    resource=resource,
                )
        return identity

    def check_module(
        self, identity: Identity | None, module: str, request: RequestInfo | None = None
    ) -> Identity:
        identity = self.require_identity(identity)
        if identity.role is Role.SUPER_ADMIN:
            return identity

        modules = identity.account.tenant.modules
        if module not in modules and WILDCARD not in modules:
            self._deny(
                ModuleNotEnabledError(f"Módulo '{module}' não habilitado para sua empresa"),
                identity,
                request,
                module_name=module,
            )

        granted = identity.permissions
        if granted and identity.role is not Role.COMPANY_ADMIN:
            if module not in granted and WILDCARD not in granted:
                self._deny(
                    PermissionDeniedError(
                        f"Sem permissão para acessar módulo '{module}'",
                        code="MODULE_PERMISSION_DENIED",
                    ),
                    identity,
                    request,
                    module_name=module,
                )
        return identity

    def check_same_tenant(
        self,
        identity: Identity | None,
        company_id: uuid.UUID,
        request: RequestInfo | None = None,
    ) -> Identity:
        """Only super admins may act on another tenant's data."""
        identity = self.require_identity(identity)
        if identity.role is not Role.SUPER_ADMIN and identity.tenant_id != company_id:
            self._deny(
                TenantAccessDeniedError(),
                identity,
                request,
                target_company_id=str(company_id),
            )
        return identity


def require_role(*roles: Role | str) -> Gate:
    allowed = frozenset(Role(r) for r in roles)

    async def require_role_gate(ctx: GateContext) -> None:
        ctx.core.authorizer.check_role(ctx.identity, allowed, ctx.request)

    return require_role_gate


def require_tenant_admin() -> Gate:
    async def require_tenant_admin_gate(ctx: GateContext) -> None:
        ctx.core.authorizer.check_tenant_admin(ctx.identity, ctx.request)

    return require_tenant_admin_gate


def require_super_admin() -> Gate:
    async def require_super_admin_gate(ctx: GateContext) -> None:
        ctx.core.authorizer.check_super_admin(ctx.identity, ctx.request)

    return require_super_admin_gate


def require_permission(action: str, resource: str | None = None) -> Gate:
    async def require_permission_gate(ctx: GateContext) -> None:
        ctx.core.authorizer.check_permission(ctx.identity, action, resource, ctx.request)

    return require_permission_gate


def require_module(module: str) -> Gate:
    async def require_module_gate(ctx: GateContext) -> None:
        ctx.core.authorizer.check_module(ctx.identity, module, ctx.request)

    return require_module_gate


def require_same_tenant(company_id: uuid.UUID) -> Gate:
    async def require_same_tenant_gate(ctx: GateContext) -> None:
        ctx.core.authorizer.check_same_tenant(ctx.identity, company_id, ctx.request)

    return require_same_tenant_gate
