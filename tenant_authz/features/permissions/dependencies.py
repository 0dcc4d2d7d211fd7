"""
FastAPI dependencies for route protection.

Usage:
    @router.patch("/contracts/{contract_id}")
    async def update_contract(
        contract_id: str,
        ctx: GuardContext = Depends(require_permission("contract:update:own")),
    ):
        # ctx.user_id, ctx.scope.tenant_id, ctx.scope.party_id
        ...
"""
from typing import Iterable, List, Optional
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.core.database.engine import get_db
from tenant_authz.features.organizations.scope import TenantScopeResolver
from tenant_authz.features.permissions.catalog import get_catalog
from tenant_authz.features.permissions.guard import GuardContext, RequestGuard
from tenant_authz.features.permissions.resolver import MatchMode, PermissionResolver
from tenant_authz.features.users.dependencies import get_current_actor_id


async def get_permission_resolver(db: AsyncSession = Depends(get_db)) -> PermissionResolver:
    return PermissionResolver(db, get_catalog())


async def get_tenant_scope_resolver(db: AsyncSession = Depends(get_db)) -> TenantScopeResolver:
    return TenantScopeResolver(db)


async def get_request_guard(
    resolver: PermissionResolver = Depends(get_permission_resolver),
    scopes: TenantScopeResolver = Depends(get_tenant_scope_resolver),
) -> RequestGuard:
    return RequestGuard(resolver, scopes)


def require_permission(
    permission: str,
    allowed_roles: Optional[Iterable[str]] = None,
    for_write: bool = False,
):
    """
    FastAPI dependency requiring one permission.

    The permission is validated against the catalog when the route module
    is imported.

    Raises:
        Unauthenticated: no verified actor (401)
        Unauthorized / ResolutionError: permission not held (403)
    """
    permission = get_catalog().require(permission)
    roles = frozenset(allowed_roles or ())

    async def permission_dependency(
        user_id: Optional[str] = Depends(get_current_actor_id),
        guard: RequestGuard = Depends(get_request_guard),
    ) -> GuardContext:
        return await guard.check(user_id, permission, MatchMode.ALL, roles, for_write)

    return permission_dependency


def require_any_permission(
    permissions: List[str],
    allowed_roles: Optional[Iterable[str]] = None,
    for_write: bool = False,
):
    """
    FastAPI dependency requiring ANY of the listed permissions.

    Usage:
        ctx: GuardContext = Depends(require_any_permission(["contract:read:own", "contract:read:all"]))
    """
    catalog = get_catalog()
    checked = [catalog.require(p) for p in permissions]
    if not checked:
        raise ValueError("require_any_permission needs at least one permission")
    roles = frozenset(allowed_roles or ())

    async def permission_dependency(
        user_id: Optional[str] = Depends(get_current_actor_id),
        guard: RequestGuard = Depends(get_request_guard),
    ) -> GuardContext:
        return await guard.check(user_id, checked, MatchMode.ANY, roles, for_write)

    return permission_dependency


def require_all_permissions(
    permissions: List[str],
    for_write: bool = False,
):
    """FastAPI dependency requiring EVERY listed permission."""
    catalog = get_catalog()
    checked = [catalog.require(p) for p in permissions]
    if not checked:
        raise ValueError("require_all_permissions needs at least one permission")

    async def permission_dependency(
        user_id: Optional[str] = Depends(get_current_actor_id),
        guard: RequestGuard = Depends(get_request_guard),
    ) -> GuardContext:
        return await guard.check(user_id, checked, MatchMode.ALL, None, for_write)

    return permission_dependency
