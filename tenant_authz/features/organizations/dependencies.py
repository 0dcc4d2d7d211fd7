"""
Tenant-scope dependency injection functions.
"""
from typing import Optional
from fastapi import Depends

from tenant_authz.core.errors import Unauthenticated
from tenant_authz.features.organizations.scope import TenantScope, TenantScopeResolver
from tenant_authz.features.permissions.dependencies import get_tenant_scope_resolver
from tenant_authz.features.users.dependencies import get_current_actor_id


async def get_tenant_scope(
    user_id: Optional[str] = Depends(get_current_actor_id),
    scopes: TenantScopeResolver = Depends(get_tenant_scope_resolver),
) -> TenantScope:
    """
    Read-path scope for the current actor.

    An actor without an active tenant gets an empty scope; list endpoints
    should answer with an empty page rather than an error.
    """
    if not user_id:
        raise Unauthenticated()
    return await scopes.resolve_active_tenant(user_id) or TenantScope()


async def require_active_tenant(
    user_id: Optional[str] = Depends(get_current_actor_id),
    scopes: TenantScopeResolver = Depends(get_tenant_scope_resolver),
) -> TenantScope:
    """
    Write-path scope: the actor must have an active tenant.

    Raises:
        Unauthenticated: no verified actor (401)
        NoActiveTenant: no active organization set (400)
    """
    if not user_id:
        raise Unauthenticated()
    scope = await scopes.resolve_active_tenant(user_id, for_write=True) or TenantScope()
    scope.require_tenant()
    return scope
