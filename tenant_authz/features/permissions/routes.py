"""
Permission diagnostics API routes.

Lets an authenticated actor ask what they may do. These endpoints report
decisions; they never change memberships, grants or cached snapshots.
"""
from typing import Optional
from fastapi import APIRouter, Depends

from tenant_authz.core.errors import Unauthenticated
from tenant_authz.features.organizations.scope import TenantScopeResolver
from tenant_authz.features.permissions.dependencies import get_permission_resolver, get_tenant_scope_resolver
from tenant_authz.features.permissions.resolver import PermissionResolver
from tenant_authz.features.permissions.schemas import (
    EffectivePermissionsResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
)
from tenant_authz.features.users.dependencies import get_current_actor_id
from tenant_authz.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def _organization_for(
    user_id: str,
    organization_id: Optional[str],
    scopes: TenantScopeResolver,
) -> Optional[str]:
    if organization_id:
        return organization_id
    scope = await scopes.resolve_active_tenant(user_id)
    return scope.tenant_id if scope is not None else None


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    user_id: Optional[str] = Depends(get_current_actor_id),
    resolver: PermissionResolver = Depends(get_permission_resolver),
    scopes: TenantScopeResolver = Depends(get_tenant_scope_resolver),
):
    """Check whether the current actor holds the given permissions."""
    if not user_id:
        raise Unauthenticated()

    org_id = await _organization_for(user_id, check_request.organization_id, scopes)
    decision = await resolver.resolve(
        user_id,
        org_id,
        check_request.permissions,
        check_request.mode,
        check_request.allowed_roles,
    )
    return PermissionCheckResponse(
        allowed=decision.allowed,
        reason=decision.reason.value,
        organization_id=org_id,
        required_permissions=decision.required,
        matched_roles=decision.matched_roles,
        matched_permissions=decision.matched_permissions,
        missing_permissions=decision.missing_permissions,
        source=decision.source,
    )


@router.get("/me", response_model=EffectivePermissionsResponse)
async def get_my_permissions(
    organization_id: Optional[str] = None,
    user_id: Optional[str] = Depends(get_current_actor_id),
    resolver: PermissionResolver = Depends(get_permission_resolver),
    scopes: TenantScopeResolver = Depends(get_tenant_scope_resolver),
):
    """Get the current actor's effective permissions in an organization."""
    if not user_id:
        raise Unauthenticated()

    org_id = await _organization_for(user_id, organization_id, scopes)
    effective = await resolver.effective_permissions(user_id, org_id)
    return EffectivePermissionsResponse(
        user_id=user_id,
        organization_id=org_id,
        roles=effective.roles,
        permissions=effective.permissions,
        granted=effective.granted,
        denied=effective.denied,
        source=effective.source,
    )
