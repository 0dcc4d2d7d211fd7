"""
Entitlement API routes.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status

from tenant_authz.features.entitlements.dependencies import get_entitlement_enforcer
from tenant_authz.features.entitlements.enforcer import RESOURCES, EntitlementEnforcer
from tenant_authz.features.entitlements.schemas import EntitlementResponse
from tenant_authz.features.organizations.dependencies import get_tenant_scope
from tenant_authz.features.organizations.scope import TenantScope
from tenant_authz.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


@router.get("/{resource}", response_model=EntitlementResponse)
async def get_entitlement(
    resource: str,
    increment: int = Query(1, ge=0, description="Units the caller intends to add"),
    scope: TenantScope = Depends(get_tenant_scope),
    enforcer: EntitlementEnforcer = Depends(get_entitlement_enforcer),
):
    """Report usage, limit and plan for a resource in the active organization."""
    if resource not in RESOURCES:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown resource: {resource}"
        )

    result = await enforcer.check_entitlement(scope.tenant_id, resource, increment)
    return EntitlementResponse(organization_id=scope.tenant_id, **result.to_dict())
