"""
Entitlement dependencies.

Usage:
    @router.post("/contracts", dependencies=[Depends(require_entitlement("contracts"))])
    async def create_contract(...):
        ...

The check runs before the handler; QuotaExceeded becomes HTTP 402.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.core.database.engine import get_db
from tenant_authz.features.entitlements.enforcer import EntitlementEnforcer, QuotaResult, ResourceKind, get_resource
from tenant_authz.features.entitlements.usage import CounterNotRegistered, usage_counters
from tenant_authz.features.organizations.dependencies import require_active_tenant
from tenant_authz.features.organizations.scope import TenantScope


async def get_entitlement_enforcer(db: AsyncSession = Depends(get_db)) -> EntitlementEnforcer:
    return EntitlementEnforcer(db)


def require_entitlement(resource: str, increment: int = 1):
    """
    FastAPI dependency asserting the active tenant may consume `increment`
    more of `resource`.

    Quantity resources need a registered usage counter; a missing one
    raises CounterNotRegistered here, when the route is defined.

    Raises:
        NoActiveTenant: no active organization set (400)
        QuotaExceeded: plan limit reached or feature not included (402)
    """
    spec = get_resource(resource)
    if spec.kind == ResourceKind.QUANTITY and not usage_counters.has(resource):
        raise CounterNotRegistered(
            f"No usage counter registered for {resource!r}; register one before guarding routes"
        )

    async def entitlement_dependency(
        scope: TenantScope = Depends(require_active_tenant),
        enforcer: EntitlementEnforcer = Depends(get_entitlement_enforcer),
    ) -> QuotaResult:
        return await enforcer.assert_entitlement(scope.tenant_id, resource, increment)

    return entitlement_dependency
