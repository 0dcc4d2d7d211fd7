"""
Entitlement enforcement: may this tenant consume more of a resource?

    enforcer = EntitlementEnforcer(db)
    await enforcer.assert_entitlement(tenant_id, "contracts")   # raises QuotaExceeded

Order of checks:
1. Process-wide FEATURE_FLAGS switch off a feature resource for everyone,
   override or not.
2. ENTITLEMENTS_UNLIMITED_OVERRIDE skips plan resolution entirely.
3. No active or trialing subscription -> NO_ACTIVE_SUBSCRIPTION.
4. Feature resources need plan.features[flag] to be true; quantity
   resources need current usage + increment <= plan.limits[resource]
   (null or absent limit means unlimited). A limited resource with no
   registered usage counter is a wiring error and is denied
   (USAGE_COUNTER_MISSING), not failed open.

FAILS OPEN. A storage error or timeout while reading the plan or counting
usage is logged as QUOTA_RESOLUTION_ERROR and the operation is ALLOWED
(reason QUOTA_CHECK_UNAVAILABLE). This is deliberately the opposite of the
permission resolver, which denies on any storage error.
"""
import asyncio
import enum
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.core import config
from tenant_authz.core.errors import QuotaExceeded, QuotaResolutionError
from tenant_authz.features.entitlements.models import Plan
from tenant_authz.features.entitlements.plans import PlanLookup
from tenant_authz.features.entitlements.usage import UsageCounterRegistry, usage_counters
from tenant_authz.utils import get_logger


log = get_logger(__name__)


class ResourceKind(str, enum.Enum):
    QUANTITY = "quantity"
    FEATURE = "feature"


@dataclass(frozen=True)
class ResourceSpec:
    name: str
    kind: ResourceKind
    # Feature resources: the key looked up in plan.features and FEATURE_FLAGS
    flag: Optional[str] = None


RESOURCES: Dict[str, ResourceSpec] = {
    "contracts": ResourceSpec("contracts", ResourceKind.QUANTITY),
    "seats": ResourceSpec("seats", ResourceKind.QUANTITY),
    "storage_mb": ResourceSpec("storage_mb", ResourceKind.QUANTITY),
    "promoters": ResourceSpec("promoters", ResourceKind.QUANTITY),
    "workflows": ResourceSpec("workflows", ResourceKind.FEATURE, flag="workflow"),
    "analytics": ResourceSpec("analytics", ResourceKind.FEATURE, flag="analytics"),
    "api_access": ResourceSpec("api_access", ResourceKind.FEATURE, flag="api_access"),
}


def get_resource(resource: str) -> ResourceSpec:
    spec = RESOURCES.get(resource)
    if spec is None:
        raise ValueError(f"Unknown entitlement resource: {resource!r}")
    return spec


class QuotaReason(str, enum.Enum):
    WITHIN_LIMIT = "WITHIN_LIMIT"
    UNLIMITED = "UNLIMITED"
    FEATURE_ENABLED = "FEATURE_ENABLED"
    OVERRIDE = "OVERRIDE"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    FEATURE_NOT_INCLUDED = "FEATURE_NOT_INCLUDED"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    NO_ACTIVE_SUBSCRIPTION = "NO_ACTIVE_SUBSCRIPTION"
    USAGE_COUNTER_MISSING = "USAGE_COUNTER_MISSING"
    QUOTA_CHECK_UNAVAILABLE = "QUOTA_CHECK_UNAVAILABLE"


@dataclass
class QuotaResult:
    allowed: bool
    reason: str
    resource: str
    current: Optional[int] = None
    limit: Optional[int] = None
    plan: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class EntitlementEnforcer:
    """Plan/usage checks for bounded resources. Read-only."""

    def __init__(
        self,
        db: AsyncSession,
        plans: Optional[PlanLookup] = None,
        counters: Optional[UsageCounterRegistry] = None,
        *,
        unlimited_override: Optional[bool] = None,
        feature_flags: Optional[Dict[str, bool]] = None,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.plans = plans or PlanLookup(db)
        self.counters = counters or usage_counters
        self.unlimited_override = (
            unlimited_override if unlimited_override is not None else config.ENTITLEMENTS_UNLIMITED_OVERRIDE
        )
        self.feature_flags = feature_flags if feature_flags is not None else config.FEATURE_FLAGS
        self.timeout = timeout if timeout is not None else config.ENTITLEMENT_LOOKUP_TIMEOUT_SECONDS

    async def check_entitlement(self, tenant_id: Optional[str], resource: str, increment: int = 1) -> QuotaResult:
        """
        Decide whether `tenant_id` may consume `increment` more of `resource`.

        Raises ValueError for an unknown resource name; never raises for
        storage problems.
        """
        spec = get_resource(resource)

        if spec.kind == ResourceKind.FEATURE and self.feature_flags.get(spec.flag) is False:
            return self._finish(tenant_id, QuotaResult(False, QuotaReason.FEATURE_DISABLED.value, resource))

        if self.unlimited_override:
            return self._finish(tenant_id, QuotaResult(True, QuotaReason.OVERRIDE.value, resource))

        try:
            work = self._check_plan(tenant_id, spec, increment)
            if self.timeout:
                result = await asyncio.wait_for(work, self.timeout)
            else:
                result = await work
        except Exception as e:
            error = QuotaResolutionError(tenant_id, resource, e)
            log.error("%s %s; allowing operation", error.error_code, error.message, exc_info=True)
            result = QuotaResult(True, QuotaReason.QUOTA_CHECK_UNAVAILABLE.value, resource)

        return self._finish(tenant_id, result)

    async def assert_entitlement(self, tenant_id: Optional[str], resource: str, increment: int = 1) -> QuotaResult:
        """check_entitlement(), raising QuotaExceeded on denial."""
        result = await self.check_entitlement(tenant_id, resource, increment)
        if not result.allowed:
            raise QuotaExceeded(
                tenant_id,
                resource,
                result.reason,
                plan=result.plan,
                current=result.current,
                limit=result.limit,
            )
        return result

    async def _check_plan(self, tenant_id: Optional[str], spec: ResourceSpec, increment: int) -> QuotaResult:
        plan = await self.plans.active_plan(tenant_id) if tenant_id is not None else None
        if plan is None:
            return QuotaResult(False, QuotaReason.NO_ACTIVE_SUBSCRIPTION.value, spec.name)

        if spec.kind == ResourceKind.FEATURE:
            if (plan.features or {}).get(spec.flag) is True:
                return QuotaResult(True, QuotaReason.FEATURE_ENABLED.value, spec.name, plan=plan.name)
            return QuotaResult(False, QuotaReason.FEATURE_NOT_INCLUDED.value, spec.name, plan=plan.name)

        return await self._check_quantity(tenant_id, spec, plan, increment)

    async def _check_quantity(self, tenant_id: str, spec: ResourceSpec, plan: Plan, increment: int) -> QuotaResult:
        limit = (plan.limits or {}).get(spec.name)
        if limit is None:
            current = None
            if self.counters.has(spec.name):
                current = await self.counters.count(self.db, spec.name, tenant_id)
            return QuotaResult(True, QuotaReason.UNLIMITED.value, spec.name, current=current, plan=plan.name)

        if not self.counters.has(spec.name):
            log.error("No usage counter registered for limited resource %s; denying", spec.name)
            return QuotaResult(
                False, QuotaReason.USAGE_COUNTER_MISSING.value, spec.name, limit=int(limit), plan=plan.name
            )

        current = await self.counters.count(self.db, spec.name, tenant_id)
        allowed = current + increment <= limit
        return QuotaResult(
            allowed,
            (QuotaReason.WITHIN_LIMIT if allowed else QuotaReason.QUOTA_EXCEEDED).value,
            spec.name,
            current=current,
            limit=int(limit),
            plan=plan.name,
        )

    @staticmethod
    def _finish(tenant_id: Optional[str], result: QuotaResult) -> QuotaResult:
        if result.allowed:
            log.debug("Entitlement allowed: tenant=%s resource=%s reason=%s", tenant_id, result.resource, result.reason)
        else:
            log.info(
                "Entitlement denied: tenant=%s resource=%s reason=%s plan=%s current=%s limit=%s",
                tenant_id, result.resource, result.reason, result.plan, result.current, result.limit,
            )
        return result
