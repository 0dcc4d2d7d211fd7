"""
Entitlement enforcement: plan limits, feature switches, override mode and
fail-open storage errors.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from tenant_authz.core.errors import QuotaExceeded
from tenant_authz.features.entitlements.enforcer import EntitlementEnforcer, QuotaReason
from tenant_authz.features.entitlements.models import Plan
from tenant_authz.features.entitlements.usage import UsageCounterRegistry, count_seats
from tenant_authz.features.permissions.resolver import DecisionReason, PermissionResolver


def fixed_counter(value):
    async def counter(db, tenant_id):
        return value
    return counter


def make_enforcer(db, counters=None, **kwargs):
    kwargs.setdefault("unlimited_override", False)
    kwargs.setdefault("feature_flags", {})
    kwargs.setdefault("timeout", 0)
    return EntitlementEnforcer(db, counters=counters or UsageCounterRegistry(), **kwargs)


@pytest.fixture
async def tenant(seed):
    return await seed.organization()


# ============================================================================
# QUANTITY RESOURCES
# ============================================================================

class TestQuantityLimits:
    """Tests for numeric plan limits."""

    @pytest.mark.asyncio
    async def test_starter_plan_at_contract_limit(self, seed, tenant, db):
        plan = await seed.plan("starter", limits={"contracts": 10})
        await seed.subscription(tenant, plan)
        enforcer = make_enforcer(db, UsageCounterRegistry({"contracts": fixed_counter(10)}))

        with pytest.raises(QuotaExceeded) as exc_info:
            await enforcer.assert_entitlement(tenant.id, "contracts", 1)

        error = exc_info.value
        assert error.current == 10
        assert error.limit == 10
        assert error.plan == "starter"
        assert error.reason == QuotaReason.QUOTA_EXCEEDED.value
        assert error.status_code == 402

    @pytest.mark.asyncio
    async def test_within_limit(self, seed, tenant, db):
        plan = await seed.plan("starter", limits={"contracts": 10})
        await seed.subscription(tenant, plan)
        enforcer = make_enforcer(db, UsageCounterRegistry({"contracts": fixed_counter(9)}))

        result = await enforcer.assert_entitlement(tenant.id, "contracts", 1)

        assert result.allowed is True
        assert result.reason == QuotaReason.WITHIN_LIMIT.value
        assert (result.current, result.limit, result.plan) == (9, 10, "starter")

    @pytest.mark.asyncio
    async def test_increment_counts(self, seed, tenant, db):
        plan = await seed.plan("starter", limits={"contracts": 10})
        await seed.subscription(tenant, plan)
        enforcer = make_enforcer(db, UsageCounterRegistry({"contracts": fixed_counter(8)}))

        result = await enforcer.check_entitlement(tenant.id, "contracts", 3)

        assert result.allowed is False

    @pytest.mark.asyncio
    async def test_null_limit_is_unlimited(self, seed, tenant, db):
        plan = await seed.plan("enterprise", limits={"contracts": None})
        await seed.subscription(tenant, plan)
        enforcer = make_enforcer(db, UsageCounterRegistry({"contracts": fixed_counter(10_000)}))

        result = await enforcer.check_entitlement(tenant.id, "contracts")

        assert result.allowed is True
        assert result.reason == QuotaReason.UNLIMITED.value
        assert result.limit is None
        assert result.current == 10_000

    @pytest.mark.asyncio
    async def test_limited_resource_without_counter_is_denied(self, seed, tenant, db):
        plan = await seed.plan("starter", limits={"storage_mb": 100})
        await seed.subscription(tenant, plan)

        with pytest.raises(QuotaExceeded) as exc_info:
            await make_enforcer(db).assert_entitlement(tenant.id, "storage_mb")

        assert exc_info.value.reason == QuotaReason.USAGE_COUNTER_MISSING.value
        assert exc_info.value.limit == 100

    @pytest.mark.asyncio
    async def test_unlimited_resource_without_counter_is_allowed(self, seed, tenant, db):
        plan = await seed.plan("enterprise", limits={"storage_mb": None})
        await seed.subscription(tenant, plan)

        result = await make_enforcer(db).check_entitlement(tenant.id, "storage_mb")

        assert result.allowed is True
        assert result.reason == QuotaReason.UNLIMITED.value
        assert result.current is None

    @pytest.mark.asyncio
    async def test_seats_counted_from_memberships(self, seed, tenant, db):
        plan = await seed.plan("free", limits={"seats": 2})
        await seed.subscription(tenant, plan)
        for role in ("owner", "user"):
            await seed.membership(await seed.user(tenant), tenant, role)
        await seed.membership(await seed.user(tenant), tenant, "user", is_active=False)
        enforcer = make_enforcer(db, UsageCounterRegistry({"seats": count_seats}))

        result = await enforcer.check_entitlement(tenant.id, "seats")

        assert result.current == 2
        assert result.allowed is False


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

class TestSubscriptions:
    """Tests for plan resolution."""

    @pytest.mark.asyncio
    async def test_no_subscription_denies(self, tenant, db):
        enforcer = make_enforcer(db, UsageCounterRegistry({"contracts": fixed_counter(0)}))

        with pytest.raises(QuotaExceeded) as exc_info:
            await enforcer.assert_entitlement(tenant.id, "contracts")

        assert exc_info.value.reason == QuotaReason.NO_ACTIVE_SUBSCRIPTION.value

    @pytest.mark.asyncio
    async def test_canceled_subscription_is_no_plan(self, seed, tenant, db):
        plan = await seed.plan("starter", limits={"contracts": 10})
        await seed.subscription(tenant, plan, status="canceled")
        enforcer = make_enforcer(db, UsageCounterRegistry({"contracts": fixed_counter(0)}))

        result = await enforcer.check_entitlement(tenant.id, "contracts")

        assert result.reason == QuotaReason.NO_ACTIVE_SUBSCRIPTION.value

    @pytest.mark.asyncio
    async def test_trialing_subscription_counts(self, seed, tenant, db):
        plan = await seed.plan("starter", limits={"contracts": 10})
        await seed.subscription(tenant, plan, status="trialing")
        enforcer = make_enforcer(db, UsageCounterRegistry({"contracts": fixed_counter(0)}))

        result = await enforcer.check_entitlement(tenant.id, "contracts")

        assert result.allowed is True
        assert result.plan == "starter"

    @pytest.mark.asyncio
    async def test_no_tenant_denies(self, db):
        result = await make_enforcer(db).check_entitlement(None, "contracts")

        assert result.allowed is False
        assert result.reason == QuotaReason.NO_ACTIVE_SUBSCRIPTION.value


# ============================================================================
# FEATURES AND OVERRIDE
# ============================================================================

class TestFeatures:
    """Tests for feature resources and the unlimited override."""

    @pytest.mark.asyncio
    async def test_feature_enabled_by_plan(self, seed, tenant, db):
        plan = await seed.plan("pro", features={"workflow": True})
        await seed.subscription(tenant, plan)

        result = await make_enforcer(db).check_entitlement(tenant.id, "workflows")

        assert result.allowed is True
        assert result.reason == QuotaReason.FEATURE_ENABLED.value

    @pytest.mark.asyncio
    async def test_feature_missing_from_plan(self, seed, tenant, db):
        plan = await seed.plan("starter", features={"analytics": True})
        await seed.subscription(tenant, plan)

        with pytest.raises(QuotaExceeded) as exc_info:
            await make_enforcer(db).assert_entitlement(tenant.id, "workflows")

        assert exc_info.value.reason == QuotaReason.FEATURE_NOT_INCLUDED.value
        assert exc_info.value.plan == "starter"

    @pytest.mark.asyncio
    async def test_feature_flag_enforced_under_override(self, tenant, db):
        enforcer = make_enforcer(db, unlimited_override=True, feature_flags={"workflow": False})

        with pytest.raises(QuotaExceeded) as exc_info:
            await enforcer.assert_entitlement(tenant.id, "workflows")

        assert exc_info.value.reason == QuotaReason.FEATURE_DISABLED.value

    @pytest.mark.asyncio
    async def test_feature_flag_beats_plan(self, seed, tenant, db):
        plan = await seed.plan("pro", features={"workflow": True})
        await seed.subscription(tenant, plan)
        enforcer = make_enforcer(db, feature_flags={"workflow": False})

        result = await enforcer.check_entitlement(tenant.id, "workflows")

        assert result.allowed is False

    @pytest.mark.asyncio
    async def test_override_skips_plan_for_quantities(self, tenant, db):
        plans = MagicMock()
        plans.active_plan = AsyncMock()
        enforcer = make_enforcer(db, unlimited_override=True)
        enforcer.plans = plans

        result = await enforcer.assert_entitlement(tenant.id, "contracts", 1000)

        assert result.allowed is True
        assert result.reason == QuotaReason.OVERRIDE.value
        plans.active_plan.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_resource(self, db):
        with pytest.raises(ValueError):
            await make_enforcer(db).check_entitlement("org-1", "spaceships")


# ============================================================================
# FAIL-OPEN
# ============================================================================

class TestFailOpen:
    """Storage errors allow the operation."""

    @pytest.mark.asyncio
    async def test_plan_lookup_error_allows(self, db):
        plans = MagicMock()
        plans.active_plan = AsyncMock(side_effect=SQLAlchemyError("connection reset"))
        enforcer = EntitlementEnforcer(db, plans=plans, unlimited_override=False, feature_flags={}, timeout=0)

        result = await enforcer.assert_entitlement("org-1", "contracts")

        assert result.allowed is True
        assert result.reason == QuotaReason.QUOTA_CHECK_UNAVAILABLE.value

    @pytest.mark.asyncio
    async def test_usage_count_error_allows(self, seed, tenant, db):
        plan = await seed.plan("starter", limits={"contracts": 10})
        await seed.subscription(tenant, plan)
        counter = AsyncMock(side_effect=SQLAlchemyError("connection reset"))
        enforcer = make_enforcer(db, UsageCounterRegistry({"contracts": counter}))

        result = await enforcer.assert_entitlement(tenant.id, "contracts")

        assert result.allowed is True
        assert result.reason == QuotaReason.QUOTA_CHECK_UNAVAILABLE.value

    @pytest.mark.asyncio
    async def test_timeout_allows(self, seed, tenant, db):
        plan = await seed.plan("starter", limits={"contracts": 10})
        await seed.subscription(tenant, plan)

        async def slow_counter(db, tenant_id):
            await asyncio.sleep(5)
            return 0

        enforcer = make_enforcer(db, UsageCounterRegistry({"contracts": slow_counter}), timeout=0.01)

        result = await enforcer.check_entitlement(tenant.id, "contracts")

        assert result.allowed is True
        assert result.reason == QuotaReason.QUOTA_CHECK_UNAVAILABLE.value

    @pytest.mark.asyncio
    async def test_same_error_denies_authorization_but_allows_quota(self, db, catalog):
        """The two checks deliberately fail in opposite directions."""
        error = SQLAlchemyError("connection reset")

        memberships = MagicMock()
        memberships.active_roles = AsyncMock(side_effect=error)
        cache = MagicMock()
        cache.get = AsyncMock(return_value=None)
        resolver = PermissionResolver(db, catalog, cache=cache, memberships=memberships, timeout=0)
        decision = await resolver.resolve("user-1", "org-1", "contract:create:own")

        counter = AsyncMock(side_effect=error)
        plans = MagicMock()
        starter = Plan(name="starter", display_name="Starter", limits={"contracts": 10}, features={})
        plans.active_plan = AsyncMock(return_value=starter)
        enforcer = make_enforcer(db, UsageCounterRegistry({"contracts": counter}))
        enforcer.plans = plans
        result = await enforcer.check_entitlement("org-1", "contracts")

        assert decision.allowed is False
        assert decision.reason == DecisionReason.RESOLUTION_ERROR
        assert result.allowed is True
