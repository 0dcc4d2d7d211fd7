"""
Active-tenant resolution and party lookup fallbacks.
"""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from tenant_authz.core.errors import NoActiveTenant
from tenant_authz.features.organizations.scope import (
    TenantScope,
    TenantScopeResolver,
    member_party_lookup,
)


class TestTenantScope:
    """Tests for the TenantScope value."""

    def test_empty_scope(self):
        scope = TenantScope()
        assert scope.is_empty
        with pytest.raises(NoActiveTenant):
            scope.require_tenant()

    def test_require_tenant(self):
        assert TenantScope(tenant_id="org-1").require_tenant() == "org-1"


class TestResolveActiveTenant:
    """Tests for TenantScopeResolver.resolve_active_tenant()."""

    @pytest.mark.asyncio
    async def test_active_tenant_with_party(self, seed, db):
        org = await seed.organization(party_id="party-42")
        actor = await seed.user(org)

        scope = await TenantScopeResolver(db).resolve_active_tenant(actor.id)

        assert scope == TenantScope(tenant_id=org.id, party_id="party-42")

    @pytest.mark.asyncio
    async def test_no_pointer_gives_empty_scope(self, seed, db):
        actor = await seed.user()

        scope = await TenantScopeResolver(db).resolve_active_tenant(actor.id)

        assert scope is not None
        assert scope.is_empty

    @pytest.mark.asyncio
    async def test_inactive_organization_gives_empty_scope(self, seed, db):
        org = await seed.organization(is_active=False)
        actor = await seed.user(org)

        scope = await TenantScopeResolver(db).resolve_active_tenant(actor.id)

        assert scope.is_empty

    @pytest.mark.asyncio
    async def test_unknown_or_inactive_user(self, seed, db):
        org = await seed.organization()
        inactive = await seed.user(org, is_active=False)
        resolver = TenantScopeResolver(db)

        assert await resolver.resolve_active_tenant("missing-user") is None
        assert await resolver.resolve_active_tenant(inactive.id) is None


class TestPartyLookupFallback:
    """Privileged lookup failures degrade instead of failing the request."""

    @pytest.mark.asyncio
    async def test_read_path_falls_back_to_member_lookup(self, seed, db):
        org = await seed.organization(party_id="party-7")
        actor = await seed.user(org)
        await seed.membership(actor, org, "user")
        privileged = AsyncMock(side_effect=SQLAlchemyError("permission denied for table"))
        resolver = TenantScopeResolver(db, privileged_lookup=privileged)

        scope = await resolver.resolve_active_tenant(actor.id)

        assert scope == TenantScope(tenant_id=org.id, party_id="party-7")
        privileged.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_member_lookup_needs_membership(self, seed, db):
        org = await seed.organization(party_id="party-7")
        actor = await seed.user(org)

        assert await member_party_lookup(db, actor.id, org.id) is None

    @pytest.mark.asyncio
    async def test_write_path_never_falls_back(self, seed, db):
        org = await seed.organization(party_id="party-7")
        actor = await seed.user(org)
        await seed.membership(actor, org, "user")
        privileged = AsyncMock(side_effect=SQLAlchemyError("permission denied for table"))
        limited = AsyncMock(return_value="party-7")
        resolver = TenantScopeResolver(db, privileged_lookup=privileged, limited_lookup=limited)

        scope = await resolver.resolve_active_tenant(actor.id, for_write=True)

        assert scope == TenantScope(tenant_id=org.id, party_id=None)
        limited.assert_not_called()

    @pytest.mark.asyncio
    async def test_both_lookups_failing_leaves_party_empty(self, seed, db):
        org = await seed.organization()
        actor = await seed.user(org)
        failing = AsyncMock(side_effect=SQLAlchemyError("down"))
        resolver = TenantScopeResolver(db, privileged_lookup=failing, limited_lookup=failing)

        scope = await resolver.resolve_active_tenant(actor.id)

        assert scope.tenant_id == org.id
        assert scope.party_id is None
