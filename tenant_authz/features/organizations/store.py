"""
Read access to tenant memberships.
"""
from typing import List, Optional
from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.features.organizations.models import Organization, Membership
from tenant_authz.features.permissions.models import RoleDefinition


OWNER_ROLE = "owner"


class MembershipStore:
    """
    Membership lookups over the record store.

    Errors from the session are not caught here; the resolver decides
    what a storage failure means.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_membership(self, user_id: str, organization_id: str) -> Optional[Membership]:
        """The actor's active membership in one organization, if any."""
        stmt = select(Membership).where(
            and_(
                Membership.user_id == user_id,
                Membership.organization_id == organization_id,
                Membership.is_active.is_(True),
            )
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_active_memberships(self, user_id: str) -> List[Membership]:
        """Every active membership the actor holds, across tenants."""
        stmt = (
            select(Membership)
            .join(Organization, Organization.id == Membership.organization_id)
            .where(
                and_(
                    Membership.user_id == user_id,
                    Membership.is_active.is_(True),
                    Organization.is_active.is_(True),
                )
            )
            .order_by(Membership.joined_at)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def active_roles(self, user_id: str, organization_id: str) -> List[str]:
        """
        Roles from active memberships joined to active role definitions.

        An owner-flagged membership also holds the `owner` role. A role with
        no active definition contributes nothing.
        """
        stmt = (
            select(Membership.role, Membership.is_owner)
            .join(Organization, Organization.id == Membership.organization_id)
            .where(
                and_(
                    Membership.user_id == user_id,
                    Membership.organization_id == organization_id,
                    Membership.is_active.is_(True),
                    Organization.is_active.is_(True),
                )
            )
        )
        result = await self.db.execute(stmt)
        held = set()
        for role, is_owner in result.all():
            held.add(role)
            if is_owner:
                held.add(OWNER_ROLE)
        if not held:
            return []

        defined = await self.db.execute(
            select(RoleDefinition.name).where(
                and_(RoleDefinition.name.in_(held), RoleDefinition.is_active.is_(True))
            )
        )
        return sorted(set(defined.scalars().all()))

    async def count_active_members(self, organization_id: str) -> int:
        """Active memberships in an organization (the `seats` usage)."""
        stmt = select(func.count(Membership.id)).where(
            and_(
                Membership.organization_id == organization_id,
                Membership.is_active.is_(True),
            )
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())
