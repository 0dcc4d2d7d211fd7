"""
Read access to explicit grants and global role assignments.
"""
from datetime import datetime
from typing import FrozenSet, List, Optional, Tuple
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.features.permissions.models import ExplicitGrant, RoleAssignment, RoleDefinition
from tenant_authz.utils import as_utc, utcnow


def _is_live(expires_at: Optional[datetime], now: datetime) -> bool:
    expires_at = as_utc(expires_at)
    return expires_at is None or expires_at > now


class ExplicitGrantStore:
    """
    Explicit grant lookups.

    Expiry is checked in Python against aware UTC so the result does not
    depend on how the backend stores timezones.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_live_grants(
        self,
        user_id: str,
        organization_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> List[ExplicitGrant]:
        """Active, non-expired grants for (actor, tenant), newest first."""
        now = now or utcnow()
        tenant_filter = (
            ExplicitGrant.organization_id.is_(None)
            if organization_id is None
            else ExplicitGrant.organization_id == organization_id
        )
        stmt = (
            select(ExplicitGrant)
            .where(
                and_(
                    ExplicitGrant.user_id == user_id,
                    tenant_filter,
                    ExplicitGrant.is_active.is_(True),
                )
            )
            .order_by(ExplicitGrant.created_at.desc(), ExplicitGrant.id.desc())
        )
        result = await self.db.execute(stmt)
        return [g for g in result.scalars().all() if _is_live(g.expires_at, now)]

    async def overlay(
        self,
        user_id: str,
        organization_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> Tuple[FrozenSet[str], FrozenSet[str]]:
        """
        Split live grants into (granted, denied) permission sets.

        Any live denial for a permission wins over a live grant of the same
        permission, whichever row is newer.
        """
        granted = set()
        denied = set()
        for grant in await self.list_live_grants(user_id, organization_id, now=now):
            if grant.granted:
                granted.add(grant.permission)
            else:
                denied.add(grant.permission)
        return frozenset(granted - denied), frozenset(denied)


class RoleAssignmentStore:
    """Global (tenant-less) role assignments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def active_roles(self, user_id: str, now: Optional[datetime] = None) -> List[str]:
        """Roles from active, unexpired assignments with an active definition."""
        now = now or utcnow()
        stmt = (
            select(RoleAssignment)
            .join(RoleDefinition, RoleDefinition.name == RoleAssignment.role)
            .where(
                and_(
                    RoleAssignment.user_id == user_id,
                    RoleAssignment.is_active.is_(True),
                    RoleDefinition.is_active.is_(True),
                )
            )
        )
        result = await self.db.execute(stmt)
        return sorted({a.role for a in result.scalars().all() if _is_live(a.valid_until, now)})
