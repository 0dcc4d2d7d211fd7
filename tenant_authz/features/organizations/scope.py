"""
Active-tenant resolution.

Turns an authenticated actor into the tenant they are currently working in
plus the tenant's party reference, which downstream queries filter rows by.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.core.errors import NoActiveTenant
from tenant_authz.features.organizations.models import Organization, Membership
from tenant_authz.features.users.models import User
from tenant_authz.utils import get_logger


log = get_logger(__name__)

PartyLookup = Callable[[AsyncSession, str, str], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class TenantScope:
    """
    The actor's active tenant.

    tenant_id None means "global / no tenant": list endpoints should return
    an empty page, write endpoints should call require_tenant().
    """
    tenant_id: Optional[str] = None
    party_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.tenant_id is None

    def require_tenant(self) -> str:
        if self.tenant_id is None:
            raise NoActiveTenant()
        return self.tenant_id


async def organization_party_lookup(db: AsyncSession, user_id: str, organization_id: str) -> Optional[str]:
    """Privileged lookup: read the organization row directly."""
    result = await db.execute(select(Organization.party_id).where(Organization.id == organization_id))
    return result.scalar_one_or_none()


async def member_party_lookup(db: AsyncSession, user_id: str, organization_id: str) -> Optional[str]:
    """Limited lookup: only organizations the actor is an active member of."""
    stmt = (
        select(Organization.party_id)
        .join(Membership, Membership.organization_id == Organization.id)
        .where(
            and_(
                Organization.id == organization_id,
                Membership.user_id == user_id,
                Membership.is_active.is_(True),
            )
        )
    )
    result = await db.execute(stmt)
    return result.scalars().first()


class TenantScopeResolver:
    """
    Resolve an actor's active tenant and its party reference.

    Party lookups degrade: a failing lookup leaves party_id None instead of
    failing the request. On read paths a failed privileged lookup retries
    with the member-limited one; write paths never take that fallback.
    """

    def __init__(
        self,
        db: AsyncSession,
        privileged_lookup: PartyLookup = organization_party_lookup,
        limited_lookup: Optional[PartyLookup] = member_party_lookup,
    ):
        self.db = db
        self.privileged_lookup = privileged_lookup
        self.limited_lookup = limited_lookup

    async def resolve_active_tenant(self, user_id: str, for_write: bool = False) -> Optional[TenantScope]:
        """
        Returns None when the actor is unknown or deactivated, an empty
        TenantScope when they have no usable active-tenant pointer.
        """
        stmt = (
            select(User.current_organization_id, Organization.is_active)
            .outerjoin(Organization, Organization.id == User.current_organization_id)
            .where(and_(User.id == user_id, User.is_active.is_(True)))
        )
        result = await self.db.execute(stmt)
        row = result.first()
        if row is None:
            return None

        organization_id, organization_active = row
        if organization_id is None:
            return TenantScope()
        if not organization_active:
            log.info("Active organization %s for user %s is missing or inactive", organization_id, user_id)
            return TenantScope()

        party_id = await self._party_id(user_id, organization_id, for_write)
        return TenantScope(tenant_id=organization_id, party_id=party_id)

    async def _party_id(self, user_id: str, organization_id: str, for_write: bool) -> Optional[str]:
        try:
            return await self.privileged_lookup(self.db, user_id, organization_id)
        except Exception:
            log.warning(
                "Privileged party lookup failed for org=%s user=%s", organization_id, user_id, exc_info=True,
            )

        if for_write or self.limited_lookup is None:
            return None

        try:
            return await self.limited_lookup(self.db, user_id, organization_id)
        except Exception:
            log.warning(
                "Member party lookup failed for org=%s user=%s", organization_id, user_id, exc_info=True,
            )
            return None
