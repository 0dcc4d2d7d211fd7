"""
Permission snapshot cache backed by the permission_cache_entries table.

Reads happen on the request path; writes (refresh/invalidate) belong to the
out-of-band refresh job run after role or grant changes
(scripts/refresh_permission_cache.py). The resolver never writes here.
"""
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.core import config
from tenant_authz.features.organizations.store import MembershipStore
from tenant_authz.features.permissions.catalog import PermissionCatalog, get_catalog
from tenant_authz.features.permissions.models import PermissionCacheEntry
from tenant_authz.features.permissions.store import RoleAssignmentStore
from tenant_authz.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)

DEFAULT_TTL = 900  # seconds


def _tenant_filter(organization_id: Optional[str]):
    if organization_id is None:
        return PermissionCacheEntry.organization_id.is_(None)
    return PermissionCacheEntry.organization_id == organization_id


class PermissionCache:
    """Lookup, refresh and invalidation of permission snapshots."""

    def __init__(
        self,
        db: AsyncSession,
        catalog: Optional[PermissionCatalog] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.db = db
        self.catalog = catalog or get_catalog()
        ttl = ttl_seconds if ttl_seconds is not None else config.PERMISSION_CACHE_TTL_SECONDS
        self.ttl = timedelta(seconds=ttl if ttl is not None else DEFAULT_TTL)

    def is_fresh(self, entry: PermissionCacheEntry, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return as_utc(entry.computed_at) + self.ttl > now

    async def get(self, user_id: str, organization_id: Optional[str]) -> Optional[PermissionCacheEntry]:
        """Snapshot for (actor, tenant), or None when missing or past TTL."""
        stmt = select(PermissionCacheEntry).where(
            and_(PermissionCacheEntry.user_id == user_id, _tenant_filter(organization_id))
        )
        result = await self.db.execute(stmt)
        entry = result.scalars().first()
        if entry is None:
            return None
        if not self.is_fresh(entry):
            log.debug("Permission cache entry for user=%s org=%s expired", user_id, organization_id)
            return None
        return entry

    async def refresh(self, user_id: str, organization_id: Optional[str]) -> PermissionCacheEntry:
        """
        Recompute and upsert the snapshot for (actor, tenant).

        Same sources as the resolver fallback: tenant membership roles, else
        global role assignments. Only role-derived permissions are stored;
        explicit grants expire independently and are overlaid at read time.
        """
        roles: List[str] = []
        if organization_id is not None:
            roles = await MembershipStore(self.db).active_roles(user_id, organization_id)
        if not roles:
            roles = await RoleAssignmentStore(self.db).active_roles(user_id)
        permissions = set(self.catalog.expand_roles(roles))

        stmt = select(PermissionCacheEntry).where(
            and_(PermissionCacheEntry.user_id == user_id, _tenant_filter(organization_id))
        )
        result = await self.db.execute(stmt)
        entry = result.scalars().first()
        if entry is None:
            entry = PermissionCacheEntry(user_id=user_id, organization_id=organization_id)
            self.db.add(entry)
        entry.roles = sorted(roles)
        entry.permissions = sorted(permissions)
        entry.computed_at = utcnow()
        await self.db.flush()

        log.info(
            "Refreshed permission cache: user=%s org=%s roles=%s permissions=%d",
            user_id, organization_id, entry.roles, len(entry.permissions),
        )
        return entry

    async def invalidate(self, user_id: str, organization_id: Optional[str] = None, all_tenants: bool = False) -> int:
        """Delete snapshots for the actor; returns the number removed."""
        stmt = delete(PermissionCacheEntry).where(PermissionCacheEntry.user_id == user_id)
        if not all_tenants:
            stmt = stmt.where(_tenant_filter(organization_id))
        result = await self.db.execute(stmt)
        await self.db.flush()
        log.info("Invalidated %d permission cache entries for user=%s", result.rowcount, user_id)
        return result.rowcount
