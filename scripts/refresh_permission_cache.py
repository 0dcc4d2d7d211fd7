"""
Out-of-band permission cache refresh.

Recomputes permission snapshots after role or grant changes. Request
handlers never write snapshots themselves.

Usage:
    uv run python -m scripts.refresh_permission_cache                 # every active membership
    uv run python -m scripts.refresh_permission_cache --user USER_ID  # one actor
    uv run python -m scripts.refresh_permission_cache --user USER_ID --invalidate
"""
import argparse
import asyncio
from typing import List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.core.database.engine import get_db, init_db
from tenant_authz.features.organizations.models import Membership
from tenant_authz.features.organizations.store import MembershipStore
from tenant_authz.features.permissions.cache import PermissionCache
from tenant_authz.features.permissions.catalog import get_catalog
from tenant_authz.utils import get_logger


log = get_logger(__name__)


async def targets_for(db: AsyncSession, user_id: Optional[str]) -> List[Tuple[str, Optional[str]]]:
    """
    (actor, tenant) pairs to refresh.

    One user: each of their active memberships plus their tenant-less
    snapshot. No user: every active membership.
    """
    if user_id:
        memberships = await MembershipStore(db).list_active_memberships(user_id)
        return [(user_id, m.organization_id) for m in memberships] + [(user_id, None)]

    result = await db.execute(
        select(Membership.user_id, Membership.organization_id).where(Membership.is_active.is_(True))
    )
    return [(row.user_id, row.organization_id) for row in result.all()]


async def refresh(db: AsyncSession, user_id: Optional[str] = None) -> int:
    cache = PermissionCache(db, get_catalog())
    targets = await targets_for(db, user_id)
    for actor, organization_id in targets:
        await cache.refresh(actor, organization_id)
    await db.commit()
    log.info("Refreshed %d permission snapshots", len(targets))
    return len(targets)


async def invalidate(db: AsyncSession, user_id: str) -> int:
    removed = await PermissionCache(db, get_catalog()).invalidate(user_id, all_tenants=True)
    await db.commit()
    return removed


async def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Refresh permission cache snapshots")
    parser.add_argument("--user", help="Only this actor")
    parser.add_argument("--invalidate", action="store_true", help="Delete the actor's snapshots instead")
    args = parser.parse_args(argv)

    if args.invalidate and not args.user:
        parser.error("--invalidate requires --user")

    await init_db()
    async for db in get_db():
        try:
            if args.invalidate:
                await invalidate(db, args.user)
            else:
                await refresh(db, args.user)
        except Exception as e:
            log.error("Error refreshing permission cache: %s", e, exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
