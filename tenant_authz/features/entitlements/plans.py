"""
Active plan lookup for a tenant.
"""
from typing import Optional
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.features.entitlements.models import LIVE_STATUSES, Plan, Subscription


class PlanLookup:
    """Resolves the plan behind a tenant's active or trialing subscription."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def active_subscription(self, tenant_id: str) -> Optional[Subscription]:
        stmt = (
            select(Subscription)
            .where(
                and_(
                    Subscription.tenant_id == tenant_id,
                    Subscription.status.in_(LIVE_STATUSES),
                )
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def active_plan(self, tenant_id: str) -> Optional[Plan]:
        """None when the tenant has no live subscription."""
        subscription = await self.active_subscription(tenant_id)
        return subscription.plan if subscription is not None else None

    async def get_plan_by_name(self, name: str) -> Optional[Plan]:
        result = await self.db.execute(select(Plan).where(Plan.name == name))
        return result.scalar_one_or_none()
