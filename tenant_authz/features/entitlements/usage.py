"""
Usage counters for quantity-bound resources.

A counter is an async callable (db, tenant_id) -> int. The host application
registers counters for the resources it owns (contracts, storage, ...);
seats are counted from memberships here.

    usage_counters.register("contracts", count_contracts)
"""
from typing import Awaitable, Callable, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.features.organizations.store import MembershipStore


UsageCounter = Callable[[AsyncSession, str], Awaitable[int]]


class CounterNotRegistered(LookupError):
    """No usage counter is registered for a quantity resource."""


async def count_seats(db: AsyncSession, tenant_id: str) -> int:
    return await MembershipStore(db).count_active_members(tenant_id)


class UsageCounterRegistry:
    def __init__(self, counters: Optional[Dict[str, UsageCounter]] = None):
        self._counters: Dict[str, UsageCounter] = dict(counters or {})

    def register(self, resource: str, counter: UsageCounter) -> None:
        self._counters[resource] = counter

    def unregister(self, resource: str) -> None:
        self._counters.pop(resource, None)

    def has(self, resource: str) -> bool:
        return resource in self._counters

    async def count(self, db: AsyncSession, resource: str, tenant_id: str) -> int:
        counter = self._counters.get(resource)
        if counter is None:
            raise CounterNotRegistered(f"No usage counter registered for {resource!r}")
        return int(await counter(db, tenant_id))


# Process-wide registry used by the FastAPI dependencies
usage_counters = UsageCounterRegistry({"seats": count_seats})
