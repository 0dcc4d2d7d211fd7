"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite) with all
tables created, plus a `seed` helper for inserting users, organizations,
memberships, grants and plans.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("RATE_LIMIT", "1000/minute")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RBAC_ENFORCEMENT", "enforce")

from datetime import datetime, timedelta
from typing import Dict, Optional

import jwt
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tenant_authz.core.database.base import Base
from tenant_authz.features.entitlements.models import Plan, Subscription
from tenant_authz.features.organizations.models import Membership, Organization
from tenant_authz.features.permissions.catalog import PermissionCatalog, build_catalog
from tenant_authz.features.permissions.models import (
    ExplicitGrant,
    PermissionCacheEntry,
    RoleAssignment,
    RoleDefinition,
)
from tenant_authz.features.users.models import User
from tenant_authz.utils import utcnow


# ============================================================================
# DATABASE
# ============================================================================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def catalog() -> PermissionCatalog:
    return build_catalog()


# ============================================================================
# SEED HELPERS
# ============================================================================

class Seeder:
    """Inserts rows and flushes so ids are available immediately."""

    def __init__(self, db: AsyncSession, catalog: PermissionCatalog):
        self.db = db
        self.catalog = catalog
        self._count = 0

    async def _add(self, obj):
        self.db.add(obj)
        await self.db.flush()
        return obj

    async def role_definitions(self, inactive=()):
        for name in sorted(self.catalog.roles):
            self.db.add(RoleDefinition(name=name, is_active=name not in inactive))
        await self.db.flush()

    async def organization(self, name: str = "Acme", party_id: Optional[str] = "party-1", is_active: bool = True):
        return await self._add(Organization(name=name, party_id=party_id, is_active=is_active))

    async def user(self, organization: Optional[Organization] = None, is_active: bool = True):
        self._count += 1
        return await self._add(
            User(
                email=f"user{self._count}@example.com",
                name=f"User {self._count}",
                is_active=is_active,
                current_organization_id=organization.id if organization is not None else None,
            )
        )

    async def membership(
        self, user: User, organization: Organization, role: str, is_active: bool = True, is_owner: bool = False
    ):
        return await self._add(
            Membership(
                user_id=user.id, organization_id=organization.id, role=role, is_active=is_active, is_owner=is_owner
            )
        )

    async def assignment(self, user: User, role: str, is_active: bool = True, valid_until: Optional[datetime] = None):
        return await self._add(RoleAssignment(user_id=user.id, role=role, is_active=is_active, valid_until=valid_until))

    async def grant(
        self,
        user: User,
        organization: Optional[Organization],
        permission: str,
        granted: bool = True,
        is_active: bool = True,
        expires_at: Optional[datetime] = None,
    ):
        return await self._add(
            ExplicitGrant(
                user_id=user.id,
                organization_id=organization.id if organization is not None else None,
                permission=permission,
                granted=granted,
                is_active=is_active,
                expires_at=expires_at,
            )
        )

    async def cache_entry(
        self,
        user: User,
        organization: Optional[Organization],
        roles,
        permissions,
        age: timedelta = timedelta(0),
    ):
        return await self._add(
            PermissionCacheEntry(
                user_id=user.id,
                organization_id=organization.id if organization is not None else None,
                roles=sorted(roles),
                permissions=sorted(permissions),
                computed_at=utcnow() - age,
            )
        )

    async def plan(self, name: str = "starter", features: Optional[Dict] = None, limits: Optional[Dict] = None):
        return await self._add(
            Plan(name=name, display_name=name.title(), features=features or {}, limits=limits or {})
        )

    async def subscription(self, organization: Organization, plan: Plan, status: str = "active"):
        return await self._add(Subscription(tenant_id=organization.id, plan=plan, status=status))


@pytest.fixture
async def seed(db, catalog) -> Seeder:
    seeder = Seeder(db, catalog)
    await seeder.role_definitions()
    return seeder


# ============================================================================
# AUTH
# ============================================================================

def make_token(user_id: str, **claims) -> str:
    payload = {"sub": user_id, "exp": utcnow() + timedelta(minutes=5), **claims}
    return jwt.encode(payload, os.environ["JWT_SECRET"], algorithm="HS256")


def auth_header(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}
