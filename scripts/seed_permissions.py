"""
Seed script to populate role definitions and subscription plans.

Run this script after database initialization to create:
- One role definition per role in the permission catalog
- Default subscription plans

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio
from typing import Dict, List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.core.database.engine import get_db, init_db
from tenant_authz.features.entitlements.models import Plan
from tenant_authz.features.permissions.catalog import PermissionCatalog, get_catalog
from tenant_authz.features.permissions.models import RoleDefinition
from tenant_authz.utils import get_logger


log = get_logger(__name__)


ROLE_DESCRIPTIONS = {
    "guest": "Read-only access to own profile",
    "user": "Standard member working on own records",
    "moderator": "Reviews records across the organization",
    "manager": "Manages promoters, documents and own contracts",
    "admin": "Organization administrator",
    "owner": "Organization owner with billing access",
    "super_admin": "Platform administrator across all organizations",
}


DEFAULT_PLANS = {
    "free": {
        "display_name": "Free",
        "features": {"workflow": False, "analytics": False, "api_access": False},
        "limits": {"contracts": 3, "seats": 2, "storage_mb": 100, "promoters": 5},
    },
    "starter": {
        "display_name": "Starter",
        "features": {"workflow": False, "analytics": True, "api_access": False},
        "limits": {"contracts": 10, "seats": 5, "storage_mb": 1024, "promoters": 25},
    },
    "professional": {
        "display_name": "Professional",
        "features": {"workflow": True, "analytics": True, "api_access": True},
        "limits": {"contracts": 500, "seats": 25, "storage_mb": 10240, "promoters": 250},
    },
    "enterprise": {
        "display_name": "Enterprise",
        "features": {"workflow": True, "analytics": True, "api_access": True},
        "limits": {"contracts": None, "seats": None, "storage_mb": None, "promoters": None},
    },
}


async def seed_role_definitions(db: AsyncSession, catalog: PermissionCatalog) -> List[str]:
    """
    Create a role definition for every catalog role that has none.

    Returns:
        Names of the roles created
    """
    log.info("Creating role definitions...")
    created = []

    for role_name in sorted(catalog.roles, key=lambda r: (catalog.hierarchy.level(r), r)):
        stmt = select(RoleDefinition).where(RoleDefinition.name == role_name)
        result = await db.execute(stmt)
        if result.scalars().first():
            log.debug("Role '%s' already exists, skipping", role_name)
            continue

        db.add(RoleDefinition(name=role_name, description=ROLE_DESCRIPTIONS.get(role_name)))
        created.append(role_name)
        log.info("Created role '%s' with %d permissions", role_name, len(catalog.expand_role(role_name)))

    await db.commit()
    log.info("Created %d role definitions", len(created))
    return created


async def seed_plans(db: AsyncSession, plans: Dict[str, dict] = DEFAULT_PLANS) -> List[str]:
    """
    Create default plans that do not exist yet.

    Returns:
        Names of the plans created
    """
    log.info("Creating default plans...")
    created = []

    for name, plan_config in plans.items():
        stmt = select(Plan).where(Plan.name == name)
        result = await db.execute(stmt)
        if result.scalars().first():
            log.debug("Plan '%s' already exists, skipping", name)
            continue

        db.add(
            Plan(
                name=name,
                display_name=plan_config["display_name"],
                features=dict(plan_config["features"]),
                limits=dict(plan_config["limits"]),
            )
        )
        created.append(name)
        log.info("Created plan '%s'", name)

    await db.commit()
    return created


async def main():
    """Main function to seed role definitions and plans."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    # Get database session
    async for db in get_db():
        try:
            await seed_role_definitions(db, get_catalog())
            await seed_plans(db)
            log.info("Permission seeding completed successfully!")
        except Exception as e:
            log.error("Error seeding permissions: %s", e, exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
