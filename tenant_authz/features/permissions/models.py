"""
Role, grant and cache models for organization-scoped RBAC.

This module holds:
- Role definitions the membership fallback joins against
- Global (tenant-less) role assignments
- Explicit per-permission grants and denials
- Precomputed permission snapshots (derived state, refreshed out of band)
"""
from datetime import datetime
from typing import List
from sqlalchemy import String, ForeignKey, JSON, Text, DateTime, Boolean, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from tenant_authz.core.database.base import Base, TimestampMixin, generate_ulid


class RoleDefinition(Base, TimestampMixin):
    """
    A role known to the store.

    Default permissions and rank come from the PermissionCatalog; this row
    only says whether the role is currently usable.
    """
    __tablename__ = "role_definitions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<RoleDefinition(id={self.id}, name={self.name!r}, active={self.is_active})>"


class RoleAssignment(Base, TimestampMixin):
    """
    Global role assignment, not tied to an organization.

    Consulted when the actor has no active membership for the tenant in question.
    """
    __tablename__ = "role_assignments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<RoleAssignment(user_id={self.user_id}, role={self.role}, active={self.is_active})>"


class ExplicitGrant(Base, TimestampMixin):
    """
    Per-actor, per-tenant override of a single permission.

    granted=True adds the permission, granted=False removes it. Rows whose
    expires_at has passed are ignored whatever is_active says.
    """
    __tablename__ = "explicit_grants"
    __table_args__ = (
        Index("ix_explicit_grants_lookup", "user_id", "organization_id", "permission"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )
    permission: Mapped[str] = mapped_column(String(150), nullable=False)

    granted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ExplicitGrant(user_id={self.user_id}, org_id={self.organization_id}, "
            f"permission={self.permission}, granted={self.granted})>"
        )


class PermissionCacheEntry(Base):
    """
    Denormalized snapshot of an actor's roles and permissions for one tenant.

    Derived state: may be stale, never authoritative.
    """
    __tablename__ = "permission_cache_entries"
    __table_args__ = (
        Index("ix_permission_cache_actor_tenant", "user_id", "organization_id", unique=True),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )

    roles: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    permissions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<PermissionCacheEntry(user_id={self.user_id}, org_id={self.organization_id}, computed_at={self.computed_at})>"
