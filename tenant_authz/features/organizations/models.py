"""
Organization (tenant) and membership models.

Organizations are the tenants every membership, grant and quota is scoped to.
Users can belong to several organizations and have one current organization.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, Boolean, DateTime, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from tenant_authz.core.database.base import Base, TimestampMixin, generate_ulid


class Organization(Base, TimestampMixin):
    """
    Organization model representing a tenant.

    party_id links the tenant to its counterpart record in the host domain
    (the employer/party row contracts are filtered by).
    """
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    party_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


class Membership(Base, TimestampMixin):
    """
    A user's role inside one organization.

    At most one active membership per (user, organization). Removal flips
    is_active to False; rows are kept for audit history.
    """
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_membership_user_org"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )

    role: Mapped[str] = mapped_column(String(50), nullable=False, default="user")  # user, manager, admin, owner
    is_owner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)  # also holds the owner role
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<Membership(user_id={self.user_id}, org_id={self.organization_id}, "
            f"role={self.role}, active={self.is_active})>"
        )
