"""
Subscription plan models.

Plans and subscriptions are assigned by the billing side; this service
only reads them to decide whether a tenant may consume more of a resource.
"""
import enum
from datetime import datetime
from typing import Dict, Optional
from sqlalchemy import String, ForeignKey, JSON, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tenant_authz.core.database.base import Base, TimestampMixin, generate_ulid


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"


# Statuses that give a tenant a plan
LIVE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)


class Plan(Base, TimestampMixin):
    """
    A subscription plan.

    features: {"workflow": true, "analytics": false, ...}
    limits:   {"contracts": 10, "seats": 5, "storage_mb": null, ...}
    A null (or absent) limit means unlimited.
    """
    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)

    features: Mapped[Dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    limits: Mapped[Dict[str, Optional[int]]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, name={self.name!r})>"


class Subscription(Base):
    """
    A tenant's subscription to a plan.

    At most one active-or-trialing subscription per tenant is expected; if
    several exist the newest wins.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_tenant_status", "tenant_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    tenant_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    plan_id: Mapped[str] = mapped_column(String(26), ForeignKey("plans.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    plan: Mapped[Plan] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<Subscription(tenant_id={self.tenant_id}, plan_id={self.plan_id}, status={self.status})>"
