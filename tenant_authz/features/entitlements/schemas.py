"""
Pydantic schemas for entitlement endpoints.
"""
from typing import Optional
from pydantic import BaseModel


class EntitlementResponse(BaseModel):
    """Whether the active tenant may consume more of a resource."""
    resource: str
    organization_id: Optional[str] = None
    allowed: bool
    reason: str
    current: Optional[int] = None
    limit: Optional[int] = None  # None means unlimited
    plan: Optional[str] = None
