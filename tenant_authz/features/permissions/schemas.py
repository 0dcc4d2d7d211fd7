"""
Pydantic schemas for the permission diagnostics endpoints.
"""
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from tenant_authz.features.permissions.resolver import MatchMode


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking whether the current actor holds permissions."""
    permissions: List[str] = Field(..., min_length=1, description="Permission ids, e.g. 'contract:read:own'")
    mode: MatchMode = Field(MatchMode.ALL, description="'all' requires every permission, 'any' requires one")
    organization_id: Optional[str] = Field(None, description="Organization ID (uses current if not provided)")
    allowed_roles: List[str] = Field(default_factory=list, description="Roles that pass regardless of permissions")

    @field_validator('permissions')
    @classmethod
    def strip_permissions(cls, v: List[str]) -> List[str]:
        """Drop surrounding whitespace; the resolver validates the format."""
        return [p.strip() for p in v]


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    allowed: bool
    reason: str
    organization_id: Optional[str] = None
    required_permissions: List[str]
    matched_roles: List[str] = []
    matched_permissions: List[str] = []
    missing_permissions: List[str] = []
    source: str


# ============================================================================
# Effective Permissions Response
# ============================================================================

class EffectivePermissionsResponse(BaseModel):
    """Schema for the actor's overlaid permission set in an organization."""
    user_id: str
    organization_id: Optional[str] = None
    roles: List[str] = []
    permissions: List[str] = []
    granted: List[str] = []  # From explicit grants
    denied: List[str] = []  # Explicit denials, already removed from permissions
    source: str
