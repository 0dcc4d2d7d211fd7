"""
Permission resolution.

Decides whether an actor holds a set of permissions inside a tenant:

1. Base set from the first strategy that has an answer:
   cache snapshot -> tenant membership roles -> global role assignments.
   A cache-read error counts as a miss.
2. Explicit grant overlay, on every path: live grants are added, live
   denials are removed. A denial always wins, even over a cached snapshot.
3. The overlaid set is tested against the requirement (ALL or ANY).

Any storage error or timeout in steps 1-2 (outside the cache read) yields a
denial with reason RESOLUTION_ERROR. Authorization fails closed.

Resolution is read-only. Missing snapshots are not written back from here;
that is the refresh job's business.
"""
import asyncio
import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.core import config
from tenant_authz.features.organizations.store import MembershipStore
from tenant_authz.features.permissions.cache import PermissionCache
from tenant_authz.features.permissions.catalog import (
    InvalidPermissionError,
    PermissionCatalog,
    PermissionId,
    get_catalog,
)
from tenant_authz.features.permissions.store import ExplicitGrantStore, RoleAssignmentStore
from tenant_authz.utils import get_logger


log = get_logger(__name__)
audit_log = get_logger("tenant_authz.audit")


class MatchMode(str, enum.Enum):
    """ALL: every listed permission is required. ANY: one is enough."""
    ALL = "all"
    ANY = "any"


class DecisionReason(str, enum.Enum):
    ALLOWED = "ALLOWED"
    ALLOWED_BY_ROLE = "ALLOWED_BY_ROLE"
    NO_ACTIVE_ROLE = "NO_ACTIVE_ROLE"
    MISSING_PERMISSION = "MISSING_PERMISSION"
    EXPLICITLY_DENIED = "EXPLICITLY_DENIED"
    RESOLUTION_ERROR = "RESOLUTION_ERROR"
    INVALID_PERMISSION = "INVALID_PERMISSION"


@dataclass(frozen=True)
class PermissionSet:
    """Roles and permissions produced by one resolution strategy."""
    roles: FrozenSet[str]
    permissions: FrozenSet[str]
    source: str


@dataclass
class Decision:
    """Outcome of a permission check."""
    allowed: bool
    reason: DecisionReason
    required: List[str]
    mode: MatchMode
    matched_roles: List[str] = field(default_factory=list)
    matched_permissions: List[str] = field(default_factory=list)
    missing_permissions: List[str] = field(default_factory=list)
    source: str = "none"
    error_code: Optional[str] = None

    @property
    def is_resolution_error(self) -> bool:
        return self.reason == DecisionReason.RESOLUTION_ERROR


@dataclass
class EffectivePermissions:
    """The final overlaid permission set, for diagnostics."""
    roles: List[str]
    permissions: List[str]
    granted: List[str]
    denied: List[str]
    source: str


# ============================================================================
# Strategies
# ============================================================================

class ResolutionStrategy:
    """One source of an actor's base permission set."""

    name = "strategy"

    async def load(self, user_id: str, organization_id: Optional[str]) -> Optional[PermissionSet]:
        raise NotImplementedError


class CacheStrategy(ResolutionStrategy):
    """Fresh snapshot from the permission cache."""

    name = "cache"

    def __init__(self, cache: PermissionCache):
        self.cache = cache

    async def load(self, user_id: str, organization_id: Optional[str]) -> Optional[PermissionSet]:
        try:
            entry = await self.cache.get(user_id, organization_id)
        except Exception:
            log.warning(
                "Permission cache read failed for user=%s org=%s; falling back",
                user_id, organization_id, exc_info=True,
            )
            return None
        if entry is None:
            return None
        return PermissionSet(
            roles=frozenset(entry.roles or ()),
            permissions=frozenset(entry.permissions or ()),
            source=self.name,
        )


class MembershipStrategy(ResolutionStrategy):
    """Roles from active tenant memberships, expanded through the catalog."""

    name = "membership"

    def __init__(self, memberships: MembershipStore, catalog: PermissionCatalog):
        self.memberships = memberships
        self.catalog = catalog

    async def load(self, user_id: str, organization_id: Optional[str]) -> Optional[PermissionSet]:
        if organization_id is None:
            return None
        roles = await self.memberships.active_roles(user_id, organization_id)
        if not roles:
            return None
        return PermissionSet(
            roles=frozenset(roles),
            permissions=self.catalog.expand_roles(roles),
            source=self.name,
        )


class RoleAssignmentStrategy(ResolutionStrategy):
    """Global role assignments, used when no membership applies."""

    name = "role_assignment"

    def __init__(self, assignments: RoleAssignmentStore, catalog: PermissionCatalog):
        self.assignments = assignments
        self.catalog = catalog

    async def load(self, user_id: str, organization_id: Optional[str]) -> Optional[PermissionSet]:
        roles = await self.assignments.active_roles(user_id)
        if not roles:
            return None
        return PermissionSet(
            roles=frozenset(roles),
            permissions=self.catalog.expand_roles(roles),
            source=self.name,
        )


# ============================================================================
# Resolver
# ============================================================================

def normalize_required(required: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(required, str):
        items = [required]
    else:
        items = list(required)
    if not items:
        raise ValueError("At least one permission is required")
    return sorted(set(items))


class PermissionResolver:
    """
    Combines cache, memberships, role assignments, explicit grants and the
    catalog into an allow/deny Decision.
    """

    def __init__(
        self,
        db: AsyncSession,
        catalog: Optional[PermissionCatalog] = None,
        *,
        cache: Optional[PermissionCache] = None,
        memberships: Optional[MembershipStore] = None,
        role_assignments: Optional[RoleAssignmentStore] = None,
        grants: Optional[ExplicitGrantStore] = None,
        strategies: Optional[Sequence[ResolutionStrategy]] = None,
        timeout: Optional[float] = None,
    ):
        self.catalog = catalog or get_catalog()
        self.cache = cache or PermissionCache(db, self.catalog)
        self.memberships = memberships or MembershipStore(db)
        self.role_assignments = role_assignments or RoleAssignmentStore(db)
        self.grants = grants or ExplicitGrantStore(db)
        self.strategies: List[ResolutionStrategy] = list(strategies) if strategies is not None else [
            CacheStrategy(self.cache),
            MembershipStrategy(self.memberships, self.catalog),
            RoleAssignmentStrategy(self.role_assignments, self.catalog),
        ]
        self.timeout = timeout if timeout is not None else config.PERMISSION_RESOLUTION_TIMEOUT_SECONDS

    async def resolve(
        self,
        user_id: str,
        organization_id: Optional[str],
        required: Union[str, Iterable[str]],
        mode: MatchMode = MatchMode.ALL,
        allowed_roles: Optional[Iterable[str]] = None,
    ) -> Decision:
        """
        Decide whether the actor holds `required` in `organization_id`.

        Never raises for storage problems; those become a RESOLUTION_ERROR
        denial. Cancellation propagates untouched.
        """
        required_list = normalize_required(required)
        mode = MatchMode(mode)

        invalid = []
        for permission in required_list:
            try:
                PermissionId.parse(permission)
            except InvalidPermissionError:
                invalid.append(permission)
        if invalid:
            decision = Decision(
                allowed=False,
                reason=DecisionReason.INVALID_PERMISSION,
                required=required_list,
                mode=mode,
                missing_permissions=invalid,
            )
            self._audit(user_id, organization_id, decision)
            return decision

        try:
            work = self._resolve(user_id, organization_id, required_list, mode, frozenset(allowed_roles or ()))
            if self.timeout:
                decision = await asyncio.wait_for(work, self.timeout)
            else:
                decision = await work
        except Exception as e:
            log.error(
                "RBAC_RESOLUTION_ERROR user=%s org=%s required=%s: %r",
                user_id, organization_id, required_list, e, exc_info=True,
            )
            decision = Decision(
                allowed=False,
                reason=DecisionReason.RESOLUTION_ERROR,
                required=required_list,
                mode=mode,
                missing_permissions=required_list,
                error_code="RBAC_RESOLUTION_ERROR",
            )

        self._audit(user_id, organization_id, decision)
        return decision

    async def _base_set(self, user_id: str, organization_id: Optional[str]) -> Optional[PermissionSet]:
        for strategy in self.strategies:
            base = await strategy.load(user_id, organization_id)
            if base is not None:
                return base
        return None

    async def _resolve(
        self,
        user_id: str,
        organization_id: Optional[str],
        required: List[str],
        mode: MatchMode,
        allowed_roles: FrozenSet[str],
    ) -> Decision:
        base = await self._base_set(user_id, organization_id)
        if base is None or (base.source != CacheStrategy.name and not base.permissions):
            return Decision(
                allowed=False,
                reason=DecisionReason.NO_ACTIVE_ROLE,
                required=required,
                mode=mode,
                missing_permissions=required,
                source=base.source if base is not None else "none",
            )

        granted, denied = await self.grants.overlay(user_id, organization_id)
        effective = (base.permissions | granted) - denied
        return self._decide(base, effective, denied, required, mode, allowed_roles)

    def _decide(
        self,
        base: PermissionSet,
        effective: FrozenSet[str],
        denied: FrozenSet[str],
        required: List[str],
        mode: MatchMode,
        allowed_roles: FrozenSet[str],
    ) -> Decision:
        matched_permissions: List[str] = []
        matched_roles = set()
        missing: List[str] = []
        blocked: List[str] = []

        for permission in required:
            if permission in denied:
                blocked.append(permission)
                missing.append(permission)
                continue
            satisfied_by = self.catalog.satisfying(effective, permission)
            if satisfied_by is None:
                missing.append(permission)
                continue
            matched_permissions.append(satisfied_by)
            matched_roles.update(self.catalog.roles_granting(base.roles, permission))

        if mode == MatchMode.ALL:
            by_permission = not missing
            vetoed = bool(blocked)
        else:
            by_permission = bool(matched_permissions)
            vetoed = len(blocked) == len(required)

        role_hits = sorted(base.roles & allowed_roles)
        by_role = bool(role_hits) and not vetoed

        if by_permission:
            reason = DecisionReason.ALLOWED
        elif by_role:
            reason = DecisionReason.ALLOWED_BY_ROLE
            matched_roles.update(role_hits)
        elif blocked:
            reason = DecisionReason.EXPLICITLY_DENIED
        else:
            reason = DecisionReason.MISSING_PERMISSION

        return Decision(
            allowed=by_permission or by_role,
            reason=reason,
            required=required,
            mode=mode,
            matched_roles=sorted(matched_roles),
            matched_permissions=sorted(set(matched_permissions)),
            missing_permissions=missing,
            source=base.source,
        )

    async def effective_permissions(self, user_id: str, organization_id: Optional[str]) -> EffectivePermissions:
        """
        Overlaid permission set for the actor in a tenant.

        Storage errors produce an empty set with source "error".
        """
        try:
            base = await self._base_set(user_id, organization_id)
            granted, denied = await self.grants.overlay(user_id, organization_id)
        except Exception:
            log.error(
                "RBAC_RESOLUTION_ERROR computing effective permissions for user=%s org=%s",
                user_id, organization_id, exc_info=True,
            )
            return EffectivePermissions(roles=[], permissions=[], granted=[], denied=[], source="error")

        if base is None:
            return EffectivePermissions(roles=[], permissions=[], granted=[], denied=sorted(denied), source="none")
        return EffectivePermissions(
            roles=sorted(base.roles),
            permissions=sorted((base.permissions | granted) - denied),
            granted=sorted(granted),
            denied=sorted(denied),
            source=base.source,
        )

    @staticmethod
    def _audit(user_id: str, organization_id: Optional[str], decision: Decision) -> None:
        audit_log.info(
            "%s user=%s org=%s permission=%s mode=%s reason=%s source=%s",
            "ALLOW" if decision.allowed else "DENY",
            user_id,
            organization_id,
            ",".join(decision.required),
            decision.mode.value,
            decision.reason.value,
            decision.source,
        )
