"""
Permission catalog and role hierarchy.

Permissions are `resource:action:scope` identifiers validated once, when the
catalog is built. Roles sit in one or more ordered chains; a role holds its
own defaults plus everything held by the roles below it in every chain it
belongs to.

The built-in table can be replaced without code changes by pointing
ROLE_HIERARCHY_FILE at a JSON document:

    {
        "chains": {"global": ["guest", "user", ...], "tenant": ["manager", "admin", "owner"]},
        "defaults": {"user": ["contract:read:own", ...], ...}
    }
"""
import enum
import json
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import AbstractSet, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set

from tenant_authz.core import config
from tenant_authz.utils import get_logger


log = get_logger(__name__)


class InvalidPermissionError(ValueError):
    """Raised when a permission identifier is not `resource:action:scope`."""


class Scope(str, enum.Enum):
    """Breadth of a permission, narrowest first."""
    OWN = "own"
    ORGANIZATION = "organization"
    ALL = "all"

    @property
    def rank(self) -> int:
        return _SCOPE_RANK[self]

    def covers(self, other: "Scope") -> bool:
        """True if this scope is at least as broad as `other`."""
        return self.rank >= other.rank


_SCOPE_RANK = {Scope.OWN: 0, Scope.ORGANIZATION: 1, Scope.ALL: 2}

_SEGMENT = re.compile(r"^[a-z][a-z0-9_]*$")


@dataclass(frozen=True)
class PermissionId:
    """Parsed permission identifier."""
    resource: str
    action: str
    scope: Scope

    @classmethod
    def parse(cls, value: str) -> "PermissionId":
        parts = value.split(":") if isinstance(value, str) else []
        if len(parts) != 3:
            raise InvalidPermissionError(f"Invalid permission format: {value!r} (expected resource:action:scope)")
        resource, action, scope = parts
        if not _SEGMENT.match(resource) or not _SEGMENT.match(action):
            raise InvalidPermissionError(f"Invalid permission format: {value!r}")
        try:
            parsed_scope = Scope(scope)
        except ValueError:
            raise InvalidPermissionError(
                f"Invalid permission scope in {value!r}: must be one of own, organization, all"
            ) from None
        return cls(resource=resource, action=action, scope=parsed_scope)

    def with_scope(self, scope: Scope) -> "PermissionId":
        return PermissionId(self.resource, self.action, scope)

    def __str__(self) -> str:
        return f"{self.resource}:{self.action}:{self.scope.value}"


# ============================================================================
# Role Hierarchy
# ============================================================================

class RoleHierarchy:
    """
    Ordered role chains.

    Each chain is a total order, lowest rank first. A role may appear in
    several chains (e.g. `manager` and `admin` are both global and
    tenant-local ranks); inheritance follows every chain it is in.
    """

    def __init__(self, chains: Mapping[str, Sequence[str]]):
        if not chains:
            raise ValueError("Role hierarchy needs at least one chain")
        self._chains: Dict[str, tuple] = {}
        self._below: Dict[str, Set[str]] = {}
        self._level: Dict[str, int] = {}
        for chain_name, roles in chains.items():
            roles = tuple(roles)
            if not roles:
                raise ValueError(f"Role chain {chain_name!r} is empty")
            if len(set(roles)) != len(roles):
                raise ValueError(f"Role chain {chain_name!r} lists a role twice")
            self._chains[chain_name] = roles
            for index, role in enumerate(roles):
                self._level.setdefault(role, index)
                lower = self._below.setdefault(role, set())
                if index > 0:
                    lower.add(roles[index - 1])
        self._closure: Dict[str, FrozenSet[str]] = {}

    @property
    def chains(self) -> Dict[str, tuple]:
        return dict(self._chains)

    @property
    def roles(self) -> FrozenSet[str]:
        return frozenset(self._level)

    def __contains__(self, role: object) -> bool:
        return role in self._level

    def level(self, role: str) -> int:
        """Rank of the role in the first chain that lists it; -1 if unknown."""
        return self._level.get(role, -1)

    def inherited_roles(self, role: str) -> FrozenSet[str]:
        """The role itself plus every role ranked below it, transitively."""
        if role not in self._level:
            return frozenset()
        cached = self._closure.get(role)
        if cached is not None:
            return cached
        seen: Set[str] = set()
        stack = [role]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._below.get(current, ()))
        result = frozenset(seen)
        self._closure[role] = result
        return result

    def outranks(self, role: str, other: str) -> bool:
        """True if `role` inherits from `other` and is not `other`."""
        return role != other and other in self.inherited_roles(role)


# ============================================================================
# Catalog
# ============================================================================

DEFAULT_CHAINS: Dict[str, List[str]] = {
    "global": ["guest", "user", "moderator", "manager", "admin", "super_admin"],
    "tenant": ["manager", "admin", "owner"],
}

# Only what each rank adds; lower ranks are inherited.
DEFAULT_ROLE_PERMISSIONS: Dict[str, List[str]] = {
    "guest": [
        "profile:read:own",
    ],
    "user": [
        "profile:update:own",
        "contract:read:own",
        "contract:create:own",
        "promoter:read:own",
        "attendance:create:own",
        "attendance:read:own",
        "document:read:own",
        "notification:read:own",
    ],
    "moderator": [
        "contract:read:organization",
        "contract:message:own",
        "promoter:read:organization",
        "document:read:organization",
        "party:read:organization",
    ],
    "manager": [
        "contract:update:own",
        "contract:generate:own",
        "contract:export:own",
        "promoter:create:organization",
        "promoter:update:organization",
        "attendance:read:organization",
        "document:create:organization",
        "user:read:organization",
        "analytics:read:organization",
        "payroll:read:organization",
    ],
    "admin": [
        "contract:update:organization",
        "contract:delete:organization",
        "contract:approve:organization",
        "party:update:organization",
        "user:manage:organization",
        "role:assign:organization",
        "payroll:update:organization",
        "company:read:organization",
        "workflow:manage:organization",
        "audit:read:organization",
    ],
    "owner": [
        "company:manage:organization",
        "company:delete:organization",
        "billing:manage:organization",
    ],
    "super_admin": [
        "contract:read:all",
        "contract:update:all",
        "contract:delete:all",
        "company:manage:all",
        "user:manage:all",
        "role:assign:all",
        "audit:read:all",
        "system:manage:all",
    ],
}


class PermissionCatalog:
    """
    Registry of permission identifiers and role defaults.

    Pure and immutable after construction; safe to share across requests.
    """

    def __init__(
        self,
        hierarchy: RoleHierarchy,
        role_permissions: Mapping[str, Iterable[str]],
        extra_permissions: Iterable[str] = (),
    ):
        self.hierarchy = hierarchy
        self._permissions: Dict[str, PermissionId] = {}
        self._defaults: Dict[str, FrozenSet[str]] = {}
        self._expanded: Dict[str, FrozenSet[str]] = {}

        for role, permissions in role_permissions.items():
            if role not in hierarchy:
                raise ValueError(f"Default permissions given for unknown role {role!r}")
            self._defaults[role] = frozenset(self.register(p) for p in permissions)
        for permission in extra_permissions:
            self.register(permission)

    def register(self, permission: str) -> str:
        """Validate and add a permission; returns its canonical string."""
        parsed = PermissionId.parse(permission)
        key = str(parsed)
        self._permissions.setdefault(key, parsed)
        return key

    def require(self, permission: str) -> str:
        """Canonical form of a permission that must already be registered."""
        key = str(PermissionId.parse(permission))
        if key not in self._permissions:
            raise InvalidPermissionError(f"Unknown permission: {permission!r}")
        return key

    def __contains__(self, permission: object) -> bool:
        return permission in self._permissions

    @property
    def permissions(self) -> FrozenSet[str]:
        return frozenset(self._permissions)

    @property
    def roles(self) -> FrozenSet[str]:
        return self.hierarchy.roles

    def defaults_for(self, role: str) -> FrozenSet[str]:
        """Permissions a role adds on top of the roles below it."""
        return self._defaults.get(role, frozenset())

    def expand_role(self, role: str) -> FrozenSet[str]:
        """Union of default permissions for `role` and every lower-ranked role."""
        cached = self._expanded.get(role)
        if cached is not None:
            return cached
        expanded: Set[str] = set()
        for inherited in self.hierarchy.inherited_roles(role):
            expanded |= self._defaults.get(inherited, frozenset())
        result = frozenset(expanded)
        self._expanded[role] = result
        return result

    def expand_roles(self, roles: Iterable[str]) -> FrozenSet[str]:
        expanded: Set[str] = set()
        for role in roles:
            expanded |= self.expand_role(role)
        return frozenset(expanded)

    def roles_granting(self, roles: Iterable[str], permission: str) -> List[str]:
        """Which of `roles` yield `permission` (directly or via a broader scope)."""
        return sorted(r for r in set(roles) if self.has_permission(self.expand_role(r), permission))

    @staticmethod
    def has_permission(effective: AbstractSet[str], required: str) -> bool:
        """
        Set-membership check that honours scope breadth.

        `contract:read:own` is satisfied by `contract:read:own`,
        `contract:read:organization` or `contract:read:all`.
        """
        if required in effective:
            return True
        try:
            parsed = PermissionId.parse(required)
        except InvalidPermissionError:
            return False
        return any(
            str(parsed.with_scope(scope)) in effective
            for scope in Scope
            if scope.rank > parsed.scope.rank
        )

    @staticmethod
    def satisfying(effective: AbstractSet[str], required: str) -> Optional[str]:
        """The member of `effective` that satisfies `required`, narrowest first."""
        if required in effective:
            return required
        try:
            parsed = PermissionId.parse(required)
        except InvalidPermissionError:
            return None
        for scope in Scope:
            if scope.rank > parsed.scope.rank:
                candidate = str(parsed.with_scope(scope))
                if candidate in effective:
                    return candidate
        return None


def build_catalog(document: Optional[Mapping] = None) -> PermissionCatalog:
    """Build a catalog from a role document, or from the built-in table."""
    if document is None:
        chains, defaults = DEFAULT_CHAINS, DEFAULT_ROLE_PERMISSIONS
        extra: Iterable[str] = ()
    else:
        chains = document.get("chains") or {}
        defaults = document.get("defaults") or {}
        extra = document.get("permissions") or ()
    return PermissionCatalog(RoleHierarchy(chains), defaults, extra)


def load_catalog(path: Optional[str] = None) -> PermissionCatalog:
    """
    Load the catalog from ROLE_HIERARCHY_FILE (or `path`).

    Malformed permissions or unknown roles raise here, at startup.
    """
    path = path or config.ROLE_HIERARCHY_FILE
    if not path:
        return build_catalog()
    with open(Path(path), "r") as f:
        document = json.load(f)
    catalog = build_catalog(document)
    log.info(
        "Loaded role hierarchy from %s (%d roles, %d permissions)",
        path, len(catalog.roles), len(catalog.permissions),
    )
    return catalog


@lru_cache(maxsize=1)
def get_catalog() -> PermissionCatalog:
    """Process-wide catalog, built on first use."""
    return load_catalog()
