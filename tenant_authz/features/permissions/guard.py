"""
Request guard: authentication gate + tenant scope + permission decision.

    guard = RequestGuard(resolver, scopes)

    @guard.protect("contract:update:own")
    async def update_contract(ctx: GuardContext, contract_id: str):
        ...

    await update_contract(actor_id, "c-1")

No actor -> Unauthenticated, without consulting the resolver.
Denied -> Unauthorized (or ResolutionError when storage failed).
Allowed -> the handler runs with a GuardContext.
"""
import enum
import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union

from tenant_authz.core import config
from tenant_authz.core.errors import ResolutionError, Unauthenticated, Unauthorized
from tenant_authz.features.organizations.scope import TenantScope, TenantScopeResolver
from tenant_authz.features.permissions.catalog import PermissionCatalog
from tenant_authz.features.permissions.resolver import (
    Decision,
    DecisionReason,
    MatchMode,
    PermissionResolver,
    normalize_required,
)
from tenant_authz.utils import get_logger


log = get_logger(__name__)


class EnforcementMode(str, enum.Enum):
    ENFORCE = "enforce"
    DRY_RUN = "dry-run"


def get_enforcement_mode() -> EnforcementMode:
    """
    RBAC_ENFORCEMENT, forced to enforce in production.

    Unknown values enforce.
    """
    if config.ENVIRONMENT == "production":
        if config.RBAC_ENFORCEMENT != EnforcementMode.ENFORCE.value:
            log.warning("RBAC_ENFORCEMENT=%s ignored in production, enforcing", config.RBAC_ENFORCEMENT)
        return EnforcementMode.ENFORCE
    try:
        return EnforcementMode(config.RBAC_ENFORCEMENT)
    except ValueError:
        log.warning("Unknown RBAC_ENFORCEMENT=%r, enforcing", config.RBAC_ENFORCEMENT)
        return EnforcementMode.ENFORCE


@dataclass
class GuardContext:
    """What a guarded handler receives."""
    user_id: str
    scope: TenantScope
    decision: Decision

    @property
    def tenant_id(self) -> Optional[str]:
        return self.scope.tenant_id


def default_mode(required: Union[str, Iterable[str]]) -> MatchMode:
    """A single permission means ALL, a list of alternatives means ANY."""
    return MatchMode.ALL if isinstance(required, str) else MatchMode.ANY


class RequestGuard:
    """
    Wraps handlers with authentication and permission checks.

    Reads only: it never writes to the stores it consults.
    """

    def __init__(
        self,
        resolver: PermissionResolver,
        scopes: TenantScopeResolver,
        enforcement: Optional[EnforcementMode] = None,
    ):
        self.resolver = resolver
        self.scopes = scopes
        self.enforcement = enforcement or get_enforcement_mode()

    @property
    def catalog(self) -> PermissionCatalog:
        return self.resolver.catalog

    async def resolve_scope(self, user_id: str, for_write: bool = False) -> TenantScope:
        """
        Tenant scope for the actor; unknown actors give an empty scope.

        A lookup failure degrades to the global (empty) scope on reads and
        propagates on writes.
        """
        try:
            scope = await self.scopes.resolve_active_tenant(user_id, for_write=for_write)
        except Exception:
            if for_write:
                raise
            log.warning("Tenant scope resolution failed for user=%s; using global scope", user_id, exc_info=True)
            return TenantScope()
        return scope or TenantScope()

    async def check(
        self,
        user_id: Optional[str],
        required: Union[str, Iterable[str]],
        mode: Optional[MatchMode] = None,
        allowed_roles: Optional[Iterable[str]] = None,
        for_write: bool = False,
    ) -> GuardContext:
        """
        Authenticate, scope and authorize one operation.

        Raises Unauthenticated, Unauthorized or ResolutionError.
        """
        if not user_id:
            log.info("Blocked unauthenticated request for %s", required)
            raise Unauthenticated()

        mode = mode or default_mode(required)
        try:
            scope = await self.resolve_scope(user_id, for_write=for_write)
        except Exception:
            log.error("RBAC_RESOLUTION_ERROR resolving write scope for user=%s", user_id, exc_info=True)
            raise ResolutionError(normalize_required(required))
        decision = await self.resolver.resolve(user_id, scope.tenant_id, required, mode, allowed_roles)
        context = GuardContext(user_id=user_id, scope=scope, decision=decision)

        if decision.allowed:
            return context

        if decision.is_resolution_error:
            raise ResolutionError(decision.required)

        if self.enforcement == EnforcementMode.DRY_RUN and decision.reason != DecisionReason.INVALID_PERMISSION:
            log.warning(
                "WOULD_BLOCK user=%s org=%s required=%s reason=%s",
                user_id, scope.tenant_id, decision.required, decision.reason.value,
            )
            return context

        log.info(
            "BLOCKED user=%s org=%s required=%s reason=%s",
            user_id, scope.tenant_id, decision.required, decision.reason.value,
        )
        raise Unauthorized(decision.required, decision.missing_permissions, decision.reason.value)

    def wrap(
        self,
        required: Union[str, Iterable[str]],
        handler: Callable[..., Awaitable[Any]],
        mode: Optional[MatchMode] = None,
        allowed_roles: Optional[Iterable[str]] = None,
        for_write: bool = False,
    ) -> Callable[..., Awaitable[Any]]:
        """
        Return `handler` guarded by `required`.

        The wrapped callable takes the actor id first; the handler receives
        a GuardContext in its place. Permissions are checked against the
        catalog here, so a typo fails at wiring time, not per request.
        """
        permissions: List[str] = [self.catalog.require(p) for p in normalize_required(required)]
        checked: Union[str, List[str]] = permissions[0] if isinstance(required, str) else permissions

        @functools.wraps(handler)
        async def wrapped(user_id: Optional[str], *args, **kwargs):
            context = await self.check(user_id, checked, mode, allowed_roles, for_write)
            return await handler(context, *args, **kwargs)

        return wrapped

    def protect(
        self,
        required: Union[str, Iterable[str]],
        mode: Optional[MatchMode] = None,
        allowed_roles: Optional[Iterable[str]] = None,
        for_write: bool = False,
    ):
        """Decorator form of wrap()."""
        def decorator(handler: Callable[..., Awaitable[Any]]):
            return self.wrap(required, handler, mode, allowed_roles, for_write)
        return decorator
