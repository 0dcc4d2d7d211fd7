"""
Authorization and entitlement error hierarchy.

Provides:
- AuthzError: base for every failure the guard or enforcer surfaces
- Unauthenticated: no verified actor (401)
- Unauthorized: actor lacks the required permission(s) (403)
- ResolutionError: storage failure while resolving permissions (403, fail-closed)
- NoActiveTenant: write path needs a tenant and the actor has none (400)
- QuotaExceeded: entitlement denial (402)
- QuotaResolutionError: storage failure while checking entitlements (logged, fail-open)

Only RequestGuard and EntitlementEnforcer raise these; the exception handler
in main.py turns them into responses.
"""
from typing import Iterable, List, Optional

from fastapi import status


class AuthzError(Exception):
    """Base exception for authorization and entitlement failures."""

    error_code = "AUTHZ_ERROR"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class Unauthenticated(AuthzError):
    """Raised when no verified actor identity is attached to the request."""

    error_code = "UNAUTHENTICATED"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class Unauthorized(AuthzError):
    """
    Raised when the actor is verified but lacks the required permission(s).

    Carries the unmet permissions so operators can see exactly what failed.
    """

    error_code = "UNAUTHORIZED"

    def __init__(
        self,
        required: Iterable[str],
        missing: Optional[Iterable[str]] = None,
        reason: str = "MISSING_PERMISSION",
    ):
        self.required: List[str] = sorted(required)
        self.missing: List[str] = sorted(missing) if missing is not None else list(self.required)
        self.reason = reason
        super().__init__(f"Insufficient permissions: {', '.join(self.missing) or 'none'} ({reason})")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": "Insufficient permissions",
            "required_permissions": self.required,
            "missing_permissions": self.missing,
            "reason": self.reason,
        }


class ResolutionError(Unauthorized):
    """
    Raised when permission resolution hit a storage error or timeout.

    Looks like Unauthorized to the caller; the distinct error_code lets
    operators tell "policy denied" from "infrastructure degraded".
    """

    error_code = "RBAC_RESOLUTION_ERROR"

    def __init__(self, required: Iterable[str], detail: str = "Error checking permissions"):
        self.detail = detail
        super().__init__(required, reason="RESOLUTION_ERROR")

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["error"] = Unauthorized.error_code
        return payload


class NoActiveTenant(AuthzError):
    """Raised by write paths that need an active tenant when none is set."""

    error_code = "NO_ACTIVE_TENANT"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = "No active organization set. Please switch to an organization first."):
        super().__init__(message)


class QuotaExceeded(AuthzError):
    """
    Raised when a tenant may not consume more of a bounded resource.

    Carries plan, usage and limit so the caller can render an upgrade prompt.
    """

    error_code = "QUOTA_EXCEEDED"
    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(
        self,
        tenant_id: Optional[str],
        resource: str,
        reason: str,
        plan: Optional[str] = None,
        current: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        self.tenant_id = tenant_id
        self.resource = resource
        self.reason = reason
        self.plan = plan
        self.current = current
        self.limit = limit
        super().__init__(f"Entitlement denied for {resource} (tenant {tenant_id}): {reason}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "resource": self.resource,
            "reason": self.reason,
            "plan": self.plan,
            "current": self.current,
            "limit": self.limit,
        }


class QuotaResolutionError(AuthzError):
    """
    Entitlement lookup failed (storage error or timeout).

    Never raised to callers: the enforcer logs it and allows the operation.
    """

    error_code = "QUOTA_RESOLUTION_ERROR"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, tenant_id: Optional[str], resource: str, cause: Optional[BaseException] = None):
        self.tenant_id = tenant_id
        self.resource = resource
        self.cause = cause
        super().__init__(f"Entitlement lookup failed for {resource} (tenant {tenant_id}): {cause!r}")
