"""
FastAPI dependencies for the verified actor.
"""
from typing import Annotated, Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from tenant_authz.features.users.auth import verify_jwt_token, actor_id_from_payload


# auto_error=False: a missing token must reach the guard as "no actor"
security = HTTPBearer(auto_error=False)


async def get_current_actor_id(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Optional[str]:
    """
    Actor id from a verified bearer token, or None.

    The guard turns None into an Unauthenticated error.
    """
    if credentials is None:
        return None
    return actor_id_from_payload(verify_jwt_token(credentials.credentials))


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
