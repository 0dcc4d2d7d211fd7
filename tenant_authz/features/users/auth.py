"""
Bearer token verification.

Tokens are issued by the external identity provider; this module only
checks them and extracts the actor id.
"""
from typing import Optional
import jwt

from tenant_authz.core import config
from tenant_authz.utils import get_logger


log = get_logger(__name__)

ACTOR_CLAIMS = ("sub", "userId", "user_id")


def verify_jwt_token(token: str) -> Optional[dict]:
    """
    Verify a JWT and return its payload, or None when it is not acceptable.

    Signature verification needs JWT_SECRET; without it no token verifies,
    so every request is treated as unauthenticated.
    """
    if not config.JWT_SECRET:
        log.warning("JWT_SECRET is not configured; rejecting bearer token")
        return None
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        log.info("Rejected expired token")
        return None
    except jwt.InvalidTokenError as e:
        log.info("Rejected invalid token: %s", e)
        return None


def actor_id_from_payload(payload: Optional[dict]) -> Optional[str]:
    """First actor claim present in the payload."""
    if not payload:
        return None
    for claim in ACTOR_CLAIMS:
        value = payload.get(claim)
        if value:
            return str(value)
    return None
