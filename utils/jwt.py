import os
from jose import jwt
from typing import Optional
import logging

ALGORITHM = "HS256"
AUDIENCE = "authenticated"

logger = logging.getLogger("auth")


def _get_jwt_secret() -> Optional[str]:
    return os.getenv("SUPABASE_JWT_SECRET")


def verify_access_token(token: str) -> Optional[dict]:
    """Verify a Supabase-issued access token and return its claims, or None."""
    secret = _get_jwt_secret()
    if not secret or not token:
        return None
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM], audience=AUDIENCE)
    except Exception as err:  # broad to log actual cause
        logger.warning("JWT verification failed: %s", str(err))
        return None


def user_id_from_authorization(header_value: Optional[str]) -> Optional[str]:
    """Best-effort extraction of the `sub` claim from an Authorization header value."""
    if not header_value:
        return None
    raw = header_value.strip()
    token = raw.split(" ", 1)[1].strip() if raw.lower().startswith("bearer ") else raw
    payload = verify_access_token(token)
    if not payload or not payload.get("sub"):
        return None
    return str(payload["sub"])
