"""
Bearer token handling.

Athletes are authenticated by an external identity provider. This service
never issues credentials to end users; it only verifies the HS256 JWT it
is handed and reads the opaque athlete id from the `sub` claim.
`create_access_token` exists for service-to-service calls and tests.

SECRET_KEY must come from the environment and be at least 32 characters.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
from jose import JWTError, jwt
from core.config import settings
import logging

logger = logging.getLogger(__name__)

SECRET_KEY = settings.SECRET_KEY
if len(SECRET_KEY) < 32:
    raise ValueError(
        "SECRET_KEY must be at least 32 characters "
        "(e.g. the output of `openssl rand -base64 32`)"
    )

ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = timedelta(days=30)


def create_access_token(claims: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign `claims` with an `exp` of now + expires_delta (30 days by default)."""
    payload = dict(claims)
    payload["exp"] = datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_TTL)
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Verified claims, or None for a bad signature, bad format or expired token."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug(f"Rejected bearer token: {e}")
        return None


def get_user_id_from_token(token: str) -> Optional[str]:
    claims = decode_access_token(token)
    if not claims:
        return None
    return claims.get("sub")
