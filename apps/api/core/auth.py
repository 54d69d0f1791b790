"""
Authentication dependencies.

Users are owned by the external identity provider; there is no user table
here. The dependency resolves the bearer token to the caller's opaque id.
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from uuid import UUID

from core.exceptions import UnauthorizedError
from core.security import get_user_id_from_token

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> UUID:
    """
    Get the current user's id from the JWT bearer token.

    Raises 401 if the token is missing, invalid, or carries a malformed subject.
    """
    if not credentials:
        raise UnauthorizedError("Not authenticated")

    user_id = get_user_id_from_token(credentials.credentials)
    if not user_id:
        raise UnauthorizedError("Invalid authentication credentials")

    try:
        return UUID(user_id)
    except ValueError:
        raise UnauthorizedError("Invalid user ID format")
