"""FastAPI dependencies for authentication."""

import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from giftghost.auth.jwt import validate_supabase_jwt
from giftghost.auth.schemas import User

logger = logging.getLogger(__name__)

# HTTPBearer with auto_error=False so we can handle missing tokens ourselves
security = HTTPBearer(auto_error=False)


def get_current_user_optional(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User | None:
    """
    Optional auth - returns None if no token provided.

    Generation is open to anonymous callers; a valid token only moves the
    caller into the authenticated rate-limit tier. An invalid token is
    treated the same as no token.

    Usage:
        @router.post("/api/generate")
        async def generate(user: User | None = Depends(get_current_user_optional)):
            ...
    """
    if not credentials:
        return None

    try:
        token_payload = validate_supabase_jwt(credentials.credentials)
    except HTTPException as e:
        logger.info(f"Ignoring unusable bearer token: {e.detail}")
        return None

    return User(
        id=token_payload.sub,
        email=token_payload.email,
        is_anonymous=token_payload.is_anonymous,
    )
