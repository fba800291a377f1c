"""Supabase JWT validation."""

import logging

import jwt
from fastapi import HTTPException, status
from jwt import PyJWKClient

from giftghost.auth.schemas import TokenPayload
from giftghost.config import get_settings

logger = logging.getLogger(__name__)

_jwks_client = None


def get_jwks_client():
    """Get or create JWKS client."""
    global _jwks_client
    if _jwks_client is None:
        settings = get_settings()
        if settings.supabase_url:
            jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
            _jwks_client = PyJWKClient(jwks_url)
    return _jwks_client


def _to_payload(claims: dict) -> TokenPayload:
    return TokenPayload(
        sub=claims["sub"],
        email=claims.get("email"),
        exp=claims["exp"],
        is_anonymous=bool(claims.get("is_anonymous", False)),
    )


def validate_supabase_jwt(token: str) -> TokenPayload:
    """
    Validate Supabase JWT and extract claims.

    Args:
        token: The JWT token string (without "Bearer " prefix)

    Returns:
        TokenPayload with user_id (sub), email, expiration and anonymity flag

    Raises:
        HTTPException 401 on invalid/expired token
    """
    settings = get_settings()

    # First try JWKS verification (for ECC keys)
    jwks_client = get_jwks_client()
    if jwks_client:
        try:
            signing_key = jwks_client.get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["ES256"],
                options={"verify_aud": False},
            )
            return _to_payload(claims)
        except jwt.exceptions.PyJWTError as e:
            # Continue to the HS256 fallback
            logger.debug(f"JWKS verification failed: {e}")

    # Fallback to HS256 with legacy secret
    if not settings.supabase_jwt_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="JWT secret not configured",
        )

    try:
        claims = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
        return _to_payload(claims)
    except jwt.exceptions.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
