"""Auth module for optional Supabase JWT validation."""

from giftghost.auth.dependencies import get_current_user_optional
from giftghost.auth.jwt import validate_supabase_jwt
from giftghost.auth.schemas import TokenPayload, User

__all__ = [
    "User",
    "TokenPayload",
    "validate_supabase_jwt",
    "get_current_user_optional",
]
