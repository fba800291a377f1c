"""Caller identity resolution for rate limiting."""

from collections.abc import Mapping

from giftghost.auth.schemas import User
from giftghost.types.governance import Identity, IdentityKind

ANONYMOUS_ID_COOKIE = "gg_anonymous_id"
ANONYMOUS_ID_HEADER = "x-anonymous-id"

# Fits the anonymous/session id columns; a UUID is 36
MAX_CLIENT_ID_CHARS = 64


def clean_client_id(value: str | None) -> str | None:
    """Strip and bound an id the client sent us. Blank becomes None."""
    if not value:
        return None
    value = value.strip()[:MAX_CLIENT_ID_CHARS]
    return value or None


def get_client_ip(headers: Mapping[str, str]) -> str | None:
    """First X-Forwarded-For hop, else X-Real-IP, else None."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = clean_client_id(forwarded.split(",")[0])
        if first:
            return first
    return clean_client_id(headers.get("x-real-ip"))


def resolve_identity(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    user: User | None = None,
) -> Identity:
    """
    Derive the caller identity.

    A non-anonymous authenticated user is keyed by user id alone. Everyone
    else is keyed by whatever of (client IP, anonymous device id) is
    available; missing parts only make the key less specific.
    """
    if user is not None and not user.is_anonymous:
        return Identity(kind=IdentityKind.AUTHENTICATED, user_id=user.id)

    anonymous_id = clean_client_id(cookies.get(ANONYMOUS_ID_COOKIE)) or clean_client_id(
        headers.get(ANONYMOUS_ID_HEADER)
    )
    return Identity(
        kind=IdentityKind.ANONYMOUS,
        ip=get_client_ip(headers),
        anonymous_id=anonymous_id,
    )
