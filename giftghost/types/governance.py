"""Value types for identity, rate limiting and tracing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class IdentityKind(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class Identity:
    """Caller identity derived from request context. Never persisted."""

    kind: IdentityKind
    ip: Optional[str] = None
    anonymous_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.kind == IdentityKind.AUTHENTICATED

    @property
    def key(self) -> str:
        """Identity-key used to partition rate-limit counters."""
        if self.is_authenticated and self.user_id:
            return f"ratelimit:user:{self.user_id}"

        parts: list[str] = []
        if self.ip:
            parts.append(f"ip:{self.ip}")
        if self.anonymous_id:
            parts.append(f"aid:{self.anonymous_id}")
        return f"ratelimit:anon:{':'.join(parts)}"


@dataclass
class WindowState:
    """
    Process-local short-window state for one identity-key.

    Not authoritative: the persisted daily counter is the source of truth.
    """

    count: int
    window_end: float  # epoch seconds
    day: date


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime
    degraded: bool = False  # decided without the persistent store


@dataclass(frozen=True)
class TraceContext:
    """Correlation ids and device info for the current request."""

    session_id: str
    anonymous_id: str
    device_type: str
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    # Minted for this request; the response must set the matching cookie
    session_is_new: bool = False
    anonymous_is_new: bool = False


@dataclass
class GenerationResult:
    persona: str
    pain_point: str
    obsession: str
    gift_item: str
    gift_reason: str
    gift_buy_link: str
    response_time_ms: int
    gift_price_range: Optional[str] = None


@dataclass
class FeedbackData:
    feedback_type: str  # 'like' | 'dislike'
    result_snapshot: dict[str, Any] = field(default_factory=dict)
    feedback_score: Optional[int] = None
    feedback_reason: Optional[str] = None
