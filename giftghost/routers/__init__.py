"""API routers."""

from giftghost.routers import feedback, generation, health, traces, tracking

__all__ = [
    "health",
    "generation",
    "tracking",
    "feedback",
    "traces",
]
