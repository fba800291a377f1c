"""Liveness probe for load balancers and uptime checks."""

from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check() -> dict[str, str]:
    """Report that the process is up. Does not touch the database."""
    return {"status": "healthy"}
