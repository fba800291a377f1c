"""Gift insight generation endpoints."""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from giftghost.database.session import get_db
from giftghost.dependencies import AppServices, get_identity, get_services, get_trace_context_dep
from giftghost.schemas.generation import GenerateRequest, GenerateResponse, RateLimitStatusResponse
from giftghost.types.governance import Identity, TraceContext

router = APIRouter(prefix="/api", tags=["generation"])


@router.post("/generate", response_model=GenerateResponse, response_model_exclude_none=True)
async def generate(
    data: GenerateRequest,
    response: Response,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    context: TraceContext = Depends(get_trace_context_dep),
    services: AppServices = Depends(get_services),
) -> GenerateResponse:
    """
    Generate a gift insight.

    Always HTTP 200 once the body validates; rate-limit rejections and
    generation failures are reported in the body (``success: false``).
    """
    return await services.generation.generate_insight(
        db, data, identity, context, response=response
    )


@router.get("/rate-limit", response_model=RateLimitStatusResponse)
def rate_limit_status(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    services: AppServices = Depends(get_services),
) -> RateLimitStatusResponse:
    """Remaining generations for the caller today. Consumes nothing."""
    result = services.limiter.peek(db, identity)
    return RateLimitStatusResponse(
        allowed=result.allowed,
        limit=result.limit,
        remaining=result.remaining,
        reset_at=result.reset_at,
        authenticated=identity.is_authenticated,
        degraded=result.degraded,
    )
