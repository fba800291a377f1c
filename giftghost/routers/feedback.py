"""Feedback endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from giftghost.database.session import get_db
from giftghost.dependencies import AppServices, get_services, get_trace_context_dep
from giftghost.schemas.feedback import FeedbackRequest, FeedbackResponse
from giftghost.types.governance import FeedbackData, TraceContext

router = APIRouter(prefix="/api", tags=["feedback"])


@router.post("/feedback", response_model=FeedbackResponse)
def submit_feedback(
    data: FeedbackRequest,
    db: Session = Depends(get_db),
    context: TraceContext = Depends(get_trace_context_dep),
    services: AppServices = Depends(get_services),
) -> FeedbackResponse:
    """Attach a like/dislike to a trace. Unknown traces report success=false."""
    recorded = services.trace_manager.attach_feedback(
        db,
        context,
        data.trace_id,
        FeedbackData(
            feedback_type=data.feedback_type.value,
            result_snapshot=data.result_snapshot,
            feedback_score=data.feedback_score,
            feedback_reason=data.feedback_reason,
        ),
    )
    return FeedbackResponse(success=recorded)
