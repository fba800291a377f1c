"""Trace lookup and analytics endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from giftghost.database.session import get_db
from giftghost.dependencies import AppServices, get_services
from giftghost.schemas.trace import (
    AISessionResponse,
    FeedbackQualityResponse,
    FeedbackRecordResponse,
    FullTraceResponse,
    FunnelMetricsResponse,
    TrackedEventResponse,
)

router = APIRouter(prefix="/api/traces", tags=["traces"])


@router.get("/metrics/funnel", response_model=FunnelMetricsResponse)
def funnel_metrics(
    days: int = Query(default=7, ge=1, le=90),
    db: Session = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> FunnelMetricsResponse:
    return FunnelMetricsResponse(**services.trace_manager.get_funnel_metrics(db, days=days))


@router.get("/metrics/feedback", response_model=FeedbackQualityResponse)
def feedback_quality(
    days: int = Query(default=7, ge=1, le=90),
    db: Session = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> FeedbackQualityResponse:
    return FeedbackQualityResponse(**services.trace_manager.get_feedback_quality(db, days=days))


@router.get("/{trace_id}", response_model=FullTraceResponse)
def get_trace(
    trace_id: str,
    db: Session = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> FullTraceResponse:
    """Session, latest feedback and tracked events for one trace."""
    trace = services.trace_manager.get_full_trace(db, trace_id)
    if trace is None:
        raise HTTPException(status_code=404, detail="Trace not found")

    feedback = trace["feedback"]
    return FullTraceResponse(
        ai_session=AISessionResponse.model_validate(trace["ai_session"]),
        feedback=FeedbackRecordResponse.model_validate(feedback) if feedback else None,
        events=[TrackedEventResponse.model_validate(event) for event in trace["events"]],
    )
