"""Tracking event ingestion endpoint."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from giftghost import __version__
from giftghost.database.session import get_db
from giftghost.schemas.tracking import TrackRequest, TrackResponse, TrackServiceInfo
from giftghost.services.identity import get_client_ip
from giftghost.services.tracking.ingestion import MAX_EVENTS_PER_REQUEST, store_events

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["tracking"])


@router.post("/track", response_model=TrackResponse)
def ingest_events(
    data: TrackRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> TrackResponse:
    """Store a batch of 1-100 tracking events."""
    if not data.events:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid events: expected a non-empty events array",
        )
    if len(data.events) > MAX_EVENTS_PER_REQUEST:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many events: maximum {MAX_EVENTS_PER_REQUEST} per request",
        )

    ip = get_client_ip(request.headers) or (request.client.host if request.client else None)
    try:
        count = store_events(
            db,
            data.events,
            user_agent=request.headers.get("user-agent"),
            ip=ip,
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store {len(data.events)} tracking events: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store events",
        )

    return TrackResponse(success=True, count=count)


@router.get("/track", response_model=TrackServiceInfo)
def track_service_info() -> TrackServiceInfo:
    """Static descriptor of the ingestion endpoint."""
    return TrackServiceInfo(
        service="GiftGhost Tracking API",
        version=__version__,
        endpoints={"POST": "Submit tracking events", "GET": "Service information"},
    )
