"""Storage side of the event pipeline (POST /api/track and DatabaseTransport)."""

import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from giftghost.models.tracking_event import TrackingEvent
from giftghost.schemas.tracking import TrackEventIn
from giftghost.services.tracking.device import anonymize_ip, parse_browser_info, parse_device_type
from giftghost.services.tracking.sanitize import sanitize_properties

logger = logging.getLogger(__name__)

MAX_EVENTS_PER_REQUEST = 100
MAX_USER_AGENT_CHARS = 500


def _event_time(timestamp_ms: int) -> datetime:
    try:
        return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.warning(f"Unusable event timestamp {timestamp_ms}, using receive time")
        return datetime.now(timezone.utc)


def build_records(
    events: Sequence[TrackEventIn],
    user_agent: str | None = None,
    ip: str | None = None,
) -> list[TrackingEvent]:
    """Turn wire events into rows, attaching request metadata."""
    received_at = datetime.now(timezone.utc)
    ip_hash = anonymize_ip(ip)

    records: list[TrackingEvent] = []
    for event in events:
        event_ua = event.user_agent or user_agent
        info = parse_browser_info(event_ua)
        records.append(
            TrackingEvent(
                name=event.name,
                properties=sanitize_properties(event.properties),
                timestamp=_event_time(event.timestamp),
                session_id=event.session_id,
                anonymous_id=event.anonymous_id,
                trace_id=event.trace_id,
                user_agent=event_ua[:MAX_USER_AGENT_CHARS] if event_ua else None,
                device_type=parse_device_type(event_ua),
                browser=info["browser"],
                os=info["os"],
                ip_hash=ip_hash,
                received_at=received_at,
            )
        )
    return records


def store_events(
    db: Session,
    events: Sequence[TrackEventIn],
    user_agent: str | None = None,
    ip: str | None = None,
) -> int:
    """Insert one batch of events. Raises SQLAlchemyError on store failure."""
    records = build_records(events, user_agent=user_agent, ip=ip)
    db.add_all(records)
    db.commit()
    logger.debug(f"Stored {len(records)} tracking events")
    return len(records)
