"""Trace sessions: one AI session row per generation attempt.

State machine per trace_id: processing -> completed | processing -> failed.
Terminal writes are a conditional UPDATE on ``status = 'processing'``, so a
duplicate or late completion is a logged no-op instead of a second write.
The trace id travels to the browser in a short-lived cookie so client-side
events from the same flow can be tagged with it; the cookie is cleared when
the attempt ends so the next generation mints a fresh id.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.responses import Response

from giftghost.models.ai_session import AISession
from giftghost.models.enums import FeedbackType, SessionStatus
from giftghost.models.tracking_event import TrackingEvent
from giftghost.models.user_feedback import UserFeedback
from giftghost.services.identity import ANONYMOUS_ID_COOKIE, ANONYMOUS_ID_HEADER, clean_client_id
from giftghost.services.tracking.device import parse_device_type
from giftghost.services.tracking.tracker import Tracker
from giftghost.types.governance import FeedbackData, GenerationResult, TraceContext

logger = logging.getLogger(__name__)

TRACE_ID_COOKIE = "gg_trace_id"
SESSION_ID_COOKIE = "gg_session_id"

TRACE_COOKIE_MAX_AGE = 60 * 60 * 24
SESSION_COOKIE_MAX_AGE = 60 * 30
ANONYMOUS_COOKIE_MAX_AGE = 60 * 60 * 24 * 365

INPUT_PREVIEW_CHARS = 200
ERROR_MESSAGE_MAX_CHARS = 1000


def get_trace_context(headers: Mapping[str, str], cookies: Mapping[str, str]) -> TraceContext:
    """Build the correlation context for a request, minting ids the caller lacks."""
    anonymous_id = clean_client_id(cookies.get(ANONYMOUS_ID_COOKIE)) or clean_client_id(
        headers.get(ANONYMOUS_ID_HEADER)
    )
    session_id = clean_client_id(cookies.get(SESSION_ID_COOKIE))
    user_agent = headers.get("user-agent") or None

    return TraceContext(
        session_id=session_id or str(uuid4()),
        anonymous_id=anonymous_id or str(uuid4()),
        device_type=parse_device_type(user_agent),
        trace_id=cookies.get(TRACE_ID_COOKIE) or None,
        user_agent=user_agent,
        session_is_new=not session_id,
        anonymous_is_new=not anonymous_id,
    )


class TraceManager:
    """Owns AI session rows, feedback rows and the trace cookie."""

    def __init__(self, tracker: Tracker, input_max_chars: int = 10_000):
        self.tracker = tracker
        self.input_max_chars = input_max_chars

    def start_session(
        self,
        db: Session,
        context: TraceContext,
        input_mode: str,
        input_content: str,
        locale: str,
        response: Response | None = None,
    ) -> str:
        """
        Open a 'processing' session for a new generation attempt.

        Returns the new trace id. Raises SQLAlchemyError if the row cannot
        be written; the caller decides whether to continue untraced.
        """
        trace_id = str(uuid4())
        row = AISession(
            trace_id=trace_id,
            session_id=context.session_id,
            anonymous_id=context.anonymous_id,
            input_mode=input_mode,
            input_content=input_content[: self.input_max_chars],
            input_preview=input_content[:INPUT_PREVIEW_CHARS],
            input_length=len(input_content),
            locale=locale,
            status=SessionStatus.PROCESSING,
        )
        try:
            db.add(row)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise

        if response is not None:
            self._set_trace_cookies(response, context, trace_id)

        self._emit(
            "session_start",
            {
                "input_mode": input_mode,
                "input_length": len(input_content),
                "locale": locale,
                "userAgent": context.user_agent,
            },
            context,
            trace_id,
        )
        logger.info(f"Started AI session {trace_id} ({input_mode}, {locale})")
        return trace_id

    def complete_session(
        self,
        db: Session,
        context: TraceContext,
        trace_id: str,
        result: GenerationResult,
        response: Response | None = None,
    ) -> bool:
        """Move a processing session to 'completed'. False if it was not processing."""
        updated = self._finish(
            db,
            trace_id,
            SessionStatus.COMPLETED,
            persona=result.persona,
            pain_point=result.pain_point,
            obsession=result.obsession,
            gift_item=result.gift_item,
            gift_reason=result.gift_reason,
            gift_price_range=result.gift_price_range,
            gift_buy_link=result.gift_buy_link,
            response_time_ms=result.response_time_ms,
        )
        if response is not None:
            response.delete_cookie(TRACE_ID_COOKIE, path="/")

        if updated:
            self._emit(
                "generation_completed",
                {
                    "persona": result.persona,
                    "gift_item": result.gift_item,
                    "response_time_ms": result.response_time_ms,
                },
                context,
                trace_id,
            )
        return updated

    def fail_session(
        self,
        db: Session,
        context: TraceContext,
        trace_id: str,
        error: str,
        elapsed_ms: int,
        response: Response | None = None,
    ) -> bool:
        """Move a processing session to 'failed'. False if it was not processing."""
        error_message = (error or "Unknown error")[:ERROR_MESSAGE_MAX_CHARS]
        updated = self._finish(
            db,
            trace_id,
            SessionStatus.FAILED,
            error_message=error_message,
            response_time_ms=elapsed_ms,
        )
        if response is not None:
            response.delete_cookie(TRACE_ID_COOKIE, path="/")

        if updated:
            self._emit(
                "generation_failed",
                {"error": error_message, "response_time_ms": elapsed_ms},
                context,
                trace_id,
            )
        return updated

    def attach_feedback(
        self,
        db: Session,
        context: TraceContext,
        trace_id: str,
        feedback: FeedbackData,
    ) -> bool:
        """
        Record a like/dislike for a trace.

        Feedback for an unknown trace is logged and dropped. Repeat
        submissions for the same trace each add a row.
        """
        try:
            session = self.get_session(db, trace_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to look up trace {trace_id} for feedback: {e}")
            return False
        if session is None:
            logger.warning(f"Feedback for unknown trace {trace_id} dropped")
            return False

        row = UserFeedback(
            trace_id=trace_id,
            ai_session_id=session.id,
            session_id=context.session_id,
            anonymous_id=context.anonymous_id,
            feedback_type=FeedbackType(feedback.feedback_type),
            feedback_score=feedback.feedback_score,
            feedback_reason=feedback.feedback_reason,
            result_snapshot=feedback.result_snapshot or {},
            device_type=context.device_type,
        )
        try:
            db.add(row)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to store feedback for trace {trace_id}: {e}")
            return False

        self._emit(
            "user_feedback",
            {
                "feedback_type": row.feedback_type.value,
                "feedback_score": feedback.feedback_score,
                "feedback_reason": feedback.feedback_reason,
                "device_type": context.device_type,
            },
            context,
            trace_id,
        )
        return True

    def get_session(self, db: Session, trace_id: str) -> AISession | None:
        return db.execute(
            select(AISession).where(AISession.trace_id == trace_id)
        ).scalar_one_or_none()

    def get_full_trace(self, db: Session, trace_id: str) -> dict[str, Any] | None:
        """Session row, its most recent feedback and every tracked event for the trace."""
        session = self.get_session(db, trace_id)
        if session is None:
            return None

        feedback = db.execute(
            select(UserFeedback)
            .where(UserFeedback.trace_id == trace_id)
            .order_by(UserFeedback.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        events = (
            db.execute(
                select(TrackingEvent)
                .where(TrackingEvent.trace_id == trace_id)
                .order_by(TrackingEvent.timestamp.asc())
            )
            .scalars()
            .all()
        )
        return {"ai_session": session, "feedback": feedback, "events": list(events)}

    def get_funnel_metrics(self, db: Session, days: int = 7) -> dict[str, Any]:
        """Started -> completed/failed -> feedback counts over the last ``days`` days."""
        since = datetime.now(timezone.utc) - timedelta(days=days)

        status_counts = dict(
            db.execute(
                select(AISession.status, func.count(AISession.id))
                .where(AISession.created_at >= since)
                .group_by(AISession.status)
            ).all()
        )
        started = sum(status_counts.values())
        completed = status_counts.get(SessionStatus.COMPLETED, 0)
        failed = status_counts.get(SessionStatus.FAILED, 0)

        with_feedback = db.execute(
            select(func.count(func.distinct(UserFeedback.trace_id)))
            .select_from(UserFeedback)
            .join(AISession, UserFeedback.ai_session_id == AISession.id)
            .where(AISession.created_at >= since)
        ).scalar_one()

        return {
            "days": days,
            "started": started,
            "processing": status_counts.get(SessionStatus.PROCESSING, 0),
            "completed": completed,
            "failed": failed,
            "with_feedback": with_feedback,
            "completion_rate": round(completed / started, 4) if started else 0.0,
            "feedback_rate": round(with_feedback / completed, 4) if completed else 0.0,
        }

    def get_feedback_quality(self, db: Session, days: int = 7) -> dict[str, Any]:
        """Like/dislike split overall and per input mode over the last ``days`` days."""
        since = datetime.now(timezone.utc) - timedelta(days=days)

        rows = db.execute(
            select(
                AISession.input_mode,
                UserFeedback.feedback_type,
                func.count(UserFeedback.id),
                func.avg(UserFeedback.feedback_score),
            )
            .select_from(UserFeedback)
            .join(AISession, UserFeedback.ai_session_id == AISession.id)
            .where(UserFeedback.created_at >= since)
            .group_by(AISession.input_mode, UserFeedback.feedback_type)
        ).all()

        by_mode: dict[str, dict[str, int]] = {}
        likes = dislikes = 0
        score_total = 0.0
        score_weight = 0
        for input_mode, feedback_type, count, avg_score in rows:
            bucket = by_mode.setdefault(input_mode, {"likes": 0, "dislikes": 0})
            if feedback_type == FeedbackType.LIKE:
                bucket["likes"] += count
                likes += count
            else:
                bucket["dislikes"] += count
                dislikes += count
            if avg_score is not None:
                score_total += float(avg_score) * count
                score_weight += count

        total = likes + dislikes
        return {
            "days": days,
            "total": total,
            "likes": likes,
            "dislikes": dislikes,
            "like_rate": round(likes / total, 4) if total else 0.0,
            "average_score": round(score_total / score_weight, 2) if score_weight else None,
            "by_input_mode": by_mode,
        }

    def _finish(self, db: Session, trace_id: str, status: SessionStatus, **values: Any) -> bool:
        try:
            result = db.execute(
                update(AISession)
                .where(
                    AISession.trace_id == trace_id,
                    AISession.status == SessionStatus.PROCESSING,
                )
                .values(status=status, updated_at=datetime.now(timezone.utc), **values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to mark trace {trace_id} {status.value}: {e}")
            return False

        if result.rowcount == 0:
            logger.warning(
                f"Trace {trace_id} is unknown or already terminal; ignoring {status.value}"
            )
            return False
        return True

    def _set_trace_cookies(self, response: Response, context: TraceContext, trace_id: str) -> None:
        response.set_cookie(
            TRACE_ID_COOKIE, trace_id, max_age=TRACE_COOKIE_MAX_AGE, path="/", samesite="lax"
        )
        if context.session_is_new:
            response.set_cookie(
                SESSION_ID_COOKIE,
                context.session_id,
                max_age=SESSION_COOKIE_MAX_AGE,
                path="/",
                samesite="lax",
            )
        if context.anonymous_is_new:
            response.set_cookie(
                ANONYMOUS_ID_COOKIE,
                context.anonymous_id,
                max_age=ANONYMOUS_COOKIE_MAX_AGE,
                path="/",
                samesite="lax",
            )

    def _emit(
        self,
        name: str,
        properties: dict[str, Any],
        context: TraceContext,
        trace_id: str,
    ) -> None:
        self.tracker.track(
            name,
            properties,
            session_id=context.session_id,
            anonymous_id=context.anonymous_id,
            trace_id=trace_id,
        )
