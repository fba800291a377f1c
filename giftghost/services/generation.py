"""The rate-limited, traced gift-insight generation flow.

identity -> limiter -> start_session -> completion -> complete/fail_session.
Every outcome comes back as a GenerateResponse; nothing raises to the caller.
"""

import asyncio
import json
import logging
import time
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.responses import Response

from giftghost.errors import CompletionError
from giftghost.schemas.generation import GenerateRequest, GenerateResponse, GiftRecommendation
from giftghost.services.llm import CompletionService, build_prompt, build_user_content
from giftghost.services.rate_limit import RateLimiter
from giftghost.services.trace import TraceManager
from giftghost.types.governance import GenerationResult, Identity, TraceContext

logger = logging.getLogger(__name__)

RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
GENERATION_FAILED = "GENERATION_FAILED"

GENERIC_FAILURE_MESSAGE = "The Ghost is confused. Please try again in a moment."

FALLBACKS = {
    "persona": "The Mystery Guest",
    "pain_point": "Keeping their interests a secret",
    "obsession": "The unknown treasure",
    "item": "A handwritten letter",
    "reason": "When in doubt, go personal.",
    "buy_link": "#",
}


def _text(value: Any, fallback: str | None) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def parse_completion(raw: str, response_time_ms: int) -> GenerationResult:
    """Parse the model's JSON and fill any missing field with a fallback."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CompletionError(f"Completion was not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CompletionError("Completion JSON was not an object")

    gift = data.get("gift_recommendation")
    if not isinstance(gift, dict):
        gift = {}

    return GenerationResult(
        persona=_text(data.get("persona"), FALLBACKS["persona"]),
        pain_point=_text(data.get("pain_point"), FALLBACKS["pain_point"]),
        obsession=_text(data.get("obsession"), FALLBACKS["obsession"]),
        gift_item=_text(gift.get("item"), FALLBACKS["item"]),
        gift_reason=_text(gift.get("reason"), FALLBACKS["reason"]),
        gift_buy_link=_text(gift.get("buy_link"), FALLBACKS["buy_link"]),
        gift_price_range=_text(gift.get("price_range"), None),
        response_time_ms=response_time_ms,
    )


class GenerationService:
    """Composes the limiter, the trace manager and the completion service."""

    def __init__(
        self,
        limiter: RateLimiter,
        trace_manager: TraceManager,
        completion: CompletionService,
    ):
        self.limiter = limiter
        self.trace_manager = trace_manager
        self.completion = completion

    async def generate_insight(
        self,
        db: Session,
        request: GenerateRequest,
        identity: Identity,
        context: TraceContext,
        response: Response | None = None,
    ) -> GenerateResponse:
        mode = request.mode.value

        # Store calls use the sync session; keep them off the event loop
        admission = await asyncio.to_thread(self.limiter.check_and_consume, db, identity)
        if not admission.allowed:
            if admission.degraded:
                return GenerateResponse(
                    success=False,
                    error=SERVICE_UNAVAILABLE,
                    message="Service temporarily unavailable. Please try again shortly.",
                    limit=admission.limit,
                    remaining=0,
                    reset_at=admission.reset_at,
                )
            return GenerateResponse(
                success=False,
                error=RATE_LIMIT_EXCEEDED,
                message=f"Daily limit of {admission.limit} insights reached.",
                limit=admission.limit,
                remaining=0,
                reset_at=admission.reset_at,
            )

        try:
            trace_id = await asyncio.to_thread(
                self.trace_manager.start_session,
                db,
                context,
                mode,
                request.content,
                request.locale,
                response,
            )
        except SQLAlchemyError as e:
            logger.error(f"Could not open trace session, continuing untraced: {e}")
            trace_id = None

        started = time.perf_counter()
        try:
            raw = await self.completion.generate(
                build_prompt(mode), build_user_content(mode, request.content)
            )
            result = parse_completion(raw, self._elapsed_ms(started))
        except Exception as e:
            elapsed_ms = self._elapsed_ms(started)
            logger.error(f"Generation failed after {elapsed_ms}ms ({mode}): {e}")
            if trace_id:
                await asyncio.to_thread(
                    self.trace_manager.fail_session,
                    db,
                    context,
                    trace_id,
                    str(e),
                    elapsed_ms,
                    response,
                )
            return GenerateResponse(
                success=False,
                error=GENERATION_FAILED,
                message=GENERIC_FAILURE_MESSAGE,
                trace_id=trace_id,
                limit=admission.limit,
                remaining=admission.remaining,
            )

        if trace_id:
            await asyncio.to_thread(
                self.trace_manager.complete_session, db, context, trace_id, result, response
            )

        logger.info(f"Insight generated in {result.response_time_ms}ms: {result.persona}")
        return GenerateResponse(
            success=True,
            persona=result.persona,
            pain_point=result.pain_point,
            obsession=result.obsession,
            gift_recommendation=GiftRecommendation(
                item=result.gift_item,
                reason=result.gift_reason,
                buy_link=result.gift_buy_link,
                price_range=result.gift_price_range,
            ),
            trace_id=trace_id,
            limit=admission.limit,
            remaining=admission.remaining,
        )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)
