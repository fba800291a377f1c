"""Composition root and request-scoped dependencies."""

from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.orm import sessionmaker

from giftghost.auth.dependencies import get_current_user_optional
from giftghost.auth.schemas import User
from giftghost.config import Settings
from giftghost.services.generation import GenerationService
from giftghost.services.identity import resolve_identity
from giftghost.services.llm import CompletionService, create_completion_service
from giftghost.services.rate_limit import RateLimiter
from giftghost.services.trace import TraceManager, get_trace_context
from giftghost.services.tracking import DatabaseTransport, ServerTracker, Tracker
from giftghost.types.governance import Identity, TraceContext


@dataclass
class AppServices:
    """Long-lived service objects shared by every request of one process."""

    limiter: RateLimiter
    tracker: Tracker
    trace_manager: TraceManager
    completion: CompletionService
    generation: GenerationService

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory: sessionmaker,
        tracker: Tracker | None = None,
        completion: CompletionService | None = None,
        limiter: RateLimiter | None = None,
    ) -> "AppServices":
        tracker = tracker or ServerTracker.from_settings(
            settings, DatabaseTransport(session_factory)
        )
        completion = completion or create_completion_service(settings)
        limiter = limiter or RateLimiter.from_settings(settings)
        trace_manager = TraceManager(tracker, input_max_chars=settings.trace_input_max_chars)
        return cls(
            limiter=limiter,
            tracker=tracker,
            trace_manager=trace_manager,
            completion=completion,
            generation=GenerationService(limiter, trace_manager, completion),
        )


def get_services(request: Request) -> AppServices:
    """Services built in the app lifespan."""
    return request.app.state.services


def get_identity(
    request: Request,
    user: User | None = Depends(get_current_user_optional),
) -> Identity:
    return resolve_identity(request.headers, request.cookies, user)


def get_trace_context_dep(request: Request) -> TraceContext:
    return get_trace_context(request.headers, request.cookies)
