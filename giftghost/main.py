"""FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager
from uuid import uuid4

# Configure logging to output to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from giftghost import __version__
from giftghost.config import get_settings
from giftghost.database.base import Base
from giftghost.database.engine import get_engine, is_postgres
from giftghost.database.session import SessionLocal
from giftghost.dependencies import AppServices
from giftghost.routers import feedback, generation, health, traces, tracking

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared services on startup; drain the tracker on shutdown."""
    if not is_postgres():
        # Local SQLite has no migrations; create tables directly
        import giftghost.models  # noqa: F401  (registers tables)

        Base.metadata.create_all(get_engine())

    services = getattr(app.state, "services", None)
    if services is None:
        services = AppServices.build(settings, SessionLocal)
        app.state.services = services

    services.tracker.start()
    logger.info(
        f"GiftGhost API started (anonymous {services.limiter.anonymous_limit}/day, "
        f"authenticated {services.limiter.user_limit}/day)"
    )

    yield

    await services.tracker.stop()
    logger.info("Event tracker stopped")


app = FastAPI(
    title="GiftGhost API",
    description="Rate-limited, traced gift insight generation",
    version=__version__,
    redirect_slashes=False,  # Prevent 307 redirects that break HTTPS through proxies
    lifespan=lifespan,
)

# CORS for frontend
origins = [
    "http://localhost:3000",
    "http://localhost:3001",
]

# Add production frontend URL if configured (handle www and non-www)
if settings.frontend_url:
    origins.append(settings.frontend_url)
    if "://www." in settings.frontend_url:
        origins.append(settings.frontend_url.replace("://www.", "://"))
    elif "://" in settings.frontend_url:
        origins.append(settings.frontend_url.replace("://", "://www."))

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router)
app.include_router(generation.router)
app.include_router(tracking.router)
app.include_router(feedback.router)
app.include_router(traces.router)


# Global exception handlers
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions with consistent format."""
    error_id = str(uuid4())

    if exc.status_code == 429:
        error_type = "rate_limit"
    elif exc.status_code == 404:
        error_type = "not_found"
    elif exc.status_code == 400:
        error_type = "validation"
    elif exc.status_code == 401 or exc.status_code == 403:
        error_type = "auth"
    else:
        error_type = "server_error"

    content = {
        "detail": str(exc.detail),
        "error_type": error_type,
        "error_id": error_id,
    }

    logger.warning(
        f"HTTP {exc.status_code} [{error_id}]: {exc.detail} - {request.method} {request.url.path}"
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors with field details."""
    error_id = str(uuid4())

    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({"field": field, "message": error["msg"]})

    content = {
        "detail": "Validation error",
        "error_type": "validation",
        "error_id": error_id,
        "errors": errors,
    }

    logger.warning(
        f"Validation error [{error_id}]: {errors} - {request.method} {request.url.path}"
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=content,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unhandled exceptions."""
    error_id = str(uuid4())

    logger.error(
        f"Unhandled exception [{error_id}]: {type(exc).__name__}: {exc} - "
        f"{request.method} {request.url.path}",
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error_type": "server_error",
            "error_id": error_id,
        },
    )
