"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from touchpoints import __version__
from touchpoints.api.middleware import CorrelationIdMiddleware
from touchpoints.api.patterns import router as patterns_router
from touchpoints.api.suggestions import router as suggestions_router
from touchpoints.config import get_settings
from touchpoints.database import close_pool, create_pool, health_check, run_migrations
from touchpoints.services.logging_service import configure_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger = get_logger("main")

    app.state.pool = None
    try:
        pool = await create_pool(settings)
        await run_migrations(pool)
        app.state.pool = pool
        logger.info("database_initialized")
    except Exception as e:
        logger.warning(
            "database_initialization_failed",
            error=str(e),
            note="Continuing without database - suggestions will be unavailable",
        )

    logger.info("application_started", log_level=settings.log_level)

    yield

    if app.state.pool is not None:
        await close_pool(app.state.pool)
        app.state.pool = None

    logger.info("application_shutdown")


app = FastAPI(
    title="TouchPoints - Visit Patterns API",
    description="Visit pattern analysis and weekly visit suggestions for care circles",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with a 400 and the first failing field."""
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    logger = structlog.get_logger()

    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"

    logger.warning(
        "validation_error",
        correlation_id=correlation_id,
        detail=detail,
    )

    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation error",
            "detail": detail,
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


@app.get("/health")
async def health(request: Request) -> dict:
    """Report service and database health."""
    database_ok = await health_check(getattr(request.app.state, "pool", None))
    return {
        "status": "healthy" if database_ok else "degraded",
        "database": database_ok,
        "version": __version__,
    }


# CORS middleware for browser clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Correlation ID middleware for request tracking and observability
app.add_middleware(CorrelationIdMiddleware)

app.include_router(patterns_router)
app.include_router(suggestions_router)
