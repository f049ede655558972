"""
APTIS Exam Platform - FastAPI Application
Main application entry point with middleware, error envelopes and route configuration
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aptis_exam.ai.core.llm import LLMClient
from aptis_exam.ai.core.telemetry import init_telemetry
from aptis_exam.api.v1 import api_router
from aptis_exam.core.config import settings
from aptis_exam.core.database import init_db
from aptis_exam.core.exceptions import ExamPlatformError, ValidationError
from aptis_exam.schemas.common import ErrorBody, ErrorResponse

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    init_telemetry()
    if settings.OTEL_ENABLED:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("OpenTelemetry instrumentation enabled")

    await init_db()
    logger.info("Database tables initialized")

    app.state.llm_client = LLMClient()
    logger.info(
        "LLM client ready: provider=%s model=%s",
        app.state.llm_client.provider, app.state.llm_client.model,
    )

    yield

    # Shutdown
    logger.info("Shutting down")


def error_response(error: ExamPlatformError) -> JSONResponse:
    body = ErrorResponse(
        message=error.message,
        error=ErrorBody(kind=error.kind, details=error.details),
    )
    return JSONResponse(status_code=error.status_code, content=jsonable_encoder(body))


async def platform_error_handler(request: Request, exc: ExamPlatformError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        ValidationError(details={"errors": jsonable_encoder(exc.errors())})
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Online exam administration with automatic and AI-assisted grading",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Every failure leaves as {success: false, message, error}
    app.add_exception_handler(ExamPlatformError, platform_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Include API routes
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    @app.get(f"{settings.API_V1_PREFIX}/health", tags=["Health"])
    async def api_v1_health_check():
        """API V1 Health check."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "aptis_exam.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
