"""
FastAPI application entry point for Meeting Analyzer.
Configures the application, middleware, routes, and error handlers.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Generator

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from meeting_analyzer.clients.gemini_client import GeminiClient, GeminiError, NotConfiguredError
from meeting_analyzer.config import get_settings
from meeting_analyzer.db.database import init_db
from meeting_analyzer.routers import analysis, recordings
from meeting_analyzer.services.analysis_service import AnalysisNotFoundError, RecordingNotFoundError
from meeting_analyzer.services.kafka_service import KafkaConnectionError
from meeting_analyzer.services.pipeline import PipelineTimeoutError
from meeting_analyzer.services.video_fetcher import VideoFetchError
from meeting_analyzer.utils.logger import get_correlation_id, set_correlation_id, setup_logging

# Initialize settings and logging
settings = get_settings()
logger = setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Meeting Analyzer API", version="1.0.0", ai_configured=settings.ai_configured)

    try:
        init_db()
        logger.info("Database initialization completed")
    except Exception as e:
        logger.error("Database initialization failed", error=str(e))
        raise

    yield

    logger.info("Shutting down Meeting Analyzer API")


app = FastAPI(
    title="Meeting Analyzer API",
    description="AI analysis of recorded meetings and classes",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next) -> Response:
    """Add correlation ID to all requests for tracing."""
    correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))

    logger.info("Request started",
               method=request.method,
               url=str(request.url),
               client_ip=request.client.host if request.client else "unknown")

    response = await call_next(request)

    response.headers["X-Correlation-ID"] = correlation_id

    logger.info("Request completed",
               method=request.method,
               url=str(request.url),
               status_code=response.status_code)

    return response


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "correlation_id": get_correlation_id()
            }
        }
    )


@app.exception_handler(RecordingNotFoundError)
async def recording_not_found_handler(request: Request, exc: RecordingNotFoundError) -> JSONResponse:
    """Handle recording not found errors."""
    logger.warning("Recording not found", error=str(exc), url=str(request.url))
    return _error_response(404, "RECORDING_NOT_FOUND", "The requested recording does not exist")


@app.exception_handler(AnalysisNotFoundError)
async def analysis_not_found_handler(request: Request, exc: AnalysisNotFoundError) -> JSONResponse:
    """Handle analysis not found errors."""
    logger.warning("Analysis not found", error=str(exc), url=str(request.url))
    return _error_response(404, "ANALYSIS_NOT_FOUND", "The requested analysis does not exist")


@app.exception_handler(NotConfiguredError)
async def not_configured_handler(request: Request, exc: NotConfiguredError) -> JSONResponse:
    """Handle requests that need AI while it is disabled or has no API key."""
    logger.warning("AI analysis not configured", url=str(request.url))
    return _error_response(503, "AI_NOT_CONFIGURED", str(exc))


@app.exception_handler(KafkaConnectionError)
async def kafka_connection_handler(request: Request, exc: KafkaConnectionError) -> JSONResponse:
    """Handle Kafka connection errors."""
    logger.error("Kafka connection error", error=str(exc), url=str(request.url))
    return _error_response(503, "SERVICE_UNAVAILABLE", "Analysis service temporarily unavailable")


@app.exception_handler(GeminiError)
@app.exception_handler(VideoFetchError)
@app.exception_handler(PipelineTimeoutError)
async def pipeline_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle analysis failures raised by synchronous runs."""
    logger.error("Analysis pipeline error",
                error=str(exc),
                error_type=type(exc).__name__,
                url=str(request.url))
    return _error_response(502, "ANALYSIS_FAILED", str(exc))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error("Unhandled exception",
                error=str(exc),
                error_type=type(exc).__name__,
                url=str(request.url))
    return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


app.include_router(analysis.router)
app.include_router(recordings.router)


def get_gemini_client() -> Generator[GeminiClient, None, None]:
    client = GeminiClient(settings)
    try:
        yield client
    finally:
        client.close()


@app.get("/health")
def health_check(
    deep: bool = Query(False, description="Also send a test prompt to the Gemini API"),
    gemini: GeminiClient = Depends(get_gemini_client),
) -> Dict[str, str]:
    """Health check endpoint for monitoring."""
    health = {
        "status": "healthy",
        "service": "meeting-analyzer-api",
        "version": "1.0.0",
        "ai": "configured" if gemini.is_configured() else "not configured"
    }

    if deep:
        connected = gemini.test_connection()
        health["ai_connection"] = "ok" if connected else "failed"
        if not connected:
            health["status"] = "degraded"

    return health


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "meeting_analyzer.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower()
    )
