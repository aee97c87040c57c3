from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

from .core.config import settings
from .core.database import create_db_and_tables
from .core.cache import cache
from .core.exceptions import (
    ProctorError,
    SessionNotFound,
    SessionTerminal,
    InvalidTransition,
    DuplicateSession,
    ScoringAlreadyPerformed,
    UpstreamUnavailable,
    ExamNotFound,
    QuestionNotFound,
    ResultNotFound,
    ViolationRateLimited,
    PermissionDenied,
    InvalidPayload,
)
from .api.v1.api import api_router
from .middleware.performance import PerformanceMiddleware
from .schemas.session import ErrorResponse

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Exam Proctor API",
    description="Session lifecycle and integrity scoring for proctored exams",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    PerformanceMiddleware,
    slow_request_threshold=settings.slow_request_threshold
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATUS_CODES = {
    SessionNotFound: 404,
    ExamNotFound: 404,
    QuestionNotFound: 404,
    ResultNotFound: 404,
    SessionTerminal: 409,
    InvalidTransition: 409,
    DuplicateSession: 409,
    ScoringAlreadyPerformed: 409,
    PermissionDenied: 403,
    InvalidPayload: 422,
    ViolationRateLimited: 429,
    UpstreamUnavailable: 503,
}


def status_code_for(exc: ProctorError) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in STATUS_CODES:
            return STATUS_CODES[exc_type]
    return 400


@app.exception_handler(ProctorError)
async def proctor_exception_handler(request: Request, exc: ProctorError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

    body = ErrorResponse(
        error=exc.code,
        message=exc.message,
        redirect_phase=exc.redirect_phase,
        result_id=getattr(exc, "result_id", None),
    )
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers["Retry-After"] = str(retry_after)

    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": getattr(request.state, 'request_id', 'unknown')
        }
    )


@app.on_event("startup")
async def startup_event():
    """Application startup tasks"""
    logger.info("Starting Exam Proctor API...")

    await create_db_and_tables()
    logger.info("Database initialized")

    cache_health = await cache.ahealth_check()
    if cache_health:
        logger.info("Cache connection established")
    else:
        logger.warning("Cache connection failed - running without cache")

    logger.info("Exam Proctor API startup completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown tasks"""
    logger.info("Shutting down Exam Proctor API...")
    await cache.aclose()
    logger.info("Exam Proctor API shutdown completed")


app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def read_root():
    return {
        "message": "Exam Proctor API",
        "version": "1.0.0",
    }
