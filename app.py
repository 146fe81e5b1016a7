"""
FastAPI application for the course-commerce core
Thin HTTP adapter over the reconciliation services
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from db import SessionLocal, engine
from routes import access, auth, payments, progress, subscriptions
from schemas.api_models import ErrorDetail, ErrorResponse
from services.subscriptions import ExpirationSweeper
from utils.auth_dependencies import require_api_key
from utils.error_handling import CoreError
from utils.logging_config import logger
from utils.structured_logging import log_request_middleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if settings.NODE_ENV != "test" and settings.SUBSCRIPTION_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = ExpirationSweeper(SessionLocal)
        sweeper.start()
    yield
    if sweeper is not None:
        sweeper.stop(timeout=settings.STORE_TIMEOUT_SECONDS)


app = FastAPI(
    title="Academy Core API",
    description="""
    Payment reconciliation, subscription lifecycle, progress tracking,
    achievements, entitlements and password reset for the course platform.
    All /api/v1 endpoints are service-to-service and require the backend API key.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)

app.middleware("http")(log_request_middleware)


def _request_id(request: Request):
    return getattr(request.state, "correlation_id", None)


# Global exception handlers
@app.exception_handler(CoreError)
async def core_exception_handler(request: Request, exc: CoreError):
    """Map core errors to their HTTP status; AlreadyTerminal answers 200"""
    body = exc.to_dict()
    if exc.http_status >= 500:
        logger.warning(f"{body['error']} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content=ErrorResponse(
            error=body["error"],
            detail=exc.message,
            entity=body["entity"],
            key=body["key"],
            status_code=exc.http_status,
            request_id=_request_id(request),
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with proper schema"""
    errors = [
        ErrorDetail(field=".".join(str(loc) for loc in error["loc"]), message=error["msg"], code=error["type"])
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error="Validation Error", detail=errors, status_code=422, request_id=_request_id(request)
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail), status_code=exc.status_code, request_id=_request_id(request)
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal Server Error",
            detail="An unexpected error occurred. Please try again later.",
            status_code=500,
            request_id=_request_id(request),
        ).model_dump(),
    )


internal = [Depends(require_api_key)]

app.include_router(payments.router, prefix="/api/v1/payments", tags=["Payments"], dependencies=internal)
app.include_router(subscriptions.router, prefix="/api/v1/subscriptions", tags=["Subscriptions"], dependencies=internal)
app.include_router(progress.router, prefix="/api/v1/progress", tags=["Progress"], dependencies=internal)
app.include_router(access.router, prefix="/api/v1/access", tags=["Access"], dependencies=internal)
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"], dependencies=internal)


@app.get("/health", tags=["System"])
def health_check():
    """
    Health check endpoint for monitoring
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        database = "unavailable"

    return JSONResponse(
        status_code=200 if database == "ok" else 503,
        content={
            "status": "healthy" if database == "ok" else "degraded",
            "database": database,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": "1.0.0",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
