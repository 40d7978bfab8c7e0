import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.v1.api import api_router
from .config import get_settings
from .core.exceptions import AppException
from .core.logging_config import configure_logging, mask_secret, shutdown_logging
from .db.base import SessionLocal, engine, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings = get_settings()
    logger.info(
        "Starting %s %s (environment=%s, openai key %s)",
        settings.PROJECT_NAME, settings.VERSION, settings.ENVIRONMENT, mask_secret(settings.OPENAI_API_KEY),
    )
    init_db()
    try:
        yield
    finally:
        # Ensure DB sessions and engine are properly cleaned up to avoid ResourceWarning
        SessionLocal.remove()
        engine.dispose()
        # Close logging file handlers to avoid unclosed file warnings during tests
        shutdown_logging()


# Initialize FastAPI app with lifespan
app = FastAPI(
    title="StrongBond API",
    description="Companion API for StrongBond AI conversations",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Get settings
settings = get_settings()

# Set up CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX or None,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "StrongBond API",
        "environment": get_settings().ENVIRONMENT,
    }


# API v1 routes
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    return {"message": "Welcome to StrongBond API", "docs": "/api/docs", "version": "0.1.0"}


# Error handlers
@app.exception_handler(AppException)
async def app_exception_handler(request, exc: AppException):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )
