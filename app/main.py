"""
Main FastAPI application for the Meterly API.
"""
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy import text
import logging

from app.core.config import settings
from app.core.logging import setup_logging
from app.database.database import SessionLocal, create_tables
from app.database.models import utcnow
from app.routers import auth, companies, internal, subscriptions, usage
from app.models.schemas import HealthCheckResponse
from app.services.container import ServiceContainer

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Meterly API...")

    create_tables()

    services = ServiceContainer.from_settings(settings, SessionLocal)
    await services.start()
    app.state.services = services
    logger.info("Application startup completed successfully")

    try:
        yield
    finally:
        # Shutdown
        logger.info("Shutting down Meterly API...")
        await services.shutdown()
        logger.info("Application shutdown completed")


# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    description=settings.DESCRIPTION,
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag", "X-Cache", "X-RateLimit-Limit"],
)


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    code = getattr(exc, "code", None)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "code": code.value if code is not None else None,
            "status_code": exc.status_code,
            "timestamp": utcnow().isoformat()
        },
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "code": None,
            "status_code": 500,
            "timestamp": utcnow().isoformat()
        }
    )


# Health check endpoint
@app.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    services: ServiceContainer = request.app.state.services

    database_status = "connected"
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        database_status = "error"

    return HealthCheckResponse(
        status="healthy" if database_status == "connected" else "unhealthy",
        timestamp=utcnow(),
        version=settings.VERSION,
        database=database_status,
        log_queue_size=len(services.log_queue),
        log_entries_dropped=services.log_queue.dropped,
        cache_entries=len(services.response_cache),
    )


# Include routers
app.include_router(auth.router, prefix=settings.API_V1_STR)
app.include_router(subscriptions.router, prefix=settings.API_V1_STR)
app.include_router(usage.router, prefix=settings.API_V1_STR)
app.include_router(companies.router, prefix=settings.API_V1_STR)
# service-to-service endpoints are not versioned with the public API
app.include_router(internal.router)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Welcome to Meterly API",
        "version": settings.VERSION,
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
