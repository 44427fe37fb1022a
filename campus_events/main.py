"""
Main FastAPI application for Campus Events Service.
Handles application startup, middleware, and routing.
"""

import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import time

from campus_events.core.config import config
from campus_events.core.exceptions import CampusEventsError
from campus_events.core.time_utils import utcnow
from campus_events.db.database import db_manager
from campus_events.db.redis_client import redis_manager
from campus_events.api.v1.router import router as api_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting Campus Events Service...")

    try:
        await db_manager.initialize()
        logger.info("Database manager initialized")

        try:
            await db_manager.create_tables()
            logger.info("Database tables created")
        except Exception as e:
            logger.warning(f"Database tables may already exist: {e}")

    except Exception as e:
        logger.error(f"Failed to start Campus Events Service: {e}")
        raise

    # Redis only carries real-time messages and locks; start without it
    try:
        await redis_manager.initialize()
        logger.info("Redis manager initialized")
    except Exception as e:
        logger.error(f"Redis unavailable, real-time updates disabled: {e}")

    logger.info("Campus Events Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Campus Events Service...")

    try:
        await db_manager.close()
        await redis_manager.close()
        await config.close()
        logger.info("Campus Events Service shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


# Create FastAPI application
app = FastAPI(
    title="Campus Events Service",
    description="Campus event registration, ticketing and attendance service",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Ticket-Id"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add request processing time to response headers."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


# Domain exception handler
@app.exception_handler(CampusEventsError)
async def campus_events_exception_handler(request: Request, exc: CampusEventsError):
    """Map domain errors to the error envelope with their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message}")
    else:
        logger.info(f"{exc.error_code}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            **exc.to_dict(),
            "timestamp": utcnow().isoformat()
        }
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_SERVER_ERROR",
            "error_message": "An internal server error occurred",
            "details": None,
            "timestamp": utcnow().isoformat()
        }
    )


# HTTP exception handler
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTP exception handler for FastAPI HTTP exceptions."""
    logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": "HTTP_ERROR",
            "error_message": exc.detail,
            "details": None,
            "timestamp": utcnow().isoformat()
        },
        headers=getattr(exc, "headers", None)
    )


# Include API router
app.include_router(api_router)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with service information."""
    return {
        "service": "Campus Events Service",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "api": "/api/v1",
            "health": "/api/v1/health",
            "docs": "/docs",
            "redoc": "/redoc"
        }
    }


# Health check endpoint (simple)
@app.get("/health")
async def simple_health_check():
    """Simple health check endpoint."""
    return {"status": "healthy", "service": "campus-events"}
