"""
Main API router for Campus Events Service.
Combines all API endpoints and provides health checks.
"""

from fastapi import APIRouter
import logging

from campus_events.api.dependencies import check_service_health
from campus_events.schemas.event import HealthCheckResponse

logger = logging.getLogger(__name__)

# Create main router
router = APIRouter(prefix="/api/v1")

# Include sub-routers; events goes first so its fixed paths win over /events/{event_id}
from campus_events.api.v1.events import router as events_router
from campus_events.api.v1.registrations import router as registrations_router
from campus_events.api.v1.approvals import router as approvals_router
from campus_events.api.v1.attendance import router as attendance_router

router.include_router(events_router)
router.include_router(registrations_router)
router.include_router(approvals_router)
router.include_router(attendance_router)


@router.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """
    Health check endpoint for the campus events service.

    Returns:
        Service health status
    """
    try:
        health_status = await check_service_health()

        return HealthCheckResponse(
            status=health_status["overall"],
            version="1.0.0",
            database=health_status["database"],
            redis=health_status["redis"]
        )

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return HealthCheckResponse(
            status="unhealthy",
            version="1.0.0",
            database="unknown",
            redis="unknown"
        )


@router.get("/info")
async def service_info():
    """
    Service information endpoint.

    Returns:
        Service information and capabilities
    """
    return {
        "service": "Campus Events Service",
        "version": "1.0.0",
        "description": "Campus event registration, ticketing and attendance service",
        "capabilities": [
            "Registration with payment and organizer approval gates",
            "Encrypted QR ticketing",
            "Attendance check-in with duplicate detection",
            "Merchandise inventory and capacity tracking",
            "Event publication lifecycle"
        ],
        "endpoints": {
            "events": "/api/v1/events",
            "health": "/api/v1/health",
            "docs": "/docs"
        }
    }
