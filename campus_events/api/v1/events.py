"""
Event API endpoints for Campus Events Service.
Handles event creation, lifecycle transitions, edits and organizer views.
"""

from fastapi import APIRouter, Depends, status, Path
from typing import List
import logging

from campus_events.api.dependencies import get_current_principal, require_user_role, require_club_role
from campus_events.services.event_service import event_service
from campus_events.services.registration_service import registration_service
from campus_events.schemas.event import (
    EventCreate,
    EventUpdate,
    EventResponse,
    EventDeleteResponse,
    OrganizerAnalyticsSummary
)
from campus_events.schemas.registration import RegistrationResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


# Fixed paths first so they are not captured by /{event_id}
@router.get("/my-registrations", response_model=List[RegistrationResponse])
async def get_my_registrations(user_info: dict = Depends(require_user_role)):
    """
    Get all registrations of the current user, newest first.

    Returns:
        Registrations with their scan history
    """
    registrations = await registration_service.get_my_registrations(user_info["user_id"])
    return [RegistrationResponse.model_validate(r) for r in registrations]


@router.get("/organizer/analytics/summary", response_model=OrganizerAnalyticsSummary)
async def get_organizer_summary(user_info: dict = Depends(require_club_role)):
    """Sum registrations, revenue and attendance over the organizer's finished events."""
    summary = await event_service.get_organizer_summary(user_info)
    return OrganizerAnalyticsSummary(**summary)


@router.get("/organizer/{event_id}/participants", response_model=List[RegistrationResponse])
async def get_event_participants(
    event_id: int = Path(..., gt=0, description="Event ID"),
    user_info: dict = Depends(require_club_role)
):
    """
    List every registration of an event for its organizer.

    Args:
        event_id: Event ID
        user_info: Authenticated organizer

    Returns:
        Registrations in submission order
    """
    registrations = await registration_service.get_participants(event_id, user_info)
    return [RegistrationResponse.model_validate(r) for r in registrations]


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    event_data: EventCreate,
    user_info: dict = Depends(require_club_role)
):
    """
    Create a new event in draft status.

    Args:
        event_data: Event creation data
        user_info: Authenticated organizer

    Returns:
        Created event
    """
    event = await event_service.create_event(user_info, event_data)
    return EventResponse.model_validate(event)


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: int = Path(..., gt=0, description="Event ID"),
    user_info: dict = Depends(get_current_principal)
):
    """Get event details."""
    event = await event_service.get_event(event_id, user_info)
    return EventResponse.model_validate(event)


@router.put("/{event_id}", response_model=EventResponse)
async def update_event(
    event_data: EventUpdate,
    event_id: int = Path(..., gt=0, description="Event ID"),
    user_info: dict = Depends(require_club_role)
):
    """
    Edit an event and/or change its status.

    Drafts accept any change. Published events accept a new description,
    a later deadline and a larger capacity. Ongoing and completed events
    accept status changes only; closed events accept nothing.
    """
    event = await event_service.update_event(event_id, user_info, event_data)
    return EventResponse.model_validate(event)


@router.delete("/{event_id}", response_model=EventDeleteResponse)
async def delete_event(
    event_id: int = Path(..., gt=0, description="Event ID"),
    user_info: dict = Depends(require_club_role)
):
    """Delete a draft event."""
    deleted = await event_service.delete_event(event_id, user_info)
    return EventDeleteResponse(
        message="Event deleted successfully",
        event_id=event_id,
        registrations_deleted=deleted
    )
