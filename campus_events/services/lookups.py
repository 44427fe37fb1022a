"""
Shared row lookups with ownership checks.
"""

from typing import Dict, Any

from sqlalchemy import and_
from sqlalchemy.orm import Session

from campus_events.core.exceptions import EventNotFoundError, RegistrationNotFoundError, ForbiddenError
from campus_events.models.event import Event
from campus_events.models.registration import Registration


def is_admin(user: Dict[str, Any]) -> bool:
    return user.get("role") == "admin"


def load_event(session: Session, event_id: int) -> Event:
    event = session.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise EventNotFoundError(event_id)
    return event


def load_owned_event(session: Session, event_id: int, user: Dict[str, Any]) -> Event:
    """Load an event the user organizes. Admins may act on any event."""
    event = load_event(session, event_id)
    if event.organizer_id != user["user_id"] and not is_admin(user):
        raise ForbiddenError()
    return event


def load_event_registration(session: Session, event_id: int, registration_id: int) -> Registration:
    """Load a registration that belongs to the given event."""
    registration = session.query(Registration).filter(
        and_(
            Registration.id == registration_id,
            Registration.event_id == event_id
        )
    ).first()
    if not registration:
        raise RegistrationNotFoundError(details={"registration_id": registration_id})
    return registration
