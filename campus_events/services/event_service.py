"""
Event publication lifecycle for Campus Events Service.
Status is authoritative only as persisted: draft -> published -> ongoing -> completed/closed,
driven by organizer action. Editing rights narrow as the status advances.
"""

import logging
from decimal import Decimal
from typing import Dict, Any, List

from sqlalchemy import and_, func, select
from sqlalchemy.orm import selectinload

from campus_events.core.exceptions import EventNotFoundError, StateError, ValidationError
from campus_events.core.time_utils import utcnow, as_utc
from campus_events.db.database import db_manager
from campus_events.db.redis_client import redis_manager
from campus_events.models.event import (
    Event, EventType, EventStatus, MerchandiseVariant, FINISHED_STATUSES
)
from campus_events.models.registration import Registration, ScanHistoryEntry
from campus_events.schemas.event import EventCreate, EventUpdate
from .attendance_service import attendance_service
from .event_publisher import CampusEventPublisher
from .lookups import is_admin, load_owned_event
from .notification_service import notification_service

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    EventStatus.DRAFT: {EventStatus.PUBLISHED},
    EventStatus.PUBLISHED: {EventStatus.ONGOING, EventStatus.COMPLETED, EventStatus.CLOSED},
    EventStatus.ONGOING: {EventStatus.COMPLETED, EventStatus.CLOSED},
    EventStatus.COMPLETED: {EventStatus.CLOSED},
    EventStatus.CLOSED: set(),
}

# Fields a published event still accepts
PUBLISHED_EDITABLE_FIELDS = {"description", "registration_deadline", "registration_limit"}


def _build_custom_form(fields) -> dict:
    return {"fields": [f.model_dump() for f in fields], "locked": False}


def _build_variants(variants) -> List[MerchandiseVariant]:
    return [
        MerchandiseVariant(
            variant_id=v.variant_id,
            size=v.size,
            color=v.color,
            stock_quantity=v.stock_quantity,
            price=v.price,
        )
        for v in variants
    ]


class EventService:
    """
    Event creation, status transitions, edits and deletion.
    """

    def __init__(self):
        self.event_publisher = None
        self.notification_service = notification_service
        self.attendance_service = attendance_service

    async def _get_event_publisher(self):
        """Get event publisher instance."""
        if not self.event_publisher:
            await redis_manager.initialize()
            self.event_publisher = CampusEventPublisher(redis_manager)
        return self.event_publisher

    async def create_event(self, user: Dict[str, Any], data: EventCreate) -> Event:
        """
        Create a draft event.

        Raises:
            ValidationError: registration deadline is not in the future
        """
        if data.registration_deadline <= utcnow():
            raise ValidationError("Registration deadline must be in the future")

        is_merchandise = data.event_type == EventType.MERCHANDISE

        with db_manager.get_transaction_session() as session:
            event = Event(
                organizer_id=user["user_id"],
                name=data.name,
                description=data.description,
                event_type=data.event_type,
                eligibility=data.eligibility,
                tags=data.tags,
                registration_deadline=data.registration_deadline,
                event_start_date=data.event_start_date,
                event_end_date=data.event_end_date,
                registration_limit=data.registration_limit,
                registration_fee=Decimal("0") if is_merchandise else data.registration_fee,
                requires_approval=data.requires_approval,
                purchase_limit=data.purchase_limit,
                status=EventStatus.DRAFT,
                custom_form=None if is_merchandise else _build_custom_form(data.custom_form_fields),
                total_registrations=0,
                total_revenue=Decimal("0"),
                total_attendance=0,
            )
            if is_merchandise:
                event.variants = _build_variants(data.variants)

            session.add(event)
            session.commit()
            session.refresh(event)
            _ = event.variants

        logger.info(f"Event {event.id} created as draft by organizer {user['user_id']}")
        return event

    async def get_event(self, event_id: int, user: Dict[str, Any]) -> Event:
        """Drafts are only visible to their organizer."""
        with db_manager.get_session() as session:
            event = session.query(Event).options(selectinload(Event.variants)).filter(Event.id == event_id).first()
            if not event:
                raise EventNotFoundError(event_id)
            if event.status == EventStatus.DRAFT and event.organizer_id != user["user_id"] and not is_admin(user):
                raise EventNotFoundError(event_id)
            return event

    def _apply_draft_changes(self, session, event: Event, changes: Dict[str, Any], data: EventUpdate):
        """Draft events accept any field change, re-validated as a whole."""
        if "custom_form_fields" in changes:
            if event.form_locked:
                raise StateError("The registration form is locked")
            event.custom_form = _build_custom_form(data.custom_form_fields or [])
            changes.pop("custom_form_fields")

        if "variants" in changes:
            variants = data.variants or []
            ids = [v.variant_id for v in variants]
            if len(ids) != len(set(ids)):
                raise ValidationError("Variant ids must be unique")
            # Old rows must be gone before new ones reuse their variant ids
            event.variants.clear()
            session.flush()
            event.variants = _build_variants(variants)
            changes.pop("variants")

        for field, value in changes.items():
            setattr(event, field, value)

        if event.is_merchandise:
            event.registration_fee = Decimal("0")
            if not event.variants:
                raise ValidationError("Merchandise events need at least one variant")
        elif not event.registration_limit:
            raise ValidationError("Normal events need a positive registration limit")

        if as_utc(event.event_start_date) <= as_utc(event.registration_deadline):
            raise ValidationError("Event start date must be after the registration deadline")
        if as_utc(event.event_end_date) <= as_utc(event.event_start_date):
            raise ValidationError("Event end date must be after the start date")

    def _apply_published_changes(self, event: Event, changes: Dict[str, Any]):
        """Published events accept a new description and monotonic deadline/capacity increases."""
        rejected = sorted(set(changes) - PUBLISHED_EDITABLE_FIELDS)
        if rejected:
            raise StateError(
                "Published events only accept description, deadline and capacity changes",
                {"fields": rejected}
            )

        if changes.get("description"):
            event.description = changes["description"]

        new_deadline = changes.get("registration_deadline")
        if new_deadline is not None:
            if new_deadline <= as_utc(event.registration_deadline):
                raise ValidationError("Can only extend registration deadline, not reduce it")
            if new_deadline >= as_utc(event.event_start_date):
                raise ValidationError("Registration deadline must stay before the event start date")
            event.registration_deadline = new_deadline

        new_limit = changes.get("registration_limit")
        if new_limit is not None:
            if event.registration_limit is not None and new_limit < event.registration_limit:
                raise ValidationError("Can only increase registration limit, not reduce it")
            event.registration_limit = new_limit

    async def update_event(self, event_id: int, user: Dict[str, Any], data: EventUpdate) -> Event:
        """
        Edit an event and/or move it along its lifecycle.
        Reaching completed or closed marks every unscanned registration absent
        inside the same transaction.

        Raises:
            StateError: edit or transition not allowed in the current status
            ValidationError: invalid field values
        """
        changes = data.model_dump(exclude_unset=True)
        target_status = changes.pop("status", None)

        with db_manager.get_transaction_session() as session:
            event = load_owned_event(session, event_id, user)
            previous_status = event.status

            if previous_status == EventStatus.CLOSED:
                raise StateError("Cannot edit closed events", {"current_status": previous_status.value})

            if changes:
                if previous_status == EventStatus.DRAFT:
                    self._apply_draft_changes(session, event, changes, data)
                elif previous_status == EventStatus.PUBLISHED:
                    self._apply_published_changes(event, changes)
                else:
                    raise StateError(
                        "Cannot edit ongoing/completed events except status",
                        {"current_status": previous_status.value}
                    )

            if target_status is not None and target_status != previous_status:
                if target_status not in ALLOWED_TRANSITIONS[previous_status]:
                    raise StateError(
                        f"Cannot move event from {previous_status.value} to {target_status.value}",
                        {"current_status": previous_status.value, "requested_status": target_status.value}
                    )
                event.status = target_status

                if target_status in FINISHED_STATUSES and previous_status not in FINISHED_STATUSES:
                    session.flush()
                    self.attendance_service.bulk_absence(session, event.id)

            session.commit()
            session.refresh(event)
            _ = event.variants
            event_data = event.to_dict()

        if event.status != previous_status:
            logger.info(f"Event {event_id} moved from {previous_status.value} to {event.status.value}")

        if previous_status == EventStatus.DRAFT and event.status == EventStatus.PUBLISHED:
            await self.notification_service.send_event_announcement(event_data)

        try:
            publisher = await self._get_event_publisher()
            await publisher.publish_event_updated(event, previous_status.value)
        except Exception as e:
            logger.error(f"Failed to publish event update: {e}")

        return event

    async def delete_event(self, event_id: int, user: Dict[str, Any]) -> int:
        """
        Delete a draft event together with anything already attached to it.

        Returns:
            Number of registrations deleted
        """
        with db_manager.get_transaction_session() as session:
            event = load_owned_event(session, event_id, user)
            if event.status != EventStatus.DRAFT:
                raise StateError("Can only delete draft events", {"current_status": event.status.value})

            registration_ids = select(Registration.id).where(Registration.event_id == event_id)
            session.query(ScanHistoryEntry).filter(
                ScanHistoryEntry.registration_id.in_(registration_ids)
            ).delete(synchronize_session=False)
            deleted = session.query(Registration).filter(
                Registration.event_id == event_id
            ).delete(synchronize_session=False)

            session.delete(event)
            session.commit()

        logger.info(f"Event {event_id} deleted with {deleted} registrations")

        try:
            publisher = await self._get_event_publisher()
            await publisher.publish_event_deleted(event_id)
        except Exception as e:
            logger.error(f"Failed to publish event deletion: {e}")

        return deleted

    async def get_organizer_summary(self, user: Dict[str, Any]) -> Dict[str, Any]:
        """Sum the running aggregates over the organizer's finished events."""
        with db_manager.get_session() as session:
            count, registrations, revenue, attendance = session.query(
                func.count(Event.id),
                func.coalesce(func.sum(Event.total_registrations), 0),
                func.coalesce(func.sum(Event.total_revenue), 0),
                func.coalesce(func.sum(Event.total_attendance), 0),
            ).filter(
                and_(
                    Event.organizer_id == user["user_id"],
                    Event.status.in_(FINISHED_STATUSES)
                )
            ).one()

        return {
            "organizer_id": user["user_id"],
            "finished_events": int(count or 0),
            "total_registrations": int(registrations or 0),
            "total_revenue": float(revenue or 0),
            "total_attendance": int(attendance or 0),
        }


# Global event service instance
event_service = EventService()
