"""
Event models for Campus Events Service.
An event owns its merchandise variants and the running aggregates
(confirmed registrations, approved revenue, present attendance).
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Enum, Numeric,
    ForeignKey, Index, CheckConstraint, UniqueConstraint, Text, JSON
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum
from typing import Optional

from campus_events.core.time_utils import isoformat

Base = declarative_base()


class EventType(PyEnum):
    """Event type enumeration."""
    NORMAL = "normal"
    MERCHANDISE = "merchandise"


class Eligibility(PyEnum):
    """Who may register for an event."""
    ALL = "all"
    IIITIANS = "iiitans"
    EXTERNAL = "external"


class EventStatus(PyEnum):
    """Event lifecycle status enumeration."""
    DRAFT = "draft"               # Being prepared by the organizer
    PUBLISHED = "published"       # Accepting registrations
    ONGOING = "ongoing"           # Ticket scanning allowed
    COMPLETED = "completed"       # Finished, edits frozen
    CLOSED = "closed"             # Terminal, fully immutable


# Statuses in which new registrations are accepted
OPEN_FOR_REGISTRATION = (EventStatus.PUBLISHED, EventStatus.ONGOING)

# Reaching one of these statuses marks every unscanned registration absent
FINISHED_STATUSES = (EventStatus.COMPLETED, EventStatus.CLOSED)


class Event(Base):
    """
    Event organized by a club.
    """

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    organizer_id = Column(Integer, nullable=False, index=True)  # References identity provider

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    event_type = Column(Enum(EventType), default=EventType.NORMAL, nullable=False)
    eligibility = Column(Enum(Eligibility), default=Eligibility.ALL, nullable=False)
    tags = Column(JSON, nullable=True)

    registration_deadline = Column(DateTime(timezone=True), nullable=False)
    event_start_date = Column(DateTime(timezone=True), nullable=False)
    event_end_date = Column(DateTime(timezone=True), nullable=False)

    registration_limit = Column(Integer, nullable=True)  # Required for normal events
    registration_fee = Column(Numeric(10, 2), default=0, nullable=False)
    requires_approval = Column(Boolean, default=False, nullable=False)
    purchase_limit = Column(Integer, default=1, nullable=False)

    status = Column(Enum(EventStatus), default=EventStatus.DRAFT, nullable=False, index=True)

    # {"fields": [{"field_id", "label", "type", "options", "required", "order"}], "locked": bool}
    custom_form = Column(JSON, nullable=True)

    # Running aggregates, mutated only through the inventory ledger
    total_registrations = Column(Integer, default=0, nullable=False)
    total_revenue = Column(Numeric(12, 2), default=0, nullable=False)
    total_attendance = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    version = Column(Integer, default=1, nullable=False)

    variants = relationship(
        "MerchandiseVariant",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="MerchandiseVariant.id"
    )

    __table_args__ = (
        CheckConstraint('registration_fee >= 0', name='check_registration_fee_non_negative'),
        CheckConstraint('purchase_limit >= 1', name='check_purchase_limit_positive'),
        CheckConstraint('total_registrations >= 0', name='check_total_registrations_non_negative'),
        CheckConstraint('total_revenue >= 0', name='check_total_revenue_non_negative'),
        CheckConstraint('total_attendance >= 0', name='check_total_attendance_non_negative'),
        Index('idx_event_organizer_status', 'organizer_id', 'status'),
    )

    def __repr__(self):
        return f"<Event(id={self.id}, name='{self.name}', status='{self.status.value}')>"

    @property
    def is_merchandise(self) -> bool:
        return self.event_type == EventType.MERCHANDISE

    @property
    def form_fields(self) -> list:
        return (self.custom_form or {}).get("fields", [])

    @property
    def form_locked(self) -> bool:
        return bool((self.custom_form or {}).get("locked", False))

    def get_variant(self, variant_id: Optional[str]) -> Optional["MerchandiseVariant"]:
        """Find a variant by its organizer-chosen id."""
        for variant in self.variants:
            if variant.variant_id == variant_id:
                return variant
        return None

    def to_dict(self) -> dict:
        """Convert event to dictionary representation."""
        return {
            "id": self.id,
            "organizer_id": self.organizer_id,
            "name": self.name,
            "description": self.description,
            "event_type": self.event_type.value,
            "eligibility": self.eligibility.value,
            "status": self.status.value,
            "registration_deadline": isoformat(self.registration_deadline),
            "event_start_date": isoformat(self.event_start_date),
            "event_end_date": isoformat(self.event_end_date),
            "registration_limit": self.registration_limit,
            "registration_fee": float(self.registration_fee or 0),
            "requires_approval": self.requires_approval,
            "total_registrations": self.total_registrations,
            "total_revenue": float(self.total_revenue or 0),
            "total_attendance": self.total_attendance,
        }


class MerchandiseVariant(Base):
    """
    A purchasable size/color combination of a merchandise event.
    """

    __tablename__ = "merchandise_variants"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)

    variant_id = Column(String(50), nullable=False)
    size = Column(String(20), nullable=True)
    color = Column(String(50), nullable=True)
    stock_quantity = Column(Integer, default=0, nullable=False)
    price = Column(Numeric(10, 2), default=0, nullable=False)

    event = relationship("Event", back_populates="variants")

    __table_args__ = (
        CheckConstraint('stock_quantity >= 0', name='check_stock_quantity_non_negative'),
        CheckConstraint('price >= 0', name='check_variant_price_non_negative'),
        UniqueConstraint('event_id', 'variant_id', name='uq_variant_per_event'),
    )

    def __repr__(self):
        return f"<MerchandiseVariant(event_id={self.event_id}, variant_id='{self.variant_id}', stock={self.stock_quantity})>"
