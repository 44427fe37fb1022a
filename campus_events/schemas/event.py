"""
Pydantic schemas for events.
Handles request/response validation and serialization.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Any
from datetime import datetime
from decimal import Decimal

from campus_events.core.time_utils import as_utc, utcnow
from campus_events.models.event import EventType, Eligibility, EventStatus


FORM_FIELD_TYPES = ("text", "textarea", "number", "email", "select", "checkbox", "radio", "file")


# Request schemas
class VariantCreate(BaseModel):
    """Schema for a merchandise variant."""

    variant_id: str = Field(..., min_length=1, max_length=50)
    size: Optional[str] = Field(None, max_length=20)
    color: Optional[str] = Field(None, max_length=50)
    stock_quantity: int = Field(..., ge=0)
    price: Decimal = Field(Decimal("0"), ge=0)

    @field_validator('price')
    @classmethod
    def validate_price(cls, v):
        """Validate price has at most 2 decimal places."""
        if v.as_tuple().exponent < -2:
            raise ValueError('Price cannot have more than 2 decimal places')
        return v


class CustomFormField(BaseModel):
    """Schema for a custom registration form field."""

    field_id: str = Field(..., min_length=1, max_length=50)
    label: str = Field(..., min_length=1, max_length=200)
    type: str = Field("text")
    options: List[str] = []
    required: bool = False
    order: int = 0

    @field_validator('type')
    @classmethod
    def validate_type(cls, v):
        if v not in FORM_FIELD_TYPES:
            raise ValueError(f"Field type must be one of {', '.join(FORM_FIELD_TYPES)}")
        return v


class EventCreate(BaseModel):
    """Schema for creating a new event."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    event_type: EventType = EventType.NORMAL
    eligibility: Eligibility = Eligibility.ALL
    registration_deadline: datetime
    event_start_date: datetime
    event_end_date: datetime
    registration_limit: Optional[int] = Field(None, gt=0)
    registration_fee: Decimal = Field(Decimal("0"), ge=0)
    requires_approval: bool = False
    purchase_limit: int = Field(1, ge=1)
    tags: List[str] = []
    custom_form_fields: List[CustomFormField] = []
    variants: List[VariantCreate] = []

    @field_validator('registration_deadline', 'event_start_date', 'event_end_date')
    @classmethod
    def normalize_dates(cls, v):
        return as_utc(v)

    @model_validator(mode='after')
    def validate_event(self):
        """Validate date ordering and type-specific requirements."""
        if self.event_start_date <= self.registration_deadline:
            raise ValueError('Event start date must be after the registration deadline')
        if self.event_end_date <= self.event_start_date:
            raise ValueError('Event end date must be after the start date')

        if self.event_type == EventType.MERCHANDISE:
            if not self.variants:
                raise ValueError('Merchandise events need at least one variant')
            ids = [v.variant_id for v in self.variants]
            if len(ids) != len(set(ids)):
                raise ValueError('Variant ids must be unique')
            # Variant price carries the fee
            self.registration_fee = Decimal("0")
        else:
            if not self.registration_limit:
                raise ValueError('Normal events need a positive registration limit')
            field_ids = [f.field_id for f in self.custom_form_fields]
            if len(field_ids) != len(set(field_ids)):
                raise ValueError('Form field ids must be unique')
        return self


class EventUpdate(BaseModel):
    """Schema for updating an event. Which fields are accepted depends on its status."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1)
    eligibility: Optional[Eligibility] = None
    registration_deadline: Optional[datetime] = None
    event_start_date: Optional[datetime] = None
    event_end_date: Optional[datetime] = None
    registration_limit: Optional[int] = Field(None, gt=0)
    registration_fee: Optional[Decimal] = Field(None, ge=0)
    requires_approval: Optional[bool] = None
    purchase_limit: Optional[int] = Field(None, ge=1)
    tags: Optional[List[str]] = None
    custom_form_fields: Optional[List[CustomFormField]] = None
    variants: Optional[List[VariantCreate]] = None
    status: Optional[EventStatus] = None

    @field_validator('registration_deadline', 'event_start_date', 'event_end_date')
    @classmethod
    def normalize_dates(cls, v):
        return as_utc(v)


# Response schemas
class VariantResponse(BaseModel):
    """Schema for merchandise variant response."""

    variant_id: str
    size: Optional[str]
    color: Optional[str]
    stock_quantity: int
    price: float

    class Config:
        from_attributes = True


class EventResponse(BaseModel):
    """Schema for event response."""

    id: int
    organizer_id: int
    name: str
    description: str
    event_type: EventType
    eligibility: Eligibility
    status: EventStatus
    registration_deadline: datetime
    event_start_date: datetime
    event_end_date: datetime
    registration_limit: Optional[int]
    registration_fee: float
    requires_approval: bool
    purchase_limit: int
    tags: Optional[List[str]]
    custom_form: Optional[Any]
    total_registrations: int
    total_revenue: float
    total_attendance: int
    variants: List[VariantResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EventDeleteResponse(BaseModel):
    """Schema for event deletion response."""

    message: str
    event_id: int
    registrations_deleted: int


class OrganizerAnalyticsSummary(BaseModel):
    """Aggregate figures over an organizer's finished events."""

    organizer_id: int
    finished_events: int
    total_registrations: int
    total_revenue: float
    total_attendance: int


class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=utcnow, description="Health check timestamp")
    version: str = Field(..., description="Service version")
    database: str = Field(..., description="Database connection status")
    redis: str = Field(..., description="Redis connection status")
