"""
Pydantic schemas for registrations, approvals and attendance.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Any
from datetime import datetime

from campus_events.models.registration import (
    RegistrationStatus, ApprovalStatus, PaymentStatus, AttendanceStatus, ScanAction
)


# Request schemas
class FormAnswer(BaseModel):
    """Answer to one custom form field."""

    field_id: str = Field(..., min_length=1)
    value: Any = None


class RegistrationCreate(BaseModel):
    """
    Schema for submitting a registration.
    Carries either a merchandise selection or custom form answers, never both.
    """

    team_name: Optional[str] = Field(None, max_length=100)
    variant_id: Optional[str] = Field(None, max_length=50)
    quantity: Optional[int] = Field(None, gt=0)
    form_data: Optional[List[FormAnswer]] = None

    @model_validator(mode='after')
    def validate_selection(self):
        """Only one arm of the selection may be populated."""
        has_merchandise = self.variant_id is not None or self.quantity is not None
        if has_merchandise and self.form_data:
            raise ValueError('Provide either a merchandise selection or form answers, not both')
        if self.quantity is not None and self.variant_id is None:
            raise ValueError('Quantity requires a variant')
        return self


class RejectRequest(BaseModel):
    """Schema for rejecting a payment or registration."""

    reason: Optional[str] = Field(None, max_length=500)


class ScanRequest(BaseModel):
    """Schema for scanning a ticket: a raw ticket id or the QR payload."""

    ticket_id: Optional[str] = None
    qr_data: Optional[str] = None

    @model_validator(mode='after')
    def validate_identifier(self):
        if not self.ticket_id and not self.qr_data:
            raise ValueError('Ticket ID is required')
        return self


class ManualAttendanceRequest(BaseModel):
    """Schema for a manual attendance override."""

    status: AttendanceStatus
    reason: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v not in (AttendanceStatus.PRESENT, AttendanceStatus.ABSENT):
            raise ValueError("Status must be 'present' or 'absent'")
        return v

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, v):
        if not v or len(v.strip()) < 5:
            raise ValueError('Reason is required for manual override (min 5 characters)')
        return v.strip()


class VerifyQRRequest(BaseModel):
    """Schema for verifying a QR payload without recording attendance."""

    qr_data: str = Field(..., min_length=1)


# Response schemas
class RegistrationSubmitResponse(BaseModel):
    """Result of a registration submission."""

    message: str
    registration_id: int
    status: RegistrationStatus
    ticket_id: Optional[str] = None
    requires_payment_proof: bool
    requires_approval: bool


class ScanHistoryResponse(BaseModel):
    """Schema for a scan history entry."""

    action: ScanAction
    actor_id: Optional[int]
    notes: Optional[str]
    scanned_at: datetime

    class Config:
        from_attributes = True


class RegistrationResponse(BaseModel):
    """Schema for registration response."""

    id: int
    user_id: int
    event_id: int
    status: RegistrationStatus
    payment_approval_status: ApprovalStatus
    registration_approval_status: ApprovalStatus
    payment_status: PaymentStatus
    payment_proof_image: Optional[str] = None
    payment_rejection_reason: Optional[str] = None
    registration_rejection_reason: Optional[str] = None
    ticket_id: Optional[str] = None
    attendance_status: AttendanceStatus
    attendance_marked_at: Optional[datetime] = None
    manual_override: bool
    override_reason: Optional[str] = None
    variant_id: Optional[str] = None
    quantity: Optional[int] = None
    form_data: Optional[List[Any]] = None
    team_name: Optional[str] = None
    participant_name: Optional[str] = None
    participant_email: Optional[str] = None
    participant_college: Optional[str] = None
    registration_date: datetime
    scan_history: List[ScanHistoryResponse] = []

    class Config:
        from_attributes = True


class PaymentProofResponse(BaseModel):
    """Schema for payment proof upload response."""

    message: str
    image_path: str


class ApprovalResponse(BaseModel):
    """Result of an approval or rejection."""

    message: str
    registration_id: int
    status: RegistrationStatus
    payment_approval_status: ApprovalStatus
    registration_approval_status: ApprovalStatus
    ticket_id: Optional[str] = None


class PendingItem(BaseModel):
    """A registration waiting in an organizer queue."""

    registration_id: int
    user_id: int
    participant_name: Optional[str] = None
    participant_email: Optional[str] = None
    participant_college: Optional[str] = None
    variant_id: Optional[str] = None
    quantity: Optional[int] = None
    form_data: Optional[List[Any]] = None
    team_name: Optional[str] = None
    payment_proof_image: Optional[str] = None
    created_at: Optional[datetime] = None


class ProcessedItem(BaseModel):
    """A recently approved or rejected registration."""

    registration_id: int
    user_id: int
    participant_name: Optional[str] = None
    participant_email: Optional[str] = None
    ticket_id: Optional[str] = None
    status: ApprovalStatus
    processed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class PendingQueueResponse(BaseModel):
    """Organizer approval queue."""

    pending: List[PendingItem]
    recently_processed: List[ProcessedItem]


class ParticipantInfo(BaseModel):
    """Participant identity reported by scans."""

    registration_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    college_name: Optional[str] = None
    ticket_id: Optional[str] = None
    marked_at: Optional[datetime] = None


class ScanResponse(BaseModel):
    """Successful scan result."""

    success: bool = True
    message: str
    participant: ParticipantInfo


class DuplicateScanResponse(BaseModel):
    """Body of a rejected duplicate scan."""

    error: str
    already_marked_at: Optional[datetime] = None
    participant: ParticipantInfo


class ManualAttendanceResponse(BaseModel):
    """Result of a manual attendance override."""

    message: str
    registration_id: int
    attendance_status: AttendanceStatus
    manual_override: bool
    reason: str


class AttendanceStats(BaseModel):
    """Dashboard counters."""

    total_registered: int
    present: int
    not_yet_scanned: int
    absent: int
    attendance_rate: float


class DashboardParticipant(BaseModel):
    """Participant row of the attendance dashboard."""

    registration_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    college_name: Optional[str] = None
    ticket_id: Optional[str] = None
    attendance_status: AttendanceStatus
    attendance_marked_at: Optional[datetime] = None
    manual_override: bool
    override_reason: Optional[str] = None


class AttendanceDashboardResponse(BaseModel):
    """Attendance dashboard for an event."""

    stats: AttendanceStats
    participants: List[DashboardParticipant]


class VerifiedTicket(BaseModel):
    """Registration summary of a verified QR payload."""

    ticket_id: str
    user_name: Optional[str] = None
    email: Optional[str] = None
    college_name: Optional[str] = None
    event_id: int
    event_name: str
    event_date: Optional[datetime] = None
    registration_status: RegistrationStatus
    attendance_status: AttendanceStatus
    payment_status: PaymentStatus
    registration_date: Optional[datetime] = None


class VerifyQRResponse(BaseModel):
    """QR verification result."""

    valid: bool
    registration: VerifiedTicket
