"""
Registration models for Campus Events Service.
A registration is one user's claim on one event, gated by payment
and registration approval, with an append-only scan history.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Enum,
    ForeignKey, Index, CheckConstraint, UniqueConstraint, Text, JSON
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum

from campus_events.core.time_utils import utcnow, isoformat
from campus_events.models.event import Base


class RegistrationStatus(PyEnum):
    """Overall registration status, derived from the gates and attendance."""
    PENDING_APPROVAL = "pending_approval"
    REGISTERED = "registered"
    ATTENDED = "attended"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class ApprovalStatus(PyEnum):
    """State of a single approval gate."""
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_clear(self) -> bool:
        """A gate is clear once it no longer blocks the ticket."""
        return self in (ApprovalStatus.NOT_REQUIRED, ApprovalStatus.APPROVED)


class PaymentStatus(PyEnum):
    """Payment status enumeration."""
    FREE = "free"
    PENDING = "pending"
    COMPLETED = "completed"


class AttendanceStatus(PyEnum):
    """Attendance status enumeration."""
    NOT_CHECKED = "not_checked"
    PRESENT = "present"
    ABSENT = "absent"


class ScanAction(PyEnum):
    """Scan history action enumeration."""
    SCANNED = "scanned"
    MANUAL_PRESENT = "manual_present"
    MANUAL_ABSENT = "manual_absent"
    DUPLICATE_REJECTED = "duplicate_rejected"


def derive_status(payment_gate: ApprovalStatus,
                  registration_gate: ApprovalStatus,
                  attendance: AttendanceStatus) -> RegistrationStatus:
    """Collapse the two approval gates and attendance into the overall status."""
    gates = (payment_gate, registration_gate)
    if ApprovalStatus.REJECTED in gates:
        return RegistrationStatus.REJECTED
    if ApprovalStatus.PENDING in gates:
        return RegistrationStatus.PENDING_APPROVAL
    if attendance == AttendanceStatus.PRESENT:
        return RegistrationStatus.ATTENDED
    return RegistrationStatus.REGISTERED


class Registration(Base):
    """
    Registration of a user for an event.
    ticket_id and the encrypted QR payload are set only once both gates are clear.
    """

    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)  # References identity provider
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)

    status = Column(Enum(RegistrationStatus), default=RegistrationStatus.PENDING_APPROVAL, nullable=False, index=True)

    # Payment gate
    payment_approval_status = Column(Enum(ApprovalStatus), default=ApprovalStatus.NOT_REQUIRED, nullable=False)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.FREE, nullable=False)
    payment_proof_image = Column(String(500), nullable=True)
    payment_approved_at = Column(DateTime(timezone=True), nullable=True)
    payment_approved_by = Column(Integer, nullable=True)
    payment_rejection_reason = Column(Text, nullable=True)

    # Registration gate
    registration_approval_status = Column(Enum(ApprovalStatus), default=ApprovalStatus.NOT_REQUIRED, nullable=False)
    registration_approved_at = Column(DateTime(timezone=True), nullable=True)
    registration_approved_by = Column(Integer, nullable=True)
    registration_rejection_reason = Column(Text, nullable=True)

    # Ticket
    ticket_id = Column(String(64), unique=True, index=True, nullable=True)
    qr_code_encrypted = Column(Text, nullable=True)
    qr_code_iv = Column(String(32), nullable=True)

    # Attendance
    attendance_status = Column(Enum(AttendanceStatus), default=AttendanceStatus.NOT_CHECKED, nullable=False)
    attendance_marked_at = Column(DateTime(timezone=True), nullable=True)
    attendance_marked_by = Column(Integer, nullable=True)
    manual_override = Column(Boolean, default=False, nullable=False)
    override_reason = Column(Text, nullable=True)

    # Selection: merchandise (variant + quantity) or custom-form answers
    variant_id = Column(String(50), nullable=True)
    quantity = Column(Integer, nullable=True)
    form_data = Column(JSON, nullable=True)
    team_name = Column(String(100), nullable=True)

    # Participant snapshot taken at submission
    participant_name = Column(String(200), nullable=True)
    participant_email = Column(String(255), nullable=True)
    participant_college = Column(String(200), nullable=True)

    registration_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    version = Column(Integer, default=1, nullable=False)

    event = relationship("Event")
    scan_history = relationship(
        "ScanHistoryEntry",
        back_populates="registration",
        cascade="all, delete-orphan",
        order_by="ScanHistoryEntry.id"
    )

    __table_args__ = (
        UniqueConstraint('user_id', 'event_id', name='uq_registration_user_event'),
        CheckConstraint('quantity IS NULL OR quantity > 0', name='check_registration_quantity_positive'),
        Index('idx_registration_event_status', 'event_id', 'status'),
        Index('idx_registration_event_attendance', 'event_id', 'attendance_status'),
    )

    def __repr__(self):
        return f"<Registration(id={self.id}, user_id={self.user_id}, event_id={self.event_id}, status='{self.status.value}')>"

    @property
    def gates_clear(self) -> bool:
        """Both approval gates are in a non-blocking terminal state."""
        return self.payment_approval_status.is_clear and self.registration_approval_status.is_clear

    def sync_status(self):
        """Recompute the overall status from the gates and attendance."""
        if self.status == RegistrationStatus.CANCELLED:
            return
        self.status = derive_status(
            self.payment_approval_status,
            self.registration_approval_status,
            self.attendance_status
        )

    def append_scan(self, action: ScanAction, actor_id, notes: str = None) -> "ScanHistoryEntry":
        """Append an audit entry; entries are never edited or removed."""
        entry = ScanHistoryEntry(action=action, actor_id=actor_id, notes=notes, scanned_at=utcnow())
        self.scan_history.append(entry)
        return entry

    def to_dict(self) -> dict:
        """Convert registration to dictionary representation."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_id": self.event_id,
            "status": self.status.value,
            "payment_approval_status": self.payment_approval_status.value,
            "registration_approval_status": self.registration_approval_status.value,
            "payment_status": self.payment_status.value,
            "ticket_id": self.ticket_id,
            "attendance_status": self.attendance_status.value,
            "attendance_marked_at": isoformat(self.attendance_marked_at),
            "manual_override": self.manual_override,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "team_name": self.team_name,
            "participant_name": self.participant_name,
            "participant_email": self.participant_email,
            "registration_date": isoformat(self.registration_date),
        }


class ScanHistoryEntry(Base):
    """
    Append-only audit entry of a scan or manual attendance change.
    """

    __tablename__ = "scan_history"

    id = Column(Integer, primary_key=True, index=True)
    registration_id = Column(Integer, ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False, index=True)

    action = Column(Enum(ScanAction), nullable=False)
    actor_id = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    scanned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    registration = relationship("Registration", back_populates="scan_history")

    def __repr__(self):
        return f"<ScanHistoryEntry(registration_id={self.registration_id}, action='{self.action.value}')>"
