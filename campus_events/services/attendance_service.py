"""
Attendance check-in for Campus Events Service.
Records at most one present mark per registration without an explicit override,
with every scan and override kept in the registration's scan history.
"""

import csv
import io
import contextlib
import logging
from typing import Optional, Dict, Any, NamedTuple, Tuple

from sqlalchemy import and_

from campus_events.core.config import config
from campus_events.core.exceptions import (
    ConflictError, EventNotOngoingError, ForbiddenError, RegistrationNotEligibleError,
    RegistrationNotFoundError, TicketNotFoundError, TicketNotIssuedError, ValidationError,
    PaymentPendingError, PaymentRejectedError, ApprovalPendingError, ApprovalRejectedError
)
from campus_events.core.time_utils import utcnow, as_utc, isoformat
from campus_events.db.database import db_manager
from campus_events.db.redis_client import redis_manager, get_distributed_lock
from campus_events.models.event import EventStatus
from campus_events.models.registration import (
    Registration, RegistrationStatus, ApprovalStatus, AttendanceStatus, ScanAction
)
from .event_publisher import CampusEventPublisher
from .inventory_ledger import inventory_ledger
from .lookups import is_admin, load_owned_event, load_event_registration
from .ticket_codec import TicketCodec, build_ticket_codec

logger = logging.getLogger(__name__)

MIN_OVERRIDE_REASON_LENGTH = 5

BLOCKED_REGISTRATION_STATUSES = (
    RegistrationStatus.CANCELLED,
    RegistrationStatus.REJECTED,
    RegistrationStatus.PENDING_APPROVAL,
)

# Only registrations whose payment does not block them count on the dashboard
COUNTED_PAYMENT_STATUSES = (ApprovalStatus.NOT_REQUIRED, ApprovalStatus.APPROVED)

CSV_HEADERS = [
    "Name", "Email", "College", "Ticket ID", "Attendance Status",
    "Check-in Time", "Manual Override", "Override Reason"
]


class ScanOutcome(NamedTuple):
    """Result of a scan. A duplicate is a detected outcome, not an error."""
    duplicate: bool
    registration_id: int
    participant: Dict[str, Any]
    marked_at: Optional[Any]


def _participant(registration: Registration) -> Dict[str, Any]:
    return {
        "registration_id": registration.id,
        "name": registration.participant_name,
        "email": registration.participant_email,
        "college_name": registration.participant_college,
        "ticket_id": registration.ticket_id,
        "marked_at": as_utc(registration.attendance_marked_at),
    }


class AttendanceService:
    """
    Ticket scanning, manual overrides, bulk absence marking and attendance reports.
    """

    def __init__(self):
        self.consistency_config = None
        self.ticket_codec: Optional[TicketCodec] = None
        self.event_publisher = None
        self.ledger = inventory_ledger

    async def _get_configs(self):
        """Get configuration settings."""
        if not self.consistency_config:
            self.consistency_config = await config.get_consistency_config()

    async def _get_ticket_codec(self) -> TicketCodec:
        if not self.ticket_codec:
            self.ticket_codec = await build_ticket_codec()
        return self.ticket_codec

    async def _get_event_publisher(self):
        """Get event publisher instance."""
        if not self.event_publisher:
            await redis_manager.initialize()
            self.event_publisher = CampusEventPublisher(redis_manager)
        return self.event_publisher

    async def _publish_attendance(self, registration: Registration, manual: bool):
        try:
            publisher = await self._get_event_publisher()
            await publisher.publish_attendance_marked(registration, manual=manual)
        except Exception as e:
            logger.error(f"Failed to publish attendance change: {e}")

    def _lock(self, lock_key: str):
        if self.consistency_config.get("enable_distributed_locks"):
            return get_distributed_lock(lock_key, timeout=self.consistency_config["lock_timeout_seconds"])
        return contextlib.nullcontext()

    @staticmethod
    def _check_scannable(registration: Registration):
        """Raise a distinct error for each reason a registration cannot be checked in."""
        if registration.status in BLOCKED_REGISTRATION_STATUSES:
            raise RegistrationNotEligibleError(registration.status.value)

        if registration.payment_approval_status == ApprovalStatus.PENDING:
            raise PaymentPendingError("Cannot mark attendance - payment pending")
        if registration.payment_approval_status == ApprovalStatus.REJECTED:
            raise PaymentRejectedError("Cannot mark attendance - payment rejected")
        if registration.registration_approval_status == ApprovalStatus.PENDING:
            raise ApprovalPendingError("Cannot mark attendance - registration pending approval")
        if registration.registration_approval_status == ApprovalStatus.REJECTED:
            raise ApprovalRejectedError("Cannot mark attendance - registration rejected")

        if not registration.qr_code_encrypted:
            raise TicketNotIssuedError()

    async def scan(self, event_id: int, user: Dict[str, Any],
                   ticket_id: Optional[str] = None, qr_data: Optional[str] = None) -> ScanOutcome:
        """
        Check a ticket in.

        Args:
            event_id: Event being scanned at
            user: Organizer performing the scan
            ticket_id: Raw ticket id, when typed in
            qr_data: Scanned QR payload (encrypted envelope or legacy JSON)

        Returns:
            ScanOutcome; duplicate=True when the ticket was already marked present

        Raises:
            EventNotOngoingError, TicketNotFoundError, CryptoError, StateError subclasses
        """
        await self._get_configs()
        codec = await self._get_ticket_codec()

        # Ownership and status come before any ticket decoding; rechecked under the lock
        with db_manager.get_session() as session:
            event = load_owned_event(session, event_id, user)
            if event.status != EventStatus.ONGOING:
                raise EventNotOngoingError(event.status.value)

        reference = codec.resolve_ticket_id(qr_data or ticket_id)

        async with self._lock(f"registration:scan:{event_id}:{reference.ticket_id}"):
            with db_manager.get_transaction_session() as session:
                event = load_owned_event(session, event_id, user)
                if event.status != EventStatus.ONGOING:
                    raise EventNotOngoingError(event.status.value)

                registration = session.query(Registration).filter(
                    and_(
                        Registration.ticket_id == reference.ticket_id,
                        Registration.event_id == event_id
                    )
                ).first()
                if not registration:
                    raise TicketNotFoundError(reference.ticket_id)

                self._check_scannable(registration)

                now = utcnow()
                claimed = session.query(Registration).filter(
                    and_(
                        Registration.id == registration.id,
                        Registration.attendance_status != AttendanceStatus.PRESENT
                    )
                ).update({
                    Registration.attendance_status: AttendanceStatus.PRESENT,
                    Registration.attendance_marked_at: now,
                    Registration.attendance_marked_by: user["user_id"],
                    Registration.status: RegistrationStatus.ATTENDED,
                    Registration.version: Registration.version + 1,
                }, synchronize_session=False)
                session.refresh(registration)

                if claimed == 0:
                    registration.append_scan(
                        ScanAction.DUPLICATE_REJECTED, user["user_id"], "Duplicate scan attempt rejected"
                    )
                    session.commit()
                    logger.info(f"Duplicate scan rejected for ticket {reference.ticket_id} at event {event_id}")
                    return ScanOutcome(
                        duplicate=True,
                        registration_id=registration.id,
                        participant=_participant(registration),
                        marked_at=as_utc(registration.attendance_marked_at),
                    )

                registration.append_scan(ScanAction.SCANNED, user["user_id"])
                self.ledger.adjust_attendance(session, event.id, 1)
                session.commit()

        logger.info(f"Attendance marked for ticket {reference.ticket_id} at event {event_id} ({reference.source})")
        await self._publish_attendance(registration, manual=False)

        return ScanOutcome(
            duplicate=False,
            registration_id=registration.id,
            participant=_participant(registration),
            marked_at=as_utc(registration.attendance_marked_at),
        )

    async def manual_override(self, event_id: int, registration_id: int, user: Dict[str, Any],
                              target: AttendanceStatus, reason: str) -> Registration:
        """
        Overwrite a registration's attendance with an explicit reason.
        The ledger moves by the delta relative to the previous attendance state.
        """
        if target not in (AttendanceStatus.PRESENT, AttendanceStatus.ABSENT):
            raise ValidationError("Status must be 'present' or 'absent'")
        if not reason or len(reason.strip()) < MIN_OVERRIDE_REASON_LENGTH:
            raise ValidationError(
                f"Reason is required for manual override (min {MIN_OVERRIDE_REASON_LENGTH} characters)"
            )
        reason = reason.strip()

        await self._get_configs()

        async with self._lock(f"registration:attendance:{registration_id}"):
            with db_manager.get_transaction_session() as session:
                event = load_owned_event(session, event_id, user)
                registration = load_event_registration(session, event_id, registration_id)
                previous = registration.attendance_status

                claimed = session.query(Registration).filter(
                    and_(
                        Registration.id == registration.id,
                        Registration.attendance_status == previous
                    )
                ).update({
                    Registration.attendance_status: target,
                    Registration.attendance_marked_at: utcnow(),
                    Registration.attendance_marked_by: user["user_id"],
                    Registration.manual_override: True,
                    Registration.override_reason: reason,
                    Registration.version: Registration.version + 1,
                }, synchronize_session=False)
                if claimed == 0:
                    raise ConflictError("Attendance changed concurrently, please retry")

                session.refresh(registration)
                if target == AttendanceStatus.PRESENT:
                    # Override admits the participant whatever the gates say
                    registration.status = RegistrationStatus.ATTENDED
                else:
                    registration.sync_status()
                action = ScanAction.MANUAL_PRESENT if target == AttendanceStatus.PRESENT else ScanAction.MANUAL_ABSENT
                registration.append_scan(action, user["user_id"], reason)

                if previous != AttendanceStatus.PRESENT and target == AttendanceStatus.PRESENT:
                    delta = 1
                elif previous == AttendanceStatus.PRESENT and target != AttendanceStatus.PRESENT:
                    delta = -1
                else:
                    delta = 0
                self.ledger.adjust_attendance(session, event.id, delta)

                session.commit()

        logger.info(
            f"Attendance for registration {registration_id} manually set to {target.value} "
            f"(was {previous.value}) by {user['user_id']}"
        )
        await self._publish_attendance(registration, manual=True)
        return registration

    def bulk_absence(self, session, event_id: int) -> int:
        """
        Mark every unscanned registration of an event absent.
        Runs inside the caller's status-change transaction; writes no scan history.

        Returns:
            Number of registrations marked absent
        """
        marked = session.query(Registration).filter(
            and_(
                Registration.event_id == event_id,
                Registration.attendance_status == AttendanceStatus.NOT_CHECKED
            )
        ).update({
            Registration.attendance_status: AttendanceStatus.ABSENT,
            Registration.attendance_marked_at: utcnow(),
        }, synchronize_session=False)

        logger.info(f"Marked {marked} registrations absent for event {event_id}")
        return marked

    async def get_dashboard(self, event_id: int, user: Dict[str, Any]) -> Dict[str, Any]:
        """Live attendance figures over registrations not blocked by payment."""
        with db_manager.get_session() as session:
            load_owned_event(session, event_id, user)
            registrations = self._counted_registrations(session, event_id)

            total = len(registrations)
            present = sum(1 for r in registrations if r.attendance_status == AttendanceStatus.PRESENT)
            not_checked = sum(1 for r in registrations if r.attendance_status == AttendanceStatus.NOT_CHECKED)
            absent = sum(1 for r in registrations if r.attendance_status == AttendanceStatus.ABSENT)

            return {
                "stats": {
                    "total_registered": total,
                    "present": present,
                    "not_yet_scanned": not_checked,
                    "absent": absent,
                    "attendance_rate": round(present / total * 100, 1) if total else 0.0,
                },
                "participants": [
                    {
                        "registration_id": r.id,
                        "name": r.participant_name,
                        "email": r.participant_email,
                        "college_name": r.participant_college,
                        "ticket_id": r.ticket_id,
                        "attendance_status": r.attendance_status,
                        "attendance_marked_at": as_utc(r.attendance_marked_at),
                        "manual_override": r.manual_override,
                        "override_reason": r.override_reason,
                    }
                    for r in registrations
                ],
            }

    async def export_csv(self, event_id: int, user: Dict[str, Any]) -> Tuple[str, str]:
        """
        Export attendance as CSV.

        Returns:
            Tuple of (file name, CSV content)
        """
        with db_manager.get_session() as session:
            event = load_owned_event(session, event_id, user)
            registrations = self._counted_registrations(session, event_id)

            buffer = io.StringIO()
            writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
            writer.writerow(CSV_HEADERS)
            for r in registrations:
                writer.writerow([
                    r.participant_name or "",
                    r.participant_email or "N/A",
                    r.participant_college or "N/A",
                    r.ticket_id or "",
                    r.attendance_status.value,
                    isoformat(r.attendance_marked_at) or "N/A",
                    "Yes" if r.manual_override else "No",
                    r.override_reason or "",
                ])

            return f"{event.name}_attendance.csv", buffer.getvalue()

    @staticmethod
    def _counted_registrations(session, event_id: int):
        return session.query(Registration).filter(
            and_(
                Registration.event_id == event_id,
                Registration.payment_approval_status.in_(COUNTED_PAYMENT_STATUSES)
            )
        ).order_by(Registration.id.asc()).all()

    async def verify_qr(self, qr_data: str, user: Dict[str, Any]) -> Dict[str, Any]:
        """
        Decrypt a QR envelope and report the registration it belongs to.
        Does not record attendance.

        Raises:
            InvalidEnvelopeError, DecryptionFailureError, RegistrationNotFoundError, ForbiddenError
        """
        codec = await self._get_ticket_codec()
        record = codec.decode(qr_data)

        with db_manager.get_session() as session:
            registration = session.query(Registration).filter(
                Registration.ticket_id == str(record["ticketId"])
            ).first()

            if (
                not registration
                or str(registration.user_id) != str(record.get("userId"))
                or str(registration.event_id) != str(record.get("eventId"))
            ):
                raise RegistrationNotFoundError()

            event = registration.event
            if event.organizer_id != user["user_id"] and not is_admin(user):
                raise ForbiddenError("Unauthorized to verify this event")

            return {
                "valid": True,
                "registration": {
                    "ticket_id": registration.ticket_id,
                    "user_name": registration.participant_name,
                    "email": registration.participant_email,
                    "college_name": registration.participant_college,
                    "event_id": event.id,
                    "event_name": event.name,
                    "event_date": as_utc(event.event_start_date),
                    "registration_status": registration.status,
                    "attendance_status": registration.attendance_status,
                    "payment_status": registration.payment_status,
                    "registration_date": as_utc(registration.registration_date),
                },
            }


# Global attendance service instance
attendance_service = AttendanceService()
