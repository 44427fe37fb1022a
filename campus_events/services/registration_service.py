"""
Registration lifecycle for Campus Events Service.
Handles submission, payment proof upload, payment and registration approval,
and the single finalization that issues the ticket and commits inventory.

Finalization runs exactly once per registration, triggered by whichever of
(submission, payment approval, registration approval) clears the last gate.
It is guarded by a compare-and-swap on "ticket_id IS NULL" inside the same
transaction as the inventory commit.
"""

import uuid
import contextlib
import logging
from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from campus_events.core.config import config
from campus_events.core.exceptions import (
    AlreadyRegisteredError, AlreadyProcessedError, ForbiddenError, RegistrationNotFoundError,
    StateError, ValidationError, PaymentPendingError, PaymentRejectedError,
    ApprovalPendingError, ApprovalRejectedError, TicketNotIssuedError
)
from campus_events.core.time_utils import utcnow, as_utc
from campus_events.db.database import db_manager
from campus_events.db.redis_client import redis_manager, get_distributed_lock
from campus_events.models.event import Event, Eligibility, OPEN_FOR_REGISTRATION
from campus_events.models.registration import (
    Registration, ApprovalStatus, PaymentStatus, AttendanceStatus, RegistrationStatus
)
from campus_events.schemas.registration import RegistrationCreate
from .event_publisher import CampusEventPublisher
from .inventory_ledger import inventory_ledger
from .lookups import is_admin, load_event, load_owned_event, load_event_registration
from .notification_service import notification_service
from .proof_storage import proof_storage
from .ticket_codec import TicketCodec, IssuedTicket, build_ticket_codec

logger = logging.getLogger(__name__)

PAYMENT = "payment"
REGISTRATION = "registration"

RECENTLY_PROCESSED_LIMIT = 20

# Columns of each approval gate
GATES = {
    PAYMENT: {
        "label": "Payment",
        "status": Registration.payment_approval_status,
        "at": Registration.payment_approved_at,
        "by": Registration.payment_approved_by,
        "reason": Registration.payment_rejection_reason,
        "default_reason": "Payment rejected by organizer",
    },
    REGISTRATION: {
        "label": "Registration",
        "status": Registration.registration_approval_status,
        "at": Registration.registration_approved_at,
        "by": Registration.registration_approved_by,
        "reason": Registration.registration_rejection_reason,
        "default_reason": "Registration rejected by organizer",
    },
}


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


class RegistrationService:
    """
    Registration state machine with dual approval gates.
    """

    def __init__(self):
        self.consistency_config = None
        self.ticket_codec: Optional[TicketCodec] = None
        self.event_publisher = None
        self.ledger = inventory_ledger
        self.notification_service = notification_service
        self.proof_storage = proof_storage

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

    async def _publish(self, method: str, *args, **kwargs):
        try:
            publisher = await self._get_event_publisher()
            await getattr(publisher, method)(*args, **kwargs)
        except Exception as e:
            logger.error(f"Failed to publish {method}: {e}")

    def _lock(self, lock_key: str):
        """Registration-level lock, only when distributed locking is enabled."""
        if self.consistency_config.get("enable_distributed_locks"):
            return get_distributed_lock(lock_key, timeout=self.consistency_config["lock_timeout_seconds"])
        return contextlib.nullcontext()

    # Submission
    def _check_accepting(self, event: Event, user: Dict[str, Any]):
        """Raise unless the event accepts a registration from this user right now."""
        if event.status not in OPEN_FOR_REGISTRATION:
            raise StateError(
                "Event is not open for registration",
                {"current_status": event.status.value}
            )

        if utcnow() > as_utc(event.registration_deadline):
            raise StateError("Registration deadline has passed")

        is_iiitian = bool(user.get("is_iiitian"))
        if event.eligibility == Eligibility.IIITIANS and not is_iiitian:
            raise ForbiddenError("This event is only open to IIIT students")
        if event.eligibility == Eligibility.EXTERNAL and is_iiitian:
            raise ForbiddenError("This event is only open to external participants")

        self.ledger.capacity_check(event)

    def _check_merchandise_selection(self, event: Event, data: RegistrationCreate) -> bool:
        """Validate a merchandise selection. Returns whether payment is required."""
        if data.form_data:
            raise ValidationError("Merchandise events take a variant selection, not form answers")
        if not data.variant_id:
            raise ValidationError("Please select a variant")

        quantity = data.quantity or 1
        if quantity > event.purchase_limit:
            raise ValidationError(
                f"Purchase limit is {event.purchase_limit} per person",
                {"purchase_limit": event.purchase_limit, "requested": quantity}
            )

        variant = self.ledger.reserve_check(event, data.variant_id, quantity)
        return Decimal(variant.price or 0) > 0

    def _check_form_answers(self, event: Event, data: RegistrationCreate) -> bool:
        """Validate custom form answers. Returns whether payment is required."""
        if data.variant_id:
            raise ValidationError("This event does not take a merchandise selection")

        fields = {f["field_id"]: f for f in event.form_fields}
        answers = {a.field_id: a.value for a in (data.form_data or [])}

        unknown = sorted(set(answers) - set(fields))
        if unknown:
            raise ValidationError("Unknown form fields", {"field_ids": unknown})

        missing = [
            field_id for field_id, field in fields.items()
            if field.get("required") and _is_blank(answers.get(field_id))
        ]
        if missing:
            raise ValidationError("Required form fields are missing", {"field_ids": missing})

        # The form is frozen once anyone has answered it
        if fields and not event.form_locked:
            event.custom_form = {**event.custom_form, "locked": True}

        return Decimal(event.registration_fee or 0) > 0

    async def submit(self, event_id: int, user: Dict[str, Any], data: RegistrationCreate) -> Tuple[Registration, bool]:
        """
        Submit a registration.

        Args:
            event_id: Event to register for
            user: Authenticated principal
            data: Selection (merchandise variant or form answers) and team name

        Returns:
            Tuple of (Registration, whether it was finalized immediately)

        Raises:
            EventNotFoundError, StateError, ForbiddenError, AlreadyRegisteredError,
            ValidationError (including InvalidVariantError, OutOfStockError, CapacityExceededError)
        """
        await self._get_configs()
        codec = await self._get_ticket_codec()

        with db_manager.get_transaction_session() as session:
            event = load_event(session, event_id)
            self._check_accepting(event, user)

            existing = session.query(Registration).filter(
                and_(
                    Registration.user_id == user["user_id"],
                    Registration.event_id == event_id
                )
            ).first()
            if existing:
                raise AlreadyRegisteredError()

            if event.is_merchandise:
                payment_required = self._check_merchandise_selection(event, data)
            else:
                payment_required = self._check_form_answers(event, data)

            registration = Registration(
                user_id=user["user_id"],
                event_id=event.id,
                payment_approval_status=ApprovalStatus.PENDING if payment_required else ApprovalStatus.NOT_REQUIRED,
                payment_status=PaymentStatus.PENDING if payment_required else PaymentStatus.FREE,
                registration_approval_status=(
                    ApprovalStatus.PENDING if event.requires_approval else ApprovalStatus.NOT_REQUIRED
                ),
                attendance_status=AttendanceStatus.NOT_CHECKED,
                manual_override=False,
                variant_id=data.variant_id if event.is_merchandise else None,
                quantity=(data.quantity or 1) if event.is_merchandise else None,
                form_data=(
                    [answer.model_dump() for answer in data.form_data]
                    if data.form_data and not event.is_merchandise else None
                ),
                team_name=data.team_name,
                participant_name=user.get("name"),
                participant_email=user.get("email"),
                participant_college=user.get("college_name"),
                registration_date=utcnow(),
            )
            registration.sync_status()
            session.add(registration)

            try:
                session.flush()
            except IntegrityError:
                raise AlreadyRegisteredError()

            issued = self._finalize(session, event, registration, codec)

            session.commit()
            registration_data = registration.to_dict()
            event_data = event.to_dict()

        logger.info(
            f"Registration {registration.id} submitted for event {event_id} by user {user['user_id']} "
            f"(status={registration.status.value})"
        )

        if issued:
            await self._after_finalize(registration, registration_data, event_data, issued)

        return registration, issued is not None

    # Finalization
    def _finalize(self, session: Session, event: Event, registration: Registration,
                  codec: TicketCodec) -> Optional[IssuedTicket]:
        """
        Issue the ticket and commit inventory once both gates are clear.
        Runs inside the caller's transaction; any failure rolls the whole operation back.

        Returns:
            The issued ticket, or None when gates are not clear or another call already finalized
        """
        if not registration.gates_clear or registration.ticket_id:
            return None

        ticket_id = str(uuid.uuid4())
        claimed = session.query(Registration).filter(
            and_(
                Registration.id == registration.id,
                Registration.ticket_id.is_(None)
            )
        ).update({
            Registration.ticket_id: ticket_id,
            Registration.version: Registration.version + 1,
        }, synchronize_session=False)

        if claimed == 0:
            logger.info(f"Registration {registration.id} already finalized")
            session.refresh(registration)
            return None

        issued = codec.issue(
            ticket_id,
            registration.user_id,
            event.id,
            event.name,
            registration.participant_name,
            registration.registration_date,
        )
        registration.ticket_id = ticket_id
        registration.qr_code_encrypted = issued.encrypted_payload
        registration.qr_code_iv = issued.iv
        registration.sync_status()

        self.ledger.commit(session, event, registration.variant_id, registration.quantity or 1)
        session.flush()

        logger.info(f"Registration {registration.id} finalized with ticket {ticket_id}")
        return issued

    async def _after_finalize(self, registration: Registration, registration_data: dict,
                              event_data: dict, issued: IssuedTicket):
        """Side effects of a finalization, run after commit. Never raise."""
        await self.notification_service.send_registration_confirmation(
            registration.user_id, registration_data, event_data, issued.qr_image
        )
        await self._publish("publish_registration_finalized", registration)

    # Payment proof
    async def upload_payment_proof(self, event_id: int, user: Dict[str, Any],
                                   image_bytes: bytes, content_type: Optional[str]) -> str:
        """
        Attach a payment proof image to the caller's pending registration.
        Does not change any status.

        Returns:
            Stored image path
        """
        await self._get_configs()

        with db_manager.get_session() as session:
            registration = session.query(Registration).filter(
                and_(
                    Registration.user_id == user["user_id"],
                    Registration.event_id == event_id
                )
            ).first()
            if not registration:
                raise RegistrationNotFoundError()
            if registration.payment_approval_status != ApprovalStatus.PENDING:
                raise StateError(
                    "Payment proof not required or already processed",
                    {"payment_approval_status": registration.payment_approval_status.value}
                )
            registration_id = registration.id
            previous_path = registration.payment_proof_image

        image_path = await self.proof_storage.save(event_id, user["user_id"], image_bytes, content_type)

        try:
            with db_manager.get_transaction_session() as session:
                attached = session.query(Registration).filter(
                    and_(
                        Registration.id == registration_id,
                        Registration.payment_approval_status == ApprovalStatus.PENDING
                    )
                ).update({
                    Registration.payment_proof_image: image_path,
                    Registration.version: Registration.version + 1,
                }, synchronize_session=False)
                if attached == 0:
                    raise StateError("Payment was processed before the proof was attached")
                session.commit()
        except Exception:
            await self.proof_storage.discard(image_path)
            raise

        if previous_path and previous_path != image_path:
            await self.proof_storage.discard(previous_path)

        logger.info(f"Payment proof attached to registration {registration_id}")
        return image_path

    # Approval gates
    async def _decide_gate(self, gate: str, event_id: int, registration_id: int,
                           user: Dict[str, Any], approve: bool, reason: Optional[str] = None) -> Registration:
        """
        Approve or reject one gate with an atomic check-and-set from pending.
        Approval finalizes when the other gate is already clear.
        """
        await self._get_configs()
        codec = await self._get_ticket_codec()
        gate_columns = GATES[gate]
        status_column = gate_columns["status"]
        issued = None
        discarded_proof = None

        async with self._lock(f"registration:gate:{registration_id}"):
            with db_manager.get_transaction_session() as session:
                event = load_owned_event(session, event_id, user)
                registration = load_event_registration(session, event_id, registration_id)

                current = getattr(registration, status_column.key)
                if current != ApprovalStatus.PENDING:
                    raise AlreadyProcessedError(
                        f"{gate_columns['label']} already processed",
                        {"current_status": current.value}
                    )
                if approve and registration.status == RegistrationStatus.REJECTED:
                    raise StateError(
                        "Registration has already been rejected",
                        {"current_status": registration.status.value}
                    )
                if gate == PAYMENT and approve and not registration.payment_proof_image:
                    raise ValidationError("No payment proof uploaded yet")

                values = {
                    status_column: ApprovalStatus.APPROVED if approve else ApprovalStatus.REJECTED,
                    gate_columns["at"]: utcnow(),
                    gate_columns["by"]: user["user_id"],
                    Registration.version: Registration.version + 1,
                }
                if approve and gate == PAYMENT:
                    values[Registration.payment_status] = PaymentStatus.COMPLETED
                if not approve:
                    values[gate_columns["reason"]] = reason or gate_columns["default_reason"]

                claimed = session.query(Registration).filter(
                    and_(
                        Registration.id == registration.id,
                        status_column == ApprovalStatus.PENDING
                    )
                ).update(values, synchronize_session=False)
                if claimed == 0:
                    raise AlreadyProcessedError(f"{gate_columns['label']} already processed")

                session.refresh(registration)
                registration.sync_status()

                if approve:
                    issued = self._finalize(session, event, registration, codec)

                if registration.payment_proof_image and (issued or registration.status == RegistrationStatus.REJECTED):
                    discarded_proof = registration.payment_proof_image
                    registration.payment_proof_image = None

                session.commit()
                registration_data = registration.to_dict()
                event_data = event.to_dict()

        decision = "approved" if approve else "rejected"
        logger.info(
            f"{gate_columns['label']} {decision} for registration {registration_id} "
            f"by {user['user_id']} (status={registration.status.value})"
        )

        if discarded_proof:
            await self.proof_storage.discard(discarded_proof)

        rejection_reason = None if approve else getattr(registration, gate_columns["reason"].key)
        await self._publish("publish_gate_decision", registration, gate, approve, rejection_reason)

        if issued:
            await self._after_finalize(registration, registration_data, event_data, issued)
        elif not approve:
            await self.notification_service.send_registration_rejection(
                registration.user_id, registration_data, event_data, gate, rejection_reason
            )

        return registration

    async def approve_payment(self, event_id: int, registration_id: int, user: Dict[str, Any]) -> Registration:
        """Approve a pending payment with an attached proof."""
        return await self._decide_gate(PAYMENT, event_id, registration_id, user, approve=True)

    async def reject_payment(self, event_id: int, registration_id: int, user: Dict[str, Any],
                             reason: Optional[str] = None) -> Registration:
        """Reject a pending payment. Inventory is never committed for it."""
        return await self._decide_gate(PAYMENT, event_id, registration_id, user, approve=False, reason=reason)

    async def approve_registration(self, event_id: int, registration_id: int, user: Dict[str, Any]) -> Registration:
        """Approve a pending registration."""
        return await self._decide_gate(REGISTRATION, event_id, registration_id, user, approve=True)

    async def reject_registration(self, event_id: int, registration_id: int, user: Dict[str, Any],
                                  reason: Optional[str] = None) -> Registration:
        """Reject a pending registration."""
        return await self._decide_gate(REGISTRATION, event_id, registration_id, user, approve=False, reason=reason)

    # Queues and reads
    async def get_pending_queue(self, gate: str, event_id: int, user: Dict[str, Any]) -> Dict[str, List[dict]]:
        """
        Organizer queue for one gate: pending items plus the most recently processed.
        """
        gate_columns = GATES[gate]
        status_column = gate_columns["status"]

        with db_manager.get_session() as session:
            load_owned_event(session, event_id, user)

            pending = session.query(Registration).filter(
                and_(
                    Registration.event_id == event_id,
                    status_column == ApprovalStatus.PENDING
                )
            ).order_by(Registration.created_at.desc(), Registration.id.desc()).all()

            processed = session.query(Registration).filter(
                and_(
                    Registration.event_id == event_id,
                    status_column.in_([ApprovalStatus.APPROVED, ApprovalStatus.REJECTED])
                )
            ).order_by(gate_columns["at"].desc(), Registration.id.desc()).limit(RECENTLY_PROCESSED_LIMIT).all()

            return {
                "pending": [
                    {
                        "registration_id": r.id,
                        "user_id": r.user_id,
                        "participant_name": r.participant_name,
                        "participant_email": r.participant_email,
                        "participant_college": r.participant_college,
                        "variant_id": r.variant_id,
                        "quantity": r.quantity,
                        "form_data": r.form_data,
                        "team_name": r.team_name,
                        "payment_proof_image": r.payment_proof_image,
                        "created_at": as_utc(r.created_at),
                    }
                    for r in pending
                ],
                "recently_processed": [
                    {
                        "registration_id": r.id,
                        "user_id": r.user_id,
                        "participant_name": r.participant_name,
                        "participant_email": r.participant_email,
                        "ticket_id": r.ticket_id,
                        "status": getattr(r, status_column.key),
                        "processed_at": as_utc(getattr(r, gate_columns["at"].key)),
                        "rejection_reason": getattr(r, gate_columns["reason"].key),
                    }
                    for r in processed
                ],
            }

    async def get_ticket_qr(self, event_id: int, registration_id: int, user: Dict[str, Any]) -> Tuple[bytes, dict]:
        """
        Re-display a ticket QR to its owner or the event organizer.

        Returns:
            Tuple of (PNG bytes, ticket info)
        """
        codec = await self._get_ticket_codec()

        with db_manager.get_session() as session:
            event = load_event(session, event_id)
            registration = load_event_registration(session, event_id, registration_id)

            is_owner = registration.user_id == user["user_id"]
            is_organizer = event.organizer_id == user["user_id"]
            if not (is_owner or is_organizer or is_admin(user)):
                raise ForbiddenError()

            if registration.payment_approval_status == ApprovalStatus.PENDING:
                raise PaymentPendingError("QR not available - payment pending approval")
            if registration.payment_approval_status == ApprovalStatus.REJECTED:
                raise PaymentRejectedError("QR not available - payment was rejected")
            if registration.registration_approval_status == ApprovalStatus.PENDING:
                raise ApprovalPendingError("QR not available - registration pending approval")
            if registration.registration_approval_status == ApprovalStatus.REJECTED:
                raise ApprovalRejectedError("QR not available - registration was rejected")
            if not registration.ticket_id:
                raise TicketNotIssuedError()

            image = codec.verify(registration.ticket_id, registration.qr_code_encrypted, registration.qr_code_iv)
            info = {
                "ticket_id": registration.ticket_id,
                "event_name": event.name,
                "participant_name": registration.participant_name,
                "event_date": as_utc(event.event_start_date),
            }
            return image, info

    async def get_my_registrations(self, user_id: int) -> List[Registration]:
        """All registrations of a user, newest first, with their events."""
        with db_manager.get_session() as session:
            return session.query(Registration).options(
                joinedload(Registration.event),
                selectinload(Registration.scan_history)
            ).filter(
                Registration.user_id == user_id
            ).order_by(Registration.registration_date.desc(), Registration.id.desc()).all()

    async def get_participants(self, event_id: int, user: Dict[str, Any]) -> List[Registration]:
        """All registrations of an event, for its organizer."""
        with db_manager.get_session() as session:
            load_owned_event(session, event_id, user)
            return session.query(Registration).options(
                selectinload(Registration.scan_history)
            ).filter(
                Registration.event_id == event_id
            ).order_by(Registration.registration_date.asc(), Registration.id.asc()).all()


# Global registration service instance
registration_service = RegistrationService()
