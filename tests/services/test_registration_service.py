"""
Tests for the registration lifecycle: submission, payment proof, dual approval gates
and the single finalization that issues the ticket and commits inventory.
"""

import os
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from campus_events.core.exceptions import (
    AlreadyRegisteredError, AlreadyProcessedError, EventNotFoundError, ForbiddenError, StateError, ValidationError,
    InvalidVariantError, OutOfStockError, CapacityExceededError, RegistrationNotFoundError,
    PaymentPendingError, PaymentRejectedError, ApprovalPendingError
)
from campus_events.core.time_utils import utcnow
from campus_events.models.event import Event, EventType, EventStatus, Eligibility, MerchandiseVariant
from campus_events.models.registration import (
    Registration, RegistrationStatus, ApprovalStatus, PaymentStatus
)
from campus_events.schemas.registration import RegistrationCreate
from campus_events.services.notification_service import NotificationService


@pytest.fixture
def gated_merchandise_event(make_event):
    """Merchandise event requiring approval, one variant priced at 500."""
    return make_event(
        name="Hoodie Drop",
        description="Limited hoodies",
        event_type=EventType.MERCHANDISE,
        registration_limit=None,
        requires_approval=True,
        purchase_limit=3,
        custom_form=None,
        variants=[
            {"variant_id": "L-GREY", "size": "L", "color": "Grey",
             "stock_quantity": 10, "price": Decimal("500")},
        ],
    )


@pytest.fixture
def form_event(make_event):
    return make_event(custom_form={
        "fields": [
            {"field_id": "roll", "label": "Roll number", "type": "text", "required": True},
            {"field_id": "tshirt", "label": "T-shirt size", "type": "select", "required": False},
        ],
        "locked": False,
    })


def form_answers(**answers):
    return RegistrationCreate(form_data=[{"field_id": k, "value": v} for k, v in answers.items()])


class TestSubmitFreeEvent:
    """Free event without approval is finalized at submission."""

    @pytest.mark.asyncio
    async def test_free_event_finalizes_immediately(self, services, make_event, participant,
                                                    codec, mock_notifications, mock_publisher, reload):
        event = make_event()
        service = services["registration"]

        registration, finalized = await service.submit(event.id, participant, RegistrationCreate(team_name="Bots"))

        assert finalized is True
        assert registration.status == RegistrationStatus.REGISTERED
        assert registration.payment_approval_status == ApprovalStatus.NOT_REQUIRED
        assert registration.registration_approval_status == ApprovalStatus.NOT_REQUIRED
        assert registration.payment_status == PaymentStatus.FREE
        assert registration.ticket_id
        assert registration.team_name == "Bots"
        assert registration.participant_name == "Asha Rao"

        assert reload(Event, event.id).total_registrations == 1

        record = codec.decode(codec.envelope(registration.qr_code_encrypted, registration.qr_code_iv))
        assert record["ticketId"] == registration.ticket_id
        assert record["userId"] == participant["user_id"]
        assert record["eventId"] == event.id
        assert record["eventName"] == "Robotics Workshop"

        mock_notifications.send_registration_confirmation.assert_awaited_once()
        qr_image = mock_notifications.send_registration_confirmation.await_args.args[3]
        assert qr_image.startswith(b"\x89PNG")
        mock_publisher.publish_registration_finalized.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_notification_failure_is_not_fatal(self, services, make_event, participant):
        event = make_event()
        failing = NotificationService()
        failing._initialized = True
        failing._celery_app = MagicMock()
        failing._celery_app.send_task.side_effect = Exception("broker down")
        services["registration"].notification_service = failing

        registration, finalized = await services["registration"].submit(event.id, participant, RegistrationCreate())

        assert finalized is True
        assert registration.ticket_id

    @pytest.mark.asyncio
    async def test_duplicate_registration(self, services, make_event, participant):
        event = make_event()
        await services["registration"].submit(event.id, participant, RegistrationCreate())

        with pytest.raises(AlreadyRegisteredError):
            await services["registration"].submit(event.id, participant, RegistrationCreate())


class TestSubmitValidation:
    """The event must be accepting registrations from this user."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [EventStatus.DRAFT, EventStatus.COMPLETED, EventStatus.CLOSED])
    async def test_event_not_open(self, services, make_event, participant, status):
        event = make_event(status=status)
        with pytest.raises(StateError, match="not open for registration") as exc_info:
            await services["registration"].submit(event.id, participant, RegistrationCreate())
        assert exc_info.value.details["current_status"] == status.value

    @pytest.mark.asyncio
    async def test_ongoing_event_accepts(self, services, make_event, participant):
        event = make_event(status=EventStatus.ONGOING)
        _, finalized = await services["registration"].submit(event.id, participant, RegistrationCreate())
        assert finalized is True

    @pytest.mark.asyncio
    async def test_deadline_passed(self, services, make_event, participant):
        now = utcnow()
        event = make_event(
            registration_deadline=now - timedelta(hours=1),
            event_start_date=now + timedelta(days=1),
            event_end_date=now + timedelta(days=2),
        )
        with pytest.raises(StateError, match="deadline has passed"):
            await services["registration"].submit(event.id, participant, RegistrationCreate())

    @pytest.mark.asyncio
    async def test_iiitians_only(self, services, make_event, external_participant):
        event = make_event(eligibility=Eligibility.IIITIANS)
        with pytest.raises(ForbiddenError):
            await services["registration"].submit(event.id, external_participant, RegistrationCreate())

    @pytest.mark.asyncio
    async def test_external_only(self, services, make_event, participant, external_participant):
        event = make_event(eligibility=Eligibility.EXTERNAL)
        with pytest.raises(ForbiddenError):
            await services["registration"].submit(event.id, participant, RegistrationCreate())

        _, finalized = await services["registration"].submit(event.id, external_participant, RegistrationCreate())
        assert finalized is True

    @pytest.mark.asyncio
    async def test_capacity_full(self, services, make_event, participant, external_participant):
        event = make_event(registration_limit=1)
        await services["registration"].submit(event.id, participant, RegistrationCreate())

        with pytest.raises(CapacityExceededError):
            await services["registration"].submit(event.id, external_participant, RegistrationCreate())

    @pytest.mark.asyncio
    async def test_unknown_event(self, services, participant):
        with pytest.raises(EventNotFoundError):
            await services["registration"].submit(999, participant, RegistrationCreate())


class TestSubmitSelection:
    """Merchandise selections and custom form answers."""

    @pytest.mark.asyncio
    async def test_unknown_variant(self, services, merchandise_event, participant):
        with pytest.raises(InvalidVariantError):
            await services["registration"].submit(
                merchandise_event.id, participant, RegistrationCreate(variant_id="XXL-PINK")
            )

    @pytest.mark.asyncio
    async def test_missing_variant(self, services, merchandise_event, participant):
        with pytest.raises(ValidationError, match="select a variant"):
            await services["registration"].submit(merchandise_event.id, participant, RegistrationCreate())

    @pytest.mark.asyncio
    async def test_purchase_limit(self, services, merchandise_event, participant):
        with pytest.raises(ValidationError, match="Purchase limit"):
            await services["registration"].submit(
                merchandise_event.id, participant, RegistrationCreate(variant_id="M-BLACK", quantity=3)
            )

    @pytest.mark.asyncio
    async def test_out_of_stock_at_submission(self, services, make_event, participant):
        event = make_event(
            event_type=EventType.MERCHANDISE,
            registration_limit=None,
            purchase_limit=5,
            custom_form=None,
            variants=[{"variant_id": "S", "stock_quantity": 1, "price": Decimal("100")}],
        )
        with pytest.raises(OutOfStockError):
            await services["registration"].submit(event.id, participant, RegistrationCreate(variant_id="S", quantity=2))

    @pytest.mark.asyncio
    async def test_paid_merchandise_waits_for_payment(self, services, merchandise_event, participant, reload):
        registration, finalized = await services["registration"].submit(
            merchandise_event.id, participant, RegistrationCreate(variant_id="M-BLACK", quantity=2)
        )

        assert finalized is False
        assert registration.status == RegistrationStatus.PENDING_APPROVAL
        assert registration.payment_approval_status == ApprovalStatus.PENDING
        assert registration.payment_status == PaymentStatus.PENDING
        assert registration.ticket_id is None
        assert registration.quantity == 2

        # Nothing is reserved at submission
        event = reload(Event, merchandise_event.id)
        assert event.variants[0].stock_quantity == 2
        assert event.total_registrations == 0

    @pytest.mark.asyncio
    async def test_free_variant_finalizes(self, services, make_event, participant):
        event = make_event(
            event_type=EventType.MERCHANDISE,
            registration_limit=None,
            custom_form=None,
            variants=[{"variant_id": "STICKER", "stock_quantity": 5, "price": Decimal("0")}],
        )
        registration, finalized = await services["registration"].submit(
            event.id, participant, RegistrationCreate(variant_id="STICKER")
        )
        assert finalized is True
        assert registration.quantity == 1

    @pytest.mark.asyncio
    async def test_form_answers_on_merchandise(self, services, merchandise_event, participant):
        with pytest.raises(ValidationError, match="not form answers"):
            await services["registration"].submit(merchandise_event.id, participant, form_answers(roll="1"))

    @pytest.mark.asyncio
    async def test_variant_on_normal_event(self, services, make_event, participant):
        event = make_event()
        with pytest.raises(ValidationError, match="does not take a merchandise selection"):
            await services["registration"].submit(event.id, participant, RegistrationCreate(variant_id="M"))

    @pytest.mark.asyncio
    async def test_required_form_field(self, services, form_event, participant):
        with pytest.raises(ValidationError, match="Required form fields") as exc_info:
            await services["registration"].submit(form_event.id, participant, form_answers(tshirt="M"))
        assert exc_info.value.details["field_ids"] == ["roll"]

    @pytest.mark.asyncio
    async def test_blank_required_field(self, services, form_event, participant):
        with pytest.raises(ValidationError, match="Required form fields"):
            await services["registration"].submit(form_event.id, participant, form_answers(roll="   "))

    @pytest.mark.asyncio
    async def test_unknown_form_field(self, services, form_event, participant):
        with pytest.raises(ValidationError, match="Unknown form fields"):
            await services["registration"].submit(form_event.id, participant, form_answers(roll="1", age="20"))

    @pytest.mark.asyncio
    async def test_form_locked_after_first_registration(self, services, form_event, participant, reload):
        registration, _ = await services["registration"].submit(form_event.id, participant, form_answers(roll="2021001"))

        assert registration.form_data == [{"field_id": "roll", "value": "2021001"}]
        assert reload(Event, form_event.id).form_locked is True


class TestPaymentProof:
    """Payment proof upload."""

    @pytest.mark.asyncio
    async def test_upload_attaches_path(self, services, merchandise_event, participant, png_bytes,
                                        proof_storage, find_registration):
        await services["registration"].submit(
            merchandise_event.id, participant, RegistrationCreate(variant_id="M-BLACK")
        )

        path = await services["registration"].upload_payment_proof(
            merchandise_event.id, participant, png_bytes, "image/png"
        )

        registration = find_registration(merchandise_event.id, participant["user_id"])
        assert registration.payment_proof_image == path
        assert registration.status == RegistrationStatus.PENDING_APPROVAL
        assert os.path.exists(os.path.join(proof_storage.upload_dir, os.path.basename(path)))

    @pytest.mark.asyncio
    async def test_upload_replaces_previous_proof(self, services, merchandise_event, participant, png_bytes,
                                                  proof_storage):
        await services["registration"].submit(
            merchandise_event.id, participant, RegistrationCreate(variant_id="M-BLACK")
        )
        first = await services["registration"].upload_payment_proof(merchandise_event.id, participant, png_bytes, "image/png")
        second = await services["registration"].upload_payment_proof(merchandise_event.id, participant, png_bytes, "image/png")

        assert first != second
        assert os.listdir(proof_storage.upload_dir) == [os.path.basename(second)]

    @pytest.mark.asyncio
    async def test_upload_without_registration(self, services, merchandise_event, participant, png_bytes):
        with pytest.raises(RegistrationNotFoundError):
            await services["registration"].upload_payment_proof(merchandise_event.id, participant, png_bytes, "image/png")

    @pytest.mark.asyncio
    async def test_upload_for_free_registration(self, services, make_event, participant, png_bytes):
        event = make_event()
        await services["registration"].submit(event.id, participant, RegistrationCreate())

        with pytest.raises(StateError, match="not required or already processed"):
            await services["registration"].upload_payment_proof(event.id, participant, png_bytes, "image/png")

    @pytest.mark.asyncio
    async def test_upload_rejects_non_image(self, services, merchandise_event, participant, proof_storage):
        await services["registration"].submit(
            merchandise_event.id, participant, RegistrationCreate(variant_id="M-BLACK")
        )
        with pytest.raises(ValidationError, match="not a valid image"):
            await services["registration"].upload_payment_proof(
                merchandise_event.id, participant, b"not an image", "image/png"
            )


class TestApprovalGates:
    """Dual approval gates converging on one finalization."""

    async def _submit_with_proof(self, service, event, participant, png_bytes, variant_id, quantity=1):
        registration, _ = await service.submit(
            event.id, participant, RegistrationCreate(variant_id=variant_id, quantity=quantity)
        )
        await service.upload_payment_proof(event.id, participant, png_bytes, "image/png")
        return registration

    @pytest.mark.asyncio
    async def test_payment_then_registration_approval(self, services, gated_merchandise_event, participant,
                                                      organizer, png_bytes, proof_storage, reload,
                                                      db_session, mock_notifications):
        service = services["registration"]
        event = gated_merchandise_event

        registration = await self._submit_with_proof(service, event, participant, png_bytes, "L-GREY", quantity=2)
        assert registration.payment_approval_status == ApprovalStatus.PENDING
        assert registration.registration_approval_status == ApprovalStatus.PENDING
        assert registration.ticket_id is None

        after_payment = await service.approve_payment(event.id, registration.id, organizer)
        assert after_payment.payment_approval_status == ApprovalStatus.APPROVED
        assert after_payment.payment_status == PaymentStatus.COMPLETED
        assert after_payment.status == RegistrationStatus.PENDING_APPROVAL
        assert after_payment.ticket_id is None
        assert after_payment.payment_approved_by == organizer["user_id"]
        assert reload(Event, event.id).variants[0].stock_quantity == 10
        mock_notifications.send_registration_confirmation.assert_not_awaited()

        # Price changes before the last gate clears; commit uses the new price
        variant = reload(MerchandiseVariant, event.variants[0].id)
        variant.price = Decimal("550")
        db_session.commit()

        final = await service.approve_registration(event.id, registration.id, organizer)
        assert final.status == RegistrationStatus.REGISTERED
        assert final.ticket_id
        assert final.qr_code_encrypted and final.qr_code_iv
        assert final.payment_proof_image is None
        assert os.listdir(proof_storage.upload_dir) == []

        refreshed = reload(Event, event.id)
        assert refreshed.variants[0].stock_quantity == 8
        assert refreshed.total_registrations == 1
        assert Decimal(refreshed.total_revenue) == Decimal("1100")
        mock_notifications.send_registration_confirmation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_registration_then_payment_approval(self, services, gated_merchandise_event, participant,
                                                      organizer, png_bytes, reload):
        service = services["registration"]
        event = gated_merchandise_event
        registration = await self._submit_with_proof(service, event, participant, png_bytes, "L-GREY")

        after_registration = await service.approve_registration(event.id, registration.id, organizer)
        assert after_registration.registration_approval_status == ApprovalStatus.APPROVED
        assert after_registration.ticket_id is None
        assert after_registration.status == RegistrationStatus.PENDING_APPROVAL

        final = await service.approve_payment(event.id, registration.id, organizer)
        assert final.ticket_id
        assert final.status == RegistrationStatus.REGISTERED
        assert reload(Event, event.id).variants[0].stock_quantity == 9

    @pytest.mark.asyncio
    async def test_approval_only_event(self, services, make_event, participant, organizer, reload):
        event = make_event(requires_approval=True)
        registration, finalized = await services["registration"].submit(event.id, participant, RegistrationCreate())

        assert finalized is False
        assert registration.payment_approval_status == ApprovalStatus.NOT_REQUIRED
        assert registration.registration_approval_status == ApprovalStatus.PENDING
        assert reload(Event, event.id).total_registrations == 0

        final = await services["registration"].approve_registration(event.id, registration.id, organizer)
        assert final.ticket_id
        assert reload(Event, event.id).total_registrations == 1

    @pytest.mark.asyncio
    async def test_reject_payment_keeps_stock(self, services, merchandise_event, participant, organizer,
                                              png_bytes, proof_storage, reload, mock_notifications,
                                              mock_publisher):
        service = services["registration"]
        registration = await self._submit_with_proof(service, merchandise_event, participant, png_bytes, "M-BLACK", 2)

        rejected = await service.reject_payment(merchandise_event.id, registration.id, organizer)

        assert rejected.status == RegistrationStatus.REJECTED
        assert rejected.payment_approval_status == ApprovalStatus.REJECTED
        assert rejected.payment_rejection_reason == "Payment rejected by organizer"
        assert rejected.ticket_id is None
        assert rejected.payment_proof_image is None
        assert os.listdir(proof_storage.upload_dir) == []

        event = reload(Event, merchandise_event.id)
        assert event.variants[0].stock_quantity == 2
        assert event.total_registrations == 0
        assert Decimal(event.total_revenue) == Decimal("0")

        mock_notifications.send_registration_rejection.assert_awaited_once()
        assert mock_notifications.send_registration_rejection.await_args.args[3] == "payment"
        mock_publisher.publish_gate_decision.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reject_registration_with_reason(self, services, make_event, participant, organizer):
        event = make_event(requires_approval=True)
        registration, _ = await services["registration"].submit(event.id, participant, RegistrationCreate())

        rejected = await services["registration"].reject_registration(
            event.id, registration.id, organizer, "Team already full"
        )
        assert rejected.status == RegistrationStatus.REJECTED
        assert rejected.registration_rejection_reason == "Team already full"

    @pytest.mark.asyncio
    async def test_payment_not_approved_after_registration_rejected(self, services, gated_merchandise_event,
                                                                    participant, organizer, png_bytes,
                                                                    proof_storage, reload):
        service = services["registration"]
        event = gated_merchandise_event
        registration = await self._submit_with_proof(service, event, participant, png_bytes, "L-GREY")

        rejected = await service.reject_registration(event.id, registration.id, organizer, "Not a member")
        assert rejected.status == RegistrationStatus.REJECTED
        assert rejected.payment_proof_image is None
        assert os.listdir(proof_storage.upload_dir) == []

        with pytest.raises(StateError, match="already been rejected"):
            await service.approve_payment(event.id, registration.id, organizer)

        stored = reload(Registration, registration.id)
        assert stored.payment_approval_status == ApprovalStatus.PENDING
        assert stored.payment_status != PaymentStatus.COMPLETED
        assert reload(Event, event.id).variants[0].stock_quantity == 10

    @pytest.mark.asyncio
    async def test_approve_payment_requires_proof(self, services, merchandise_event, participant, organizer):
        registration, _ = await services["registration"].submit(
            merchandise_event.id, participant, RegistrationCreate(variant_id="M-BLACK")
        )
        with pytest.raises(ValidationError, match="No payment proof"):
            await services["registration"].approve_payment(merchandise_event.id, registration.id, organizer)

    @pytest.mark.asyncio
    async def test_gate_decided_once(self, services, merchandise_event, participant, organizer, png_bytes):
        service = services["registration"]
        registration = await self._submit_with_proof(service, merchandise_event, participant, png_bytes, "M-BLACK")
        await service.approve_payment(merchandise_event.id, registration.id, organizer)

        with pytest.raises(AlreadyProcessedError):
            await service.approve_payment(merchandise_event.id, registration.id, organizer)
        with pytest.raises(AlreadyProcessedError):
            await service.reject_payment(merchandise_event.id, registration.id, organizer)

    @pytest.mark.asyncio
    async def test_gate_not_required(self, services, make_event, participant, organizer):
        event = make_event()
        registration, _ = await services["registration"].submit(event.id, participant, RegistrationCreate())

        with pytest.raises(AlreadyProcessedError):
            await services["registration"].approve_registration(event.id, registration.id, organizer)

    @pytest.mark.asyncio
    async def test_other_organizer_forbidden(self, services, make_event, participant, other_organizer, admin):
        event = make_event(requires_approval=True)
        registration, _ = await services["registration"].submit(event.id, participant, RegistrationCreate())

        with pytest.raises(ForbiddenError):
            await services["registration"].approve_registration(event.id, registration.id, other_organizer)

        approved = await services["registration"].approve_registration(event.id, registration.id, admin)
        assert approved.ticket_id

    @pytest.mark.asyncio
    async def test_registration_of_other_event(self, services, make_event, participant, organizer):
        event = make_event(requires_approval=True)
        other_event = make_event(name="Other", requires_approval=True)
        registration, _ = await services["registration"].submit(event.id, participant, RegistrationCreate())

        with pytest.raises(RegistrationNotFoundError):
            await services["registration"].approve_registration(other_event.id, registration.id, organizer)

    @pytest.mark.asyncio
    async def test_last_unit_race(self, services, make_event, participant, external_participant,
                                  organizer, png_bytes, find_registration, reload):
        """Two submissions pass the advisory check; only one can commit the last unit."""
        service = services["registration"]
        event = make_event(
            event_type=EventType.MERCHANDISE,
            registration_limit=None,
            custom_form=None,
            variants=[{"variant_id": "LAST", "stock_quantity": 1, "price": Decimal("200")}],
        )
        first = await self._submit_with_proof(service, event, participant, png_bytes, "LAST")
        second = await self._submit_with_proof(service, event, external_participant, png_bytes, "LAST")

        await service.approve_payment(event.id, first.id, organizer)
        with pytest.raises(OutOfStockError):
            await service.approve_payment(event.id, second.id, organizer)

        # The failed approval rolled back entirely
        loser = find_registration(event.id, external_participant["user_id"])
        assert loser.payment_approval_status == ApprovalStatus.PENDING
        assert loser.ticket_id is None
        assert reload(Event, event.id).variants[0].stock_quantity == 0

    @pytest.mark.asyncio
    async def test_tickets_only_with_clear_gates(self, services, gated_merchandise_event, participant,
                                                 external_participant, organizer, png_bytes, db_session):
        service = services["registration"]
        event = gated_merchandise_event
        first = await self._submit_with_proof(service, event, participant, png_bytes, "L-GREY")
        second = await self._submit_with_proof(service, event, external_participant, png_bytes, "L-GREY")
        await service.approve_payment(event.id, first.id, organizer)
        await service.approve_registration(event.id, first.id, organizer)
        await service.approve_registration(event.id, second.id, organizer)
        await service.reject_payment(event.id, second.id, organizer, "Blurry screenshot")

        db_session.expire_all()
        for registration in db_session.query(Registration).all():
            if registration.ticket_id is not None:
                assert registration.gates_clear


class TestQueuesAndReads:
    """Organizer queues and ticket retrieval."""

    @pytest.mark.asyncio
    async def test_pending_payment_queue(self, services, merchandise_event, participant, external_participant,
                                         organizer, png_bytes):
        service = services["registration"]
        first, _ = await service.submit(merchandise_event.id, participant, RegistrationCreate(variant_id="M-BLACK"))
        await service.upload_payment_proof(merchandise_event.id, participant, png_bytes, "image/png")
        await service.submit(merchandise_event.id, external_participant, RegistrationCreate(variant_id="M-BLACK"))
        await service.reject_payment(merchandise_event.id, first.id, organizer, "Wrong amount")

        queue = await service.get_pending_queue("payment", merchandise_event.id, organizer)

        assert [item["user_id"] for item in queue["pending"]] == [external_participant["user_id"]]
        assert len(queue["recently_processed"]) == 1
        processed = queue["recently_processed"][0]
        assert processed["status"] == ApprovalStatus.REJECTED
        assert processed["rejection_reason"] == "Wrong amount"

    @pytest.mark.asyncio
    async def test_queue_forbidden_for_other_organizer(self, services, make_event, other_organizer):
        event = make_event(requires_approval=True)
        with pytest.raises(ForbiddenError):
            await services["registration"].get_pending_queue("registration", event.id, other_organizer)

    @pytest.mark.asyncio
    async def test_ticket_qr_for_owner_and_organizer(self, services, make_event, participant, organizer):
        event = make_event()
        registration, _ = await services["registration"].submit(event.id, participant, RegistrationCreate())

        image, info = await services["registration"].get_ticket_qr(event.id, registration.id, participant)
        assert image.startswith(b"\x89PNG")
        assert info["ticket_id"] == registration.ticket_id

        image, _ = await services["registration"].get_ticket_qr(event.id, registration.id, organizer)
        assert image.startswith(b"\x89PNG")

    @pytest.mark.asyncio
    async def test_ticket_qr_forbidden_for_others(self, services, make_event, participant, external_participant):
        event = make_event()
        registration, _ = await services["registration"].submit(event.id, participant, RegistrationCreate())

        with pytest.raises(ForbiddenError):
            await services["registration"].get_ticket_qr(event.id, registration.id, external_participant)

    @pytest.mark.asyncio
    async def test_ticket_qr_blocked_by_gates(self, services, merchandise_event, make_event, participant,
                                              organizer, png_bytes):
        service = services["registration"]
        registration, _ = await service.submit(merchandise_event.id, participant, RegistrationCreate(variant_id="M-BLACK"))
        with pytest.raises(PaymentPendingError):
            await service.get_ticket_qr(merchandise_event.id, registration.id, participant)

        await service.reject_payment(merchandise_event.id, registration.id, organizer)
        with pytest.raises(PaymentRejectedError):
            await service.get_ticket_qr(merchandise_event.id, registration.id, participant)

        gated = make_event(name="Gated", requires_approval=True)
        pending, _ = await service.submit(gated.id, participant, RegistrationCreate())
        with pytest.raises(ApprovalPendingError):
            await service.get_ticket_qr(gated.id, pending.id, participant)

    @pytest.mark.asyncio
    async def test_my_registrations_and_participants(self, services, make_event, participant,
                                                     external_participant, organizer):
        service = services["registration"]
        first = make_event(name="First")
        second = make_event(name="Second")
        await service.submit(first.id, participant, RegistrationCreate())
        await service.submit(second.id, participant, RegistrationCreate())
        await service.submit(first.id, external_participant, RegistrationCreate())

        mine = await service.get_my_registrations(participant["user_id"])
        assert {r.event.name for r in mine} == {"First", "Second"}

        participants = await service.get_participants(first.id, organizer)
        assert [r.user_id for r in participants] == [participant["user_id"], external_participant["user_id"]]
