"""
Registration API endpoints for Campus Events Service.
Handles registration submission, payment proof upload and ticket retrieval.
"""

from fastapi import APIRouter, Depends, status, Path, File, UploadFile
from fastapi.responses import Response
import logging

from campus_events.api.dependencies import get_current_principal, require_user_role
from campus_events.models.registration import ApprovalStatus
from campus_events.services.registration_service import registration_service
from campus_events.schemas.registration import (
    RegistrationCreate,
    RegistrationSubmitResponse,
    PaymentProofResponse
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["registrations"])


def _submit_message(finalized: bool, requires_payment_proof: bool, requires_approval: bool) -> str:
    if finalized:
        return "Registration successful"
    if requires_payment_proof:
        return "Registration submitted. Please upload payment proof"
    if requires_approval:
        return "Registration submitted and pending organizer approval"
    return "Registration submitted"


@router.post("/{event_id}/register", response_model=RegistrationSubmitResponse, status_code=status.HTTP_201_CREATED)
async def register_for_event(
    registration_data: RegistrationCreate,
    event_id: int = Path(..., gt=0, description="Event ID"),
    user_info: dict = Depends(require_user_role)
):
    """
    Register the current user for an event.

    Free events without organizer approval get their ticket immediately.
    Otherwise the registration waits for payment proof and/or approval.

    Args:
        registration_data: Merchandise selection or form answers, and team name
        event_id: Event ID
        user_info: Authenticated participant

    Returns:
        Registration id, ticket id when issued, and what is still required
    """
    registration, finalized = await registration_service.submit(event_id, user_info, registration_data)

    requires_payment_proof = registration.payment_approval_status == ApprovalStatus.PENDING
    requires_approval = registration.registration_approval_status == ApprovalStatus.PENDING

    return RegistrationSubmitResponse(
        message=_submit_message(finalized, requires_payment_proof, requires_approval),
        registration_id=registration.id,
        status=registration.status,
        ticket_id=registration.ticket_id,
        requires_payment_proof=requires_payment_proof,
        requires_approval=requires_approval
    )


@router.post("/{event_id}/upload-payment-proof", response_model=PaymentProofResponse)
async def upload_payment_proof(
    event_id: int = Path(..., gt=0, description="Event ID"),
    payment_proof: UploadFile = File(..., alias="paymentProof"),
    user_info: dict = Depends(require_user_role)
):
    """
    Attach a payment proof image (JPEG or PNG) to the current user's registration.
    """
    image_bytes = await payment_proof.read()
    image_path = await registration_service.upload_payment_proof(
        event_id, user_info, image_bytes, payment_proof.content_type
    )
    return PaymentProofResponse(
        message="Payment proof uploaded successfully. Waiting for organizer approval.",
        image_path=image_path
    )


@router.get("/{event_id}/ticket/{registration_id}/qr")
async def get_ticket_qr(
    event_id: int = Path(..., gt=0, description="Event ID"),
    registration_id: int = Path(..., gt=0, description="Registration ID"),
    user_info: dict = Depends(get_current_principal)
):
    """
    Get the ticket QR code as a PNG image.
    Available to the ticket owner and the event organizer once the ticket is issued.
    """
    image, info = await registration_service.get_ticket_qr(event_id, registration_id, user_info)
    return Response(
        content=image,
        media_type="image/png",
        headers={"X-Ticket-Id": info["ticket_id"]}
    )
