"""
Approval API endpoints for Campus Events Service.
Organizer queues and decisions for the payment and registration gates.
"""

from fastapi import APIRouter, Depends, Path, Body
from typing import Optional
import logging

from campus_events.api.dependencies import require_club_role
from campus_events.models.registration import Registration
from campus_events.services.registration_service import registration_service, PAYMENT, REGISTRATION
from campus_events.schemas.registration import (
    RejectRequest,
    ApprovalResponse,
    PendingQueueResponse
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["approvals"])


def _approval_response(message: str, registration: Registration) -> ApprovalResponse:
    return ApprovalResponse(
        message=message,
        registration_id=registration.id,
        status=registration.status,
        payment_approval_status=registration.payment_approval_status,
        registration_approval_status=registration.registration_approval_status,
        ticket_id=registration.ticket_id
    )


# Payment gate
@router.get("/{event_id}/pending-payments", response_model=PendingQueueResponse)
async def get_pending_payments(
    event_id: int = Path(..., gt=0, description="Event ID"),
    user_info: dict = Depends(require_club_role)
):
    """Payments waiting for review plus the most recently processed ones."""
    queue = await registration_service.get_pending_queue(PAYMENT, event_id, user_info)
    return PendingQueueResponse(**queue)


@router.post("/{event_id}/approve-payment/{registration_id}", response_model=ApprovalResponse)
async def approve_payment(
    event_id: int = Path(..., gt=0, description="Event ID"),
    registration_id: int = Path(..., gt=0, description="Registration ID"),
    user_info: dict = Depends(require_club_role)
):
    """
    Approve a payment. Issues the ticket when registration approval is not pending.
    """
    registration = await registration_service.approve_payment(event_id, registration_id, user_info)
    message = "Payment approved and ticket issued" if registration.ticket_id else "Payment approved"
    return _approval_response(message, registration)


@router.post("/{event_id}/reject-payment/{registration_id}", response_model=ApprovalResponse)
async def reject_payment(
    event_id: int = Path(..., gt=0, description="Event ID"),
    registration_id: int = Path(..., gt=0, description="Registration ID"),
    reject_data: Optional[RejectRequest] = Body(None),
    user_info: dict = Depends(require_club_role)
):
    """Reject a payment. The reason defaults when omitted."""
    reason = reject_data.reason if reject_data else None
    registration = await registration_service.reject_payment(event_id, registration_id, user_info, reason)
    return _approval_response("Payment rejected", registration)


# Registration gate
@router.get("/{event_id}/pending-registrations", response_model=PendingQueueResponse)
async def get_pending_registrations(
    event_id: int = Path(..., gt=0, description="Event ID"),
    user_info: dict = Depends(require_club_role)
):
    """Registrations waiting for approval plus the most recently processed ones."""
    queue = await registration_service.get_pending_queue(REGISTRATION, event_id, user_info)
    return PendingQueueResponse(**queue)


@router.post("/{event_id}/approve-registration/{registration_id}", response_model=ApprovalResponse)
async def approve_registration(
    event_id: int = Path(..., gt=0, description="Event ID"),
    registration_id: int = Path(..., gt=0, description="Registration ID"),
    user_info: dict = Depends(require_club_role)
):
    """
    Approve a registration. Issues the ticket when payment is not pending.
    """
    registration = await registration_service.approve_registration(event_id, registration_id, user_info)
    message = "Registration approved and ticket issued" if registration.ticket_id else "Registration approved"
    return _approval_response(message, registration)


@router.post("/{event_id}/reject-registration/{registration_id}", response_model=ApprovalResponse)
async def reject_registration(
    event_id: int = Path(..., gt=0, description="Event ID"),
    registration_id: int = Path(..., gt=0, description="Registration ID"),
    reject_data: Optional[RejectRequest] = Body(None),
    user_info: dict = Depends(require_club_role)
):
    """Reject a registration."""
    reason = reject_data.reason if reject_data else None
    registration = await registration_service.reject_registration(event_id, registration_id, user_info, reason)
    return _approval_response("Registration rejected", registration)
