"""
Attendance API endpoints for Campus Events Service.
Handles ticket scanning, manual overrides, the live dashboard and CSV export.
"""

from fastapi import APIRouter, Depends, status, Path
from fastapi.responses import JSONResponse, Response
from urllib.parse import quote
import logging

from campus_events.api.dependencies import require_club_role
from campus_events.services.attendance_service import attendance_service
from campus_events.schemas.registration import (
    ScanRequest,
    ScanResponse,
    DuplicateScanResponse,
    ParticipantInfo,
    ManualAttendanceRequest,
    ManualAttendanceResponse,
    AttendanceDashboardResponse,
    VerifyQRRequest,
    VerifyQRResponse
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["attendance"])


@router.post("/verify-qr", response_model=VerifyQRResponse)
async def verify_qr(
    verify_data: VerifyQRRequest,
    user_info: dict = Depends(require_club_role)
):
    """
    Decrypt a QR payload and report its registration without recording attendance.
    """
    result = await attendance_service.verify_qr(verify_data.qr_data, user_info)
    return VerifyQRResponse(**result)


@router.post(
    "/{event_id}/scan-ticket",
    response_model=ScanResponse,
    responses={status.HTTP_409_CONFLICT: {"model": DuplicateScanResponse}}
)
async def scan_ticket(
    scan_data: ScanRequest,
    event_id: int = Path(..., gt=0, description="Event ID"),
    user_info: dict = Depends(require_club_role)
):
    """
    Check a ticket in at an ongoing event.

    Args:
        scan_data: Raw ticket id or scanned QR payload
        event_id: Event ID
        user_info: Authenticated organizer

    Returns:
        Participant identity and check-in time, or 409 when already checked in
    """
    outcome = await attendance_service.scan(
        event_id, user_info, ticket_id=scan_data.ticket_id, qr_data=scan_data.qr_data
    )
    participant = ParticipantInfo(**outcome.participant)

    if outcome.duplicate:
        body = DuplicateScanResponse(
            error="Attendance already marked",
            already_marked_at=outcome.marked_at,
            participant=participant
        )
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=body.model_dump(mode="json")
        )

    return ScanResponse(
        message="Attendance marked successfully",
        participant=participant
    )


@router.post("/{event_id}/manual-attendance/{registration_id}", response_model=ManualAttendanceResponse)
async def manual_attendance(
    override_data: ManualAttendanceRequest,
    event_id: int = Path(..., gt=0, description="Event ID"),
    registration_id: int = Path(..., gt=0, description="Registration ID"),
    user_info: dict = Depends(require_club_role)
):
    """Set a registration's attendance by hand, with a reason."""
    registration = await attendance_service.manual_override(
        event_id, registration_id, user_info, override_data.status, override_data.reason
    )
    return ManualAttendanceResponse(
        message=f"Attendance manually marked as {registration.attendance_status.value}",
        registration_id=registration.id,
        attendance_status=registration.attendance_status,
        manual_override=registration.manual_override,
        reason=registration.override_reason
    )


@router.get("/{event_id}/attendance-dashboard", response_model=AttendanceDashboardResponse)
async def attendance_dashboard(
    event_id: int = Path(..., gt=0, description="Event ID"),
    user_info: dict = Depends(require_club_role)
):
    """Live attendance counters and participant list."""
    dashboard = await attendance_service.get_dashboard(event_id, user_info)
    return AttendanceDashboardResponse(**dashboard)


@router.get("/{event_id}/export-attendance")
async def export_attendance(
    event_id: int = Path(..., gt=0, description="Event ID"),
    user_info: dict = Depends(require_club_role)
):
    """Download the attendance list as CSV."""
    filename, content = await attendance_service.export_csv(event_id, user_info)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}
    )
