"""Hold point endpoints (authenticated)."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import (
    ChecklistItemView,
    HoldPointChaseRequest,
    HoldPointDetailResponse,
    HoldPointEscalateRequest,
    HoldPointInternalReleaseRequest,
    HoldPointReleaseRequest,
    HoldPointReleaseRequestResponse,
    HoldPointResponse,
    NotificationScheduleResponse,
    NotificationTimeRequest,
    PrecedingItemView,
    ReleaseLinkResponse,
    WorkingHoursView,
)
from ..services.working_hours import NotificationSchedule, WorkingHours
from ..use_cases.hold_points import (
    calculate_notification_time_use_case,
    chase_hold_point_use_case,
    escalate_hold_point_use_case,
    get_hold_point_detail_use_case,
    release_hold_point_use_case,
    request_release_use_case,
)

router = APIRouter(prefix="/holdpoints", tags=["holdpoints"])


def _schedule_response(requested, schedule: NotificationSchedule, hours: WorkingHours) -> NotificationScheduleResponse:
    return NotificationScheduleResponse(
        requested_date_time=requested,
        scheduled_notification_time=schedule.scheduled_time,
        adjusted_for_working_hours=schedule.adjusted,
        adjustment_reason=schedule.reason,
        working_hours=WorkingHoursView(**hours.to_dict()),
    )


@router.get("/lot/{lot_id}/item/{item_id}", response_model=HoldPointDetailResponse)
def get_hold_point_detail(
    lot_id: UUID,
    item_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Hold point with preceding items and whether release can be requested."""
    detail = get_hold_point_detail_use_case(db=db, lot_id=lot_id, item_id=item_id, current_user=current_user)
    return HoldPointDetailResponse(
        lot_id=detail.lot.id,
        item=ChecklistItemView.model_validate(detail.item),
        hold_point=HoldPointResponse.model_validate(detail.hold_point) if detail.hold_point else None,
        preceding_items=[PrecedingItemView(**entry) for entry in detail.preceding_items],
        incomplete_items=[PrecedingItemView(**entry) for entry in detail.incomplete_items],
        can_request_release=detail.can_request_release,
        status=detail.status,
        working_hours=WorkingHoursView(**detail.working_hours.to_dict()),
    )


@router.post("/request-release", response_model=HoldPointReleaseRequestResponse)
def request_release(
    data: HoldPointReleaseRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = request_release_use_case(db=db, data=data, current_user=current_user)
    return HoldPointReleaseRequestResponse(
        hold_point=HoldPointResponse.model_validate(result.hold_point),
        release_links=[
            ReleaseLinkResponse(
                recipient_email=link.recipient_email,
                recipient_name=link.recipient_name,
                release_url=link.release_url,
                expires_at=link.expires_at,
            )
            for link in result.release_links
        ],
        notification_schedule=_schedule_response(result.requested_at, result.schedule, result.working_hours),
    )


@router.post("/calculate-notification-time", response_model=NotificationScheduleResponse)
def calculate_notification_time(
    data: NotificationTimeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Preview the working-hours adjusted notification time."""
    schedule, hours = calculate_notification_time_use_case(
        db=db,
        project_id=data.project_id,
        requested=data.requested_date_time,
        current_user=current_user,
    )
    return _schedule_response(data.requested_date_time, schedule, hours)


@router.post("/{hold_point_id}/chase", response_model=HoldPointResponse)
def chase_hold_point(
    hold_point_id: UUID,
    data: Optional[HoldPointChaseRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return chase_hold_point_use_case(
        db=db,
        hold_point_id=hold_point_id,
        current_user=current_user,
        expected_updated_at=data.expected_updated_at if data else None,
    )


@router.post("/{hold_point_id}/escalate", response_model=HoldPointResponse)
def escalate_hold_point(
    hold_point_id: UUID,
    data: HoldPointEscalateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return escalate_hold_point_use_case(
        db=db,
        hold_point_id=hold_point_id,
        data=data,
        current_user=current_user,
    )


@router.post("/{hold_point_id}/release", response_model=HoldPointResponse)
def release_hold_point(
    hold_point_id: UUID,
    data: HoldPointInternalReleaseRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return release_hold_point_use_case(
        db=db,
        hold_point_id=hold_point_id,
        data=data,
        current_user=current_user,
    )
