"""Public hold point release endpoints (no login, token in the URL)."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas import (
    PublicEvidenceItem,
    PublicHoldPointView,
    PublicReleaseRequest,
    PublicReleaseResponse,
)
from ..services.rate_limit import enforce_public_release_rate_limit
from ..use_cases.public_release import release_by_token_use_case, view_by_token_use_case

router = APIRouter(
    prefix="/holdpoints/public",
    tags=["holdpoints-public"],
    dependencies=[Depends(enforce_public_release_rate_limit)],
)


def _set_no_store(response: Response) -> None:
    # Release links are bearer credentials.
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"


@router.get("/{token}", response_model=PublicHoldPointView)
def view_hold_point(token: str, response: Response, db: Session = Depends(get_db)):
    _set_no_store(response)
    summary = view_by_token_use_case(db=db, token=token)
    hold_point = summary.hold_point
    lot = hold_point.lot
    return PublicHoldPointView(
        hold_point_id=hold_point.id,
        description=hold_point.description,
        status=hold_point.status,
        scheduled_date=hold_point.scheduled_date,
        scheduled_time=hold_point.scheduled_time,
        lot_id=lot.id,
        lot_number=lot.lot_number,
        lot_description=lot.description,
        project_name=lot.project.name,
        project_number=lot.project.project_number,
        recipient_email=summary.release_token.recipient_email,
        recipient_name=summary.release_token.recipient_name,
        expires_at=summary.release_token.expires_at,
        evidence=[PublicEvidenceItem(**entry) for entry in summary.evidence],
        test_results=summary.test_results,
    )


@router.post("/{token}/release", response_model=PublicReleaseResponse)
def release_hold_point(
    token: str,
    data: PublicReleaseRequest,
    response: Response,
    db: Session = Depends(get_db),
):
    _set_no_store(response)
    hold_point = release_by_token_use_case(db=db, token=token, data=data)
    return PublicReleaseResponse(
        hold_point_id=hold_point.id,
        status=hold_point.status,
        released_at=hold_point.released_at,
        released_by_name=hold_point.released_by_name,
        released_by_org=hold_point.released_by_org,
    )
