"""Scheduler-triggered quality alert scan."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import AlertScanResponse, QualityAlert
from ..use_cases.alert_scan import scan_quality_alerts_use_case

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.post("/check", response_model=AlertScanResponse)
def check_alerts(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Run the stale hold point / overdue verification scan now."""
    result = scan_quality_alerts_use_case(db=db)
    return AlertScanResponse(
        stale_hold_points=result.stale_hold_points,
        pending_verifications=result.pending_verifications,
        notifications_created=result.notifications_created,
        alerts=[QualityAlert(**alert) for alert in result.alerts],
    )
