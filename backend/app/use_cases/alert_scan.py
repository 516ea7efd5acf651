"""Periodic quality alert scan (stale hold points, overdue verifications)."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from ..config import settings
from ..models import HoldPoint, ItpCompletion, Notification
from ..security import MANAGER_ROLES, project_member_ids
from ..services.hold_point_rules import (
    AWAITING_RELEASE_STATUSES,
    as_utc,
    hours_stale,
    stale_severity,
    utc_now,
)
from ..services.notifications import notify

logger = logging.getLogger(__name__)

STALE_HOLD_POINT = "hold_point_stale"
VERIFICATION_OVERDUE = "itp_verification_overdue"


@dataclass
class AlertScanResult:
    stale_hold_points: int = 0
    pending_verifications: int = 0
    notifications_created: int = 0
    alerts: list[dict[str, Any]] = field(default_factory=list)


def _notify_managers_once(
    db: Session,
    *,
    project_id: UUID,
    alert_type: str,
    entity_id: UUID,
    severity: str,
    title: str,
    message: str,
    link_url: str,
) -> int:
    """One notification per manager and severity, skipping managers already alerted at that level."""
    created = 0
    for user_id in project_member_ids(db, project_id=project_id, roles=MANAGER_ROLES):
        existing = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.type == alert_type,
            Notification.link_url.contains(str(entity_id)),
            Notification.title.contains(f"({severity})"),
        ).first()
        if existing:
            continue
        notify(
            db,
            user_id=user_id,
            project_id=project_id,
            type=alert_type,
            title=title,
            message=message,
            link_url=link_url,
        )
        created += 1
    return created


def scan_quality_alerts_use_case(*, db: Session, now: datetime | None = None) -> AlertScanResult:
    now = as_utc(now) if now else utc_now()
    result = AlertScanResult()

    candidates = db.query(HoldPoint).filter(
        HoldPoint.status.in_(tuple(AWAITING_RELEASE_STATUSES)),
        HoldPoint.scheduled_date != None,
        HoldPoint.scheduled_date < now,
    ).all()
    for hold_point in candidates:
        hours = hours_stale(hold_point, now)
        if hours is None:
            continue
        severity = stale_severity(hours)
        lot = hold_point.lot
        created = _notify_managers_once(
            db,
            project_id=lot.project_id,
            alert_type=STALE_HOLD_POINT,
            entity_id=hold_point.id,
            severity=severity,
            title=f"Stale hold point ({severity}): {hold_point.description}",
            message=(
                f"Hold point on lot {lot.lot_number} has been awaiting release for "
                f"{int(hours)} hour(s) past its scheduled time."
            ),
            link_url=f"/projects/{lot.project_id}/lots/{lot.id}?tab=holdpoints&hp={hold_point.id}",
        )
        result.stale_hold_points += 1
        result.notifications_created += created
        result.alerts.append(
            {
                "alert_type": STALE_HOLD_POINT,
                "entity_type": "hold_point",
                "entity_id": hold_point.id,
                "project_id": lot.project_id,
                "severity": severity,
                "hours_overdue": round(hours, 2),
                "notifications_created": created,
            }
        )

    threshold_hours = settings.PENDING_VERIFICATION_ALERT_HOURS
    cutoff = now - timedelta(hours=threshold_hours)
    pending = db.query(ItpCompletion).filter(
        ItpCompletion.verification_status == "pending_verification",
        ItpCompletion.completed_at < cutoff,
    ).all()
    for completion in pending:
        lot = completion.instance.lot
        waited = (now - as_utc(completion.completed_at)).total_seconds() / 3600
        severity = stale_severity(waited - threshold_hours)
        created = _notify_managers_once(
            db,
            project_id=lot.project_id,
            alert_type=VERIFICATION_OVERDUE,
            entity_id=completion.id,
            severity=severity,
            title=f"ITP item awaiting verification ({severity}): {int(waited)} hour(s)",
            message=f"A subcontractor submission on lot {lot.lot_number} is still awaiting verification.",
            link_url=(
                f"/projects/{lot.project_id}/lots/{lot.id}?tab=itp"
                f"&highlight={completion.checklist_item_id}&completion={completion.id}"
            ),
        )
        result.pending_verifications += 1
        result.notifications_created += created
        result.alerts.append(
            {
                "alert_type": VERIFICATION_OVERDUE,
                "entity_type": "itp_completion",
                "entity_id": completion.id,
                "project_id": lot.project_id,
                "severity": severity,
                "hours_overdue": round(waited - threshold_hours, 2),
                "notifications_created": created,
            }
        )

    db.commit()
    logger.info(
        "Quality alert scan: %s stale hold point(s), %s pending verification(s), %s notification(s)",
        result.stale_hold_points, result.pending_verifications, result.notifications_created,
    )
    return result
