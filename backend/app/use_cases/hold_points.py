"""Hold point protocol: detail, release request, chase, escalation, release."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import DomainError, conflict
from ..models import (
    HoldPoint,
    HoldPointReleaseToken,
    ItpCompletion,
    ItpInstance,
    Lot,
    Project,
    User,
)
from ..schemas import (
    HoldPointEscalateRequest,
    HoldPointInternalReleaseRequest,
    HoldPointReleaseRequest,
)
from ..security import (
    MANAGER_ROLES,
    project_member_ids,
    require_entity,
    require_project_member,
    require_project_permission,
)
from ..services.advisory import AdvisoryResult, run_advisory
from ..services.audit_log import record_audit
from ..services.checklist_snapshot import ChecklistItemRecord, find_item, resolve_items
from ..services.hold_point_rules import (
    combine_date_and_time,
    ensure_not_released,
    generate_release_token,
    monotonic_after,
    release_token_expiry,
    release_url,
    request_status,
    utc_now,
)
from ..services.notifications import notify_many, queue_external_email
from ..services.project_settings import load_quality_settings
from ..services.working_hours import (
    NotificationSchedule,
    WorkingHours,
    calculate_notification_time,
    project_working_hours,
)

logger = logging.getLogger(__name__)


@dataclass
class HoldPointDetail:
    lot: Lot
    item: ChecklistItemRecord
    hold_point: HoldPoint | None
    preceding_items: list[dict[str, Any]]
    working_hours: WorkingHours

    @property
    def incomplete_items(self) -> list[dict[str, Any]]:
        return [entry for entry in self.preceding_items if not entry["is_completed"]]

    @property
    def can_request_release(self) -> bool:
        return not self.incomplete_items

    @property
    def status(self) -> str:
        return self.hold_point.status if self.hold_point is not None else "pending"


@dataclass
class ReleaseLink:
    recipient_email: str
    recipient_name: str | None
    release_url: str
    expires_at: datetime


@dataclass
class ReleaseRequestResult:
    hold_point: HoldPoint
    release_links: list[ReleaseLink]
    schedule: NotificationSchedule
    working_hours: WorkingHours
    requested_at: datetime
    advisories: list[AdvisoryResult] = field(default_factory=list)


def _get_lot_or_404(*, db: Session, lot_id: UUID) -> Lot:
    return require_entity(db, Lot, entity_id=lot_id, code="LOT_NOT_FOUND", message="Lot not found")


def _get_hold_point_or_404(*, db: Session, hold_point_id: UUID) -> HoldPoint:
    return require_entity(
        db,
        HoldPoint,
        entity_id=hold_point_id,
        code="HOLD_POINT_NOT_FOUND",
        message="Hold point not found",
    )


def _get_instance_for_lot(*, db: Session, lot: Lot) -> ItpInstance:
    instance = db.query(ItpInstance).filter(ItpInstance.lot_id == lot.id).first()
    if not instance:
        raise DomainError(
            code="ITP_INSTANCE_NOT_FOUND",
            http_status=404,
            message="No ITP assigned to this lot",
        )
    return instance


def _completions_by_item(*, db: Session, instance_id: UUID) -> dict[str, ItpCompletion]:
    completions = db.query(ItpCompletion).filter(ItpCompletion.itp_instance_id == instance_id).all()
    return {str(completion.checklist_item_id): completion for completion in completions}


def preceding_item_states(
    items: list[ChecklistItemRecord],
    target: ChecklistItemRecord,
    completions: dict[str, ItpCompletion],
) -> list[dict[str, Any]]:
    """Items before ``target``; only a ``completed`` completion counts here."""
    states = []
    for item in items:
        if item.sequence_number >= target.sequence_number:
            continue
        completion = completions.get(item.id)
        states.append(
            {
                "id": item.id,
                "description": item.description,
                "sequence_number": item.sequence_number,
                "point_type": item.point_type,
                "is_completed": bool(completion and completion.status == "completed"),
                "completion_status": completion.status if completion else None,
                "verification_status": completion.verification_status if completion else None,
            }
        )
    return states


def _find_hold_point(*, db: Session, lot_id: UUID, item_id: str) -> HoldPoint | None:
    return db.query(HoldPoint).filter(
        HoldPoint.lot_id == lot_id,
        HoldPoint.checklist_item_id == UUID(item_id),
    ).first()


def get_hold_point_detail_use_case(
    *,
    db: Session,
    lot_id: UUID,
    item_id: UUID,
    current_user: User,
) -> HoldPointDetail:
    lot = _get_lot_or_404(db=db, lot_id=lot_id)
    require_project_member(db, project_id=lot.project_id, user=current_user)
    instance = _get_instance_for_lot(db=db, lot=lot)

    items = resolve_items(instance)
    item = find_item(items, item_id)
    if item is None or item.point_type not in ("hold", "witness"):
        raise DomainError(
            code="HOLD_POINT_ITEM_INVALID",
            http_status=400,
            message="Item is not a hold or witness point",
        )

    completions = _completions_by_item(db=db, instance_id=instance.id)
    return HoldPointDetail(
        lot=lot,
        item=item,
        hold_point=_find_hold_point(db=db, lot_id=lot.id, item_id=item.id),
        preceding_items=preceding_item_states(items, item, completions),
        working_hours=project_working_hours(lot.project),
    )


def _notify_superintendents(db: Session, *, lot: Lot, hold_point: HoldPoint, actor: User) -> int:
    recipients = project_member_ids(db, project_id=lot.project_id, roles=("superintendent",))
    created = notify_many(
        db,
        user_ids=recipients,
        project_id=lot.project_id,
        type="hold_point_release_requested",
        title=f"Hold point release requested: {hold_point.description}",
        message=f"{actor.display_name} requested release of a hold point on lot {lot.lot_number}.",
        link_url=f"/projects/{lot.project_id}/lots/{lot.id}?tab=holdpoints&hp={hold_point.id}",
    )
    return len(created)


def request_release_use_case(
    *,
    db: Session,
    data: HoldPointReleaseRequest,
    current_user: User,
) -> ReleaseRequestResult:
    """
    Request release of a hold point once every preceding item is completed.

    One single-use release token is issued per external recipient.
    """
    lot = _get_lot_or_404(db=db, lot_id=data.lot_id)
    require_project_permission(
        db, project_id=lot.project_id, user=current_user, permission="canRequestHoldPointRelease"
    )
    instance = _get_instance_for_lot(db=db, lot=lot)

    items = resolve_items(instance)
    item = find_item(items, data.checklist_item_id)
    if item is None or not item.is_hold_point:
        raise DomainError(
            code="HOLD_POINT_ITEM_INVALID",
            http_status=400,
            message="Item is not a hold point",
        )

    completions = _completions_by_item(db=db, instance_id=instance.id)
    incomplete = [
        entry for entry in preceding_item_states(items, item, completions) if not entry["is_completed"]
    ]
    if incomplete:
        raise DomainError(
            code="HOLD_POINT_PREREQUISITES_INCOMPLETE",
            http_status=400,
            message="Cannot request hold point release until all preceding checklist items are completed",
            details={"incomplete_items": incomplete},
        )

    hold_point = _find_hold_point(db=db, lot_id=lot.id, item_id=item.id)
    if hold_point is not None:
        ensure_not_released(hold_point)

    quality = load_quality_settings(lot.project)
    recipients = [r.model_dump() for r in data.recipients] if data.recipients else quality.hp_recipients

    now = utc_now()
    if hold_point is None:
        hold_point = HoldPoint(
            id=uuid.uuid4(),
            lot_id=lot.id,
            checklist_item_id=UUID(item.id),
            point_type="hold",
            description=item.description,
            chase_count=0,
            is_escalated=False,
            updated_at=now,
        )
        db.add(hold_point)
    else:
        hold_point.updated_at = monotonic_after(hold_point.updated_at, now)

    hold_point.status = request_status(data.scheduled_date, external_recipients=len(recipients))
    hold_point.scheduled_date = data.scheduled_date
    hold_point.scheduled_time = data.scheduled_time
    hold_point.notification_sent_at = now
    hold_point.notification_sent_to = data.notification_sent_to or (
        ", ".join(r["email"] for r in recipients) or None
    )
    hold_point.requested_by_id = current_user.id

    hours = project_working_hours(lot.project)
    requested_at = (
        combine_date_and_time(data.scheduled_date, data.scheduled_time) if data.scheduled_date else now
    )
    schedule = calculate_notification_time(requested_at, hours)

    links: list[ReleaseLink] = []
    for recipient in recipients:
        token = HoldPointReleaseToken(
            id=uuid.uuid4(),
            hold_point_id=hold_point.id,
            recipient_email=recipient["email"],
            recipient_name=recipient.get("name"),
            token=generate_release_token(),
            expires_at=release_token_expiry(now),
        )
        db.add(token)
        link = ReleaseLink(
            recipient_email=token.recipient_email,
            recipient_name=token.recipient_name,
            release_url=release_url(token.token),
            expires_at=token.expires_at,
        )
        links.append(link)
        queue_external_email(
            db,
            email=token.recipient_email,
            project_id=lot.project_id,
            type="hold_point_release_request",
            subject=f"Hold point release requested - lot {lot.lot_number}",
            message=(
                f"A hold point on lot {lot.lot_number} is ready for inspection: {item.description}. "
                f"Review and release it here: {link.release_url}"
            ),
            idempotency_key=f"hold_point_release_request:{token.id}",
            meta_data={
                "holdPointId": str(hold_point.id),
                "releaseUrl": link.release_url,
                "scheduledNotificationTime": schedule.scheduled_time.isoformat(),
            },
        )

    record_audit(
        db,
        project_id=lot.project_id,
        action="hold_point_release_requested",
        entity_type="hold_point",
        entity_id=hold_point.id,
        user=current_user,
        details={
            "lotId": str(lot.id),
            "status": hold_point.status,
            "recipients": [r["email"] for r in recipients],
            "adjustedForWorkingHours": schedule.adjusted,
        },
    )
    db.commit()

    advisory = run_advisory(
        "superintendent_notice", db, _notify_superintendents,
        db, lot=lot, hold_point=hold_point, actor=current_user,
    )
    db.commit()
    logger.info("Hold point %s release requested, %s link(s) issued", hold_point.id, len(links))
    return ReleaseRequestResult(
        hold_point=hold_point,
        release_links=links,
        schedule=schedule,
        working_hours=hours,
        requested_at=requested_at,
        advisories=[advisory],
    )


def _queue_chase_reminders(db: Session, *, lot: Lot, hold_point: HoldPoint, chase_count: int) -> int:
    now = utc_now()
    tokens = db.query(HoldPointReleaseToken).filter(
        HoldPointReleaseToken.hold_point_id == hold_point.id,
        HoldPointReleaseToken.used_at == None,
        HoldPointReleaseToken.expires_at > now,
    ).all()
    for token in tokens:
        queue_external_email(
            db,
            email=token.recipient_email,
            project_id=lot.project_id,
            type="hold_point_chase",
            subject=f"Reminder: hold point awaiting release - lot {lot.lot_number}",
            message=(
                f"Reminder {chase_count}: the hold point \"{hold_point.description}\" on lot "
                f"{lot.lot_number} is still awaiting release: {release_url(token.token)}"
            ),
            idempotency_key=f"hold_point_chase:{hold_point.id}:{chase_count}:{token.id}",
        )
    return len(tokens)


def chase_hold_point_use_case(
    *,
    db: Session,
    hold_point_id: UUID,
    current_user: User,
    expected_updated_at: datetime | None = None,
) -> HoldPoint:
    """Record a chase; each chase increments the counter exactly once."""
    hold_point = _get_hold_point_or_404(db=db, hold_point_id=hold_point_id)
    lot = hold_point.lot
    require_project_permission(
        db, project_id=lot.project_id, user=current_user, permission="canRequestHoldPointRelease"
    )
    ensure_not_released(hold_point)

    observed_updated_at = expected_updated_at or hold_point.updated_at
    now = utc_now()
    chase_count = (hold_point.chase_count or 0) + 1
    updated = db.query(HoldPoint).filter(
        HoldPoint.id == hold_point.id,
        HoldPoint.updated_at == observed_updated_at,
        HoldPoint.status != "released",
    ).update(
        {
            "chase_count": chase_count,
            "last_chased_at": monotonic_after(hold_point.last_chased_at, now),
            "updated_at": monotonic_after(observed_updated_at, now),
        },
        synchronize_session=False,
    )
    if not updated:
        raise conflict(
            "HOLD_POINT_CONCURRENT_MODIFICATION",
            "Hold point was modified by another request; reload and try again",
        )

    record_audit(
        db,
        project_id=lot.project_id,
        action="hold_point_chased",
        entity_type="hold_point",
        entity_id=hold_point.id,
        user=current_user,
        details={"chaseCount": chase_count},
    )
    db.commit()

    run_advisory(
        "chase_reminders", db, _queue_chase_reminders,
        db, lot=lot, hold_point=hold_point, chase_count=chase_count,
    )
    db.commit()
    db.refresh(hold_point)
    return hold_point


def _notify_escalation(db: Session, *, lot: Lot, hold_point: HoldPoint, actor: User) -> int:
    recipients = project_member_ids(db, project_id=lot.project_id, roles=MANAGER_ROLES)
    created = notify_many(
        db,
        user_ids=recipients,
        project_id=lot.project_id,
        type="hold_point_escalated",
        title=f"Hold point escalated: {hold_point.description}",
        message=(
            f"{actor.display_name} escalated a hold point on lot {lot.lot_number}: "
            f"{hold_point.escalation_reason}"
        ),
        link_url=f"/projects/{lot.project_id}/lots/{lot.id}?tab=holdpoints&hp={hold_point.id}",
    )
    return len(created)


def escalate_hold_point_use_case(
    *,
    db: Session,
    hold_point_id: UUID,
    data: HoldPointEscalateRequest,
    current_user: User,
) -> HoldPoint:
    hold_point = _get_hold_point_or_404(db=db, hold_point_id=hold_point_id)
    lot = hold_point.lot
    require_project_permission(db, project_id=lot.project_id, user=current_user, permission="canEscalate")
    ensure_not_released(hold_point)

    now = utc_now()
    hold_point.is_escalated = True
    hold_point.escalated_at = now
    hold_point.escalated_by_id = current_user.id
    hold_point.escalated_to = data.escalated_to
    hold_point.escalation_reason = data.reason
    hold_point.updated_at = monotonic_after(hold_point.updated_at, now)

    record_audit(
        db,
        project_id=lot.project_id,
        action="hold_point_escalated",
        entity_type="hold_point",
        entity_id=hold_point.id,
        user=current_user,
        details={"escalatedTo": data.escalated_to, "reason": data.reason},
    )
    db.commit()

    run_advisory(
        "escalation_notice", db, _notify_escalation,
        db, lot=lot, hold_point=hold_point, actor=current_user,
    )
    db.commit()
    return hold_point


def mark_hold_point_released(
    db: Session,
    *,
    hold_point: HoldPoint,
    released_by_name: str,
    released_by_org: str | None,
    release_notes: str | None,
    signature_data_url: str | None,
    method: str,
    verified_by_id: UUID | None,
    now: datetime,
) -> None:
    """Conditionally flip a hold point to released and verify its checklist item."""
    updated = db.query(HoldPoint).filter(
        HoldPoint.id == hold_point.id,
        HoldPoint.status != "released",
    ).update(
        {
            "status": "released",
            "released_at": now,
            "released_by_name": released_by_name,
            "released_by_org": released_by_org,
            "release_method": method,
            "release_notes": release_notes,
            "release_signature_url": signature_data_url,
            "updated_at": monotonic_after(hold_point.updated_at, now),
        },
        synchronize_session=False,
    )
    if not updated:
        raise conflict("HOLD_POINT_ALREADY_RELEASED", "Hold point has already been released")

    instance = db.query(ItpInstance).filter(ItpInstance.lot_id == hold_point.lot_id).first()
    if instance is not None:
        db.query(ItpCompletion).filter(
            ItpCompletion.itp_instance_id == instance.id,
            ItpCompletion.checklist_item_id == hold_point.checklist_item_id,
        ).update(
            {"verification_status": "verified", "verified_at": now, "verified_by_id": verified_by_id},
            synchronize_session=False,
        )


def release_hold_point_use_case(
    *,
    db: Session,
    hold_point_id: UUID,
    data: HoldPointInternalReleaseRequest,
    current_user: User,
) -> HoldPoint:
    """Release by an authenticated project member."""
    hold_point = _get_hold_point_or_404(db=db, hold_point_id=hold_point_id)
    lot = hold_point.lot
    require_project_permission(
        db, project_id=lot.project_id, user=current_user, permission="canReleaseHoldPoints"
    )
    ensure_not_released(hold_point)

    released_by_name = data.released_by_name or current_user.display_name
    mark_hold_point_released(
        db,
        hold_point=hold_point,
        released_by_name=released_by_name,
        released_by_org=data.released_by_org,
        release_notes=data.release_notes,
        signature_data_url=data.signature_data_url,
        method="internal",
        verified_by_id=current_user.id,
        now=utc_now(),
    )
    record_audit(
        db,
        project_id=lot.project_id,
        action="hold_point_released",
        entity_type="hold_point",
        entity_id=hold_point.id,
        user=current_user,
        details={"method": "internal", "releasedByName": released_by_name},
    )
    db.commit()
    db.refresh(hold_point)
    return hold_point


def calculate_notification_time_use_case(
    *,
    db: Session,
    project_id: UUID,
    requested: datetime,
    current_user: User,
) -> tuple[NotificationSchedule, WorkingHours]:
    project = require_entity(
        db, Project, entity_id=project_id, code="PROJECT_NOT_FOUND", message="Project not found"
    )
    require_project_member(db, project_id=project.id, user=current_user)
    hours = project_working_hours(project)
    return calculate_notification_time(requested, hours), hours
