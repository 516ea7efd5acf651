"""Checklist item completion and head-contractor verification use-cases."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import DomainError
from ..models import ItpCompletion, ItpInstance, User
from ..schemas import CompletionVerifyRequest, ItpCompletionCreate
from ..security import MANAGER_ROLES, project_member_ids, require_entity, require_project_permission
from ..services.advisory import AdvisoryResult, run_advisory
from ..services.audit_log import record_audit
from ..services.checklist_snapshot import ChecklistItemRecord, find_item, resolve_items
from ..services.lot_progression import reevaluate_lot_status
from ..services.notifications import notify, notify_many
from ..services.project_settings import load_quality_settings
from ..services.witness_points import check_and_notify_witness_point

logger = logging.getLogger(__name__)


@dataclass
class CompletionOutcome:
    completion: ItpCompletion | None
    lot_status: str | None
    witness_notification: dict[str, Any] | None = None
    advisories: list[AdvisoryResult] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _get_instance_or_404(*, db: Session, instance_id: UUID) -> ItpInstance:
    return require_entity(
        db,
        ItpInstance,
        entity_id=instance_id,
        code="ITP_INSTANCE_NOT_FOUND",
        message="ITP instance not found",
    )


def _get_completion_or_404(*, db: Session, completion_id: UUID) -> ItpCompletion:
    return require_entity(
        db,
        ItpCompletion,
        entity_id=completion_id,
        code="ITP_COMPLETION_NOT_FOUND",
        message="ITP completion not found",
    )


def _notify_verifiers(db: Session, *, instance: ItpInstance, item: ChecklistItemRecord, actor: User) -> int:
    lot = instance.lot
    recipients = project_member_ids(db, project_id=lot.project_id, roles=MANAGER_ROLES)
    created = notify_many(
        db,
        user_ids=recipients,
        project_id=lot.project_id,
        type="itp_verification_required",
        title=f"ITP item awaiting verification: {item.description}",
        message=(
            f"{actor.display_name} submitted \"{item.description}\" on lot {lot.lot_number} "
            "for head contractor verification."
        ),
        link_url=f"/projects/{lot.project_id}/lots/{lot.id}?tab=itp&highlight={item.id}",
    )
    return len(created)


def _notify_rejection(db: Session, *, instance: ItpInstance, completion: ItpCompletion, reason: str) -> int:
    if not completion.completed_by_id:
        return 0
    lot = instance.lot
    notify(
        db,
        user_id=completion.completed_by_id,
        project_id=lot.project_id,
        type="itp_item_rejected",
        title="ITP item rejected",
        message=f"Your submission on lot {lot.lot_number} was rejected: {reason}",
        link_url=f"/projects/{lot.project_id}/lots/{lot.id}?tab=itp&highlight={completion.checklist_item_id}",
    )
    return 1


def _finish(
    *,
    db: Session,
    instance: ItpInstance,
    completion: ItpCompletion | None,
    advisories: list[AdvisoryResult],
    witness: AdvisoryResult | None = None,
) -> CompletionOutcome:
    progression = reevaluate_lot_status(db, instance.id)
    advisories.append(progression)
    if witness is not None:
        advisories.append(witness)
    db.commit()

    lot_status = progression.value if progression.ok and progression.value else instance.lot.status
    return CompletionOutcome(
        completion=completion,
        lot_status=lot_status,
        witness_notification=witness.value if witness is not None and witness.ok else None,
        advisories=advisories,
    )


def record_completion_use_case(*, db: Session, data: ItpCompletionCreate, current_user: User) -> CompletionOutcome:
    """
    Record an item outcome (completed / not applicable).

    Subcontractor items go to pending verification when the project requires
    it. Lot progression and the witness look-ahead run after the commit and
    never undo it.
    """
    instance = _get_instance_or_404(db=db, instance_id=data.itp_instance_id)
    lot = instance.lot
    require_project_permission(db, project_id=lot.project_id, user=current_user, permission="canCompleteItems")

    items = resolve_items(instance)
    item = find_item(items, data.checklist_item_id)
    if item is None:
        raise DomainError(
            code="ITP_ITEM_NOT_IN_CHECKLIST",
            http_status=400,
            message="Checklist item is not part of this ITP",
            details={"checklistItemId": str(data.checklist_item_id)},
        )

    quality = load_quality_settings(lot.project)
    needs_verification = item.responsible_party == "subcontractor" and quality.require_subcontractor_verification

    completion = db.query(ItpCompletion).filter(
        ItpCompletion.itp_instance_id == instance.id,
        ItpCompletion.checklist_item_id == data.checklist_item_id,
    ).first()
    if completion is None:
        completion = ItpCompletion(
            id=uuid.uuid4(),
            itp_instance_id=instance.id,
            checklist_item_id=data.checklist_item_id,
        )
        db.add(completion)
    previous_status = completion.status

    if needs_verification:
        completion.status = "pending_verification"
        completion.verification_status = "pending_verification"
    else:
        completion.status = data.status
        completion.verification_status = "none"
    completion.notes = data.notes
    completion.completed_at = _utc_now()
    completion.completed_by_id = current_user.id
    completion.rejection_reason = None
    completion.verified_at = None
    completion.verified_by_id = None

    record_audit(
        db,
        project_id=lot.project_id,
        action="itp_item_submitted" if needs_verification else "itp_item_completed",
        entity_type="itp_completion",
        entity_id=completion.id,
        user=current_user,
        details={
            "lotId": str(lot.id),
            "checklistItemId": item.id,
            "oldStatus": previous_status,
            "newStatus": completion.status,
        },
    )
    db.commit()

    advisories: list[AdvisoryResult] = []
    if needs_verification:
        advisories.append(
            run_advisory(
                "verification_request", db, _notify_verifiers,
                db, instance=instance, item=item, actor=current_user,
            )
        )
    witness = run_advisory(
        "witness_point_lookahead", db, check_and_notify_witness_point,
        db, instance=instance, completed_item_id=item.id, actor=current_user,
    )
    return _finish(db=db, instance=instance, completion=completion, advisories=advisories, witness=witness)


def verify_completion_use_case(
    *,
    db: Session,
    completion_id: UUID,
    data: CompletionVerifyRequest,
    current_user: User,
) -> CompletionOutcome:
    """Accept or reject a subcontractor submission."""
    completion = _get_completion_or_404(db=db, completion_id=completion_id)
    instance = completion.instance
    lot = instance.lot
    require_project_permission(db, project_id=lot.project_id, user=current_user, permission="canVerifyItems")

    if completion.status != "pending_verification":
        raise DomainError(
            code="COMPLETION_NOT_PENDING_VERIFICATION",
            http_status=409,
            message="Only items pending verification can be verified or rejected",
            details={"status": completion.status},
        )

    reason = (data.reason or "").strip()
    if data.decision == "reject" and not reason:
        raise DomainError(
            code="REJECTION_REASON_REQUIRED",
            http_status=400,
            message="A reason is required when rejecting an item",
        )

    now = _utc_now()
    if data.decision == "accept":
        completion.status = "completed"
        completion.verification_status = "verified"
        completion.rejection_reason = None
        action = "itp_item_verified"
    else:
        completion.status = "rejected"
        completion.verification_status = "rejected"
        completion.rejection_reason = reason
        action = "itp_item_rejected"
    completion.verified_at = now
    completion.verified_by_id = current_user.id

    record_audit(
        db,
        project_id=lot.project_id,
        action=action,
        entity_type="itp_completion",
        entity_id=completion.id,
        user=current_user,
        details={"lotId": str(lot.id), "reason": reason or None},
    )
    db.commit()

    advisories: list[AdvisoryResult] = []
    if data.decision == "reject":
        advisories.append(
            run_advisory(
                "rejection_notice", db, _notify_rejection,
                db, instance=instance, completion=completion, reason=reason,
            )
        )
    return _finish(db=db, instance=instance, completion=completion, advisories=advisories)


def remove_completion_use_case(*, db: Session, completion_id: UUID, current_user: User) -> CompletionOutcome:
    """Reset an item to "not acted on"."""
    completion = _get_completion_or_404(db=db, completion_id=completion_id)
    instance = completion.instance
    lot = instance.lot
    require_project_permission(db, project_id=lot.project_id, user=current_user, permission="canCompleteItems")

    record_audit(
        db,
        project_id=lot.project_id,
        action="itp_item_reset",
        entity_type="itp_completion",
        entity_id=completion.id,
        user=current_user,
        details={
            "lotId": str(lot.id),
            "checklistItemId": str(completion.checklist_item_id),
            "oldStatus": completion.status,
        },
    )
    db.delete(completion)
    db.commit()
    return _finish(db=db, instance=instance, completion=None, advisories=[])
