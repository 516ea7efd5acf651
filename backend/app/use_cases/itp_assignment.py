"""Attach an ITP template to a lot by freezing a snapshot of it."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import DomainError, conflict
from ..models import ItpCompletion, ItpInstance, ItpTemplate, Lot, User
from ..security import require_entity, require_project_member, require_project_permission
from ..services.audit_log import record_audit
from ..services.checklist_snapshot import ChecklistItemRecord, create_snapshot, resolve_items


@dataclass
class LotInstanceView:
    instance: ItpInstance
    items: list[ChecklistItemRecord]
    completions: list[ItpCompletion] = field(default_factory=list)

    @property
    def template_name(self) -> str | None:
        snapshot = self.instance.template_snapshot
        if isinstance(snapshot, dict) and snapshot.get("name"):
            return snapshot["name"]
        template = self.instance.template
        return template.name if template else None


def _get_lot_or_404(*, db: Session, lot_id: UUID) -> Lot:
    return require_entity(db, Lot, entity_id=lot_id, code="LOT_NOT_FOUND", message="Lot not found")


def assign_template_use_case(
    *,
    db: Session,
    lot_id: UUID,
    template_id: UUID,
    current_user: User,
) -> ItpInstance:
    """Create the lot's single ITP instance with a frozen checklist snapshot."""
    lot = _get_lot_or_404(db=db, lot_id=lot_id)
    template = require_entity(
        db,
        ItpTemplate,
        entity_id=template_id,
        code="ITP_TEMPLATE_NOT_FOUND",
        message="ITP template not found",
    )
    require_project_permission(
        db, project_id=lot.project_id, user=current_user, permission="canManageTemplates"
    )

    if template.project_id != lot.project_id:
        raise DomainError(
            code="ITP_TEMPLATE_PROJECT_MISMATCH",
            http_status=400,
            message="Template belongs to a different project",
        )

    existing = db.query(ItpInstance).filter(ItpInstance.lot_id == lot.id).first()
    if existing:
        raise conflict(
            "ITP_ALREADY_ASSIGNED",
            "An ITP is already assigned to this lot",
            details={"itpInstanceId": str(existing.id)},
        )

    snapshot = create_snapshot(template)
    instance = ItpInstance(
        id=uuid.uuid4(),
        lot_id=lot.id,
        template_id=template.id,
        template_snapshot=snapshot,
        created_by_id=current_user.id,
    )
    db.add(instance)
    record_audit(
        db,
        project_id=lot.project_id,
        action="itp_assigned",
        entity_type="itp_instance",
        entity_id=instance.id,
        user=current_user,
        details={
            "lotId": str(lot.id),
            "templateId": str(template.id),
            "templateName": template.name,
            "itemCount": len(snapshot["checklistItems"]),
        },
    )
    db.commit()
    return instance


def get_lot_instance_use_case(*, db: Session, lot_id: UUID, current_user: User) -> LotInstanceView:
    lot = _get_lot_or_404(db=db, lot_id=lot_id)
    require_project_member(db, project_id=lot.project_id, user=current_user)

    instance = db.query(ItpInstance).filter(ItpInstance.lot_id == lot.id).first()
    if not instance:
        raise DomainError(
            code="ITP_INSTANCE_NOT_FOUND",
            http_status=404,
            message="No ITP assigned to this lot",
        )

    completions = db.query(ItpCompletion).filter(ItpCompletion.itp_instance_id == instance.id).all()
    return LotInstanceView(instance=instance, items=resolve_items(instance), completions=completions)
