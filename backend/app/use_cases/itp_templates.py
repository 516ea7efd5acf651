"""ITP template use-cases. Template edits never reach existing instances."""
from __future__ import annotations

import uuid
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import DomainError, conflict
from ..models import ItpChecklistItem, ItpTemplate, User
from ..schemas import ChecklistItemCreate, ChecklistItemUpdate, ItpTemplateCreate
from ..security import require_entity, require_project_permission
from ..services.audit_log import record_audit


def _get_template_or_404(*, db: Session, template_id: UUID) -> ItpTemplate:
    return require_entity(
        db,
        ItpTemplate,
        entity_id=template_id,
        code="ITP_TEMPLATE_NOT_FOUND",
        message="ITP template not found",
    )


def _new_item(*, template_id: UUID, sequence_number: int, data: ChecklistItemCreate) -> ItpChecklistItem:
    return ItpChecklistItem(
        id=uuid.uuid4(),
        template_id=template_id,
        sequence_number=sequence_number,
        description=data.description,
        point_type=data.point_type,
        responsible_party=data.responsible_party,
        evidence_required=data.evidence_required,
        acceptance_criteria=data.acceptance_criteria,
        test_type=data.test_type,
    )


def create_template_use_case(*, db: Session, data: ItpTemplateCreate, current_user: User) -> ItpTemplate:
    """Create a template with its initial checklist items."""
    require_project_permission(
        db, project_id=data.project_id, user=current_user, permission="canManageTemplates"
    )

    template = ItpTemplate(
        id=uuid.uuid4(),
        project_id=data.project_id,
        name=data.name,
        description=data.description,
        activity_type=data.activity_type,
        is_active=True,
    )

    used: set[int] = set()
    for index, item_data in enumerate(data.checklist_items, start=1):
        sequence_number = item_data.sequence_number or index
        if sequence_number in used:
            raise conflict(
                "ITP_ITEM_SEQUENCE_CONFLICT",
                f"Duplicate sequence number {sequence_number}",
                details={"sequenceNumber": sequence_number},
            )
        used.add(sequence_number)
        template.checklist_items.append(
            _new_item(template_id=template.id, sequence_number=sequence_number, data=item_data)
        )

    db.add(template)
    record_audit(
        db,
        project_id=template.project_id,
        action="itp_template_created",
        entity_type="itp_template",
        entity_id=template.id,
        user=current_user,
        details={"name": template.name, "itemCount": len(template.checklist_items)},
    )
    db.commit()
    return template


def add_template_item_use_case(
    *,
    db: Session,
    template_id: UUID,
    data: ChecklistItemCreate,
    current_user: User,
) -> ItpChecklistItem:
    """Append (or insert at a free sequence number) an item on a template."""
    template = _get_template_or_404(db=db, template_id=template_id)
    require_project_permission(
        db, project_id=template.project_id, user=current_user, permission="canManageTemplates"
    )

    existing = {item.sequence_number for item in template.checklist_items}
    sequence_number = data.sequence_number or (max(existing, default=0) + 1)
    if sequence_number in existing:
        raise conflict(
            "ITP_ITEM_SEQUENCE_CONFLICT",
            f"Sequence number {sequence_number} is already used in this template",
            details={"sequenceNumber": sequence_number},
        )

    item = _new_item(template_id=template.id, sequence_number=sequence_number, data=data)
    db.add(item)
    record_audit(
        db,
        project_id=template.project_id,
        action="itp_item_added",
        entity_type="itp_template",
        entity_id=template.id,
        user=current_user,
        details={"itemId": str(item.id), "sequenceNumber": sequence_number},
    )
    db.commit()
    return item


def update_template_item_use_case(
    *,
    db: Session,
    template_id: UUID,
    item_id: UUID,
    data: ChecklistItemUpdate,
    current_user: User,
) -> ItpChecklistItem:
    template = _get_template_or_404(db=db, template_id=template_id)
    require_project_permission(
        db, project_id=template.project_id, user=current_user, permission="canManageTemplates"
    )

    item = db.query(ItpChecklistItem).filter(
        ItpChecklistItem.id == item_id,
        ItpChecklistItem.template_id == template.id,
    ).first()
    if not item:
        raise DomainError(
            code="ITP_ITEM_NOT_FOUND",
            http_status=404,
            message="Checklist item not found",
        )

    changes = data.model_dump(exclude_unset=True)
    for field_name, value in changes.items():
        setattr(item, field_name, value)

    record_audit(
        db,
        project_id=template.project_id,
        action="itp_item_updated",
        entity_type="itp_template",
        entity_id=template.id,
        user=current_user,
        details={"itemId": str(item.id), "fields": sorted(changes)},
    )
    db.commit()
    return item
