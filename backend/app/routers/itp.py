"""ITP endpoints: templates, lot assignment and checklist completions."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import (
    ChecklistItemCreate,
    ChecklistItemResponse,
    ChecklistItemUpdate,
    ChecklistItemView,
    CompletionActionResponse,
    CompletionVerifyRequest,
    ItpAssignRequest,
    ItpCompletionCreate,
    ItpCompletionResponse,
    ItpInstanceResponse,
    ItpTemplateCreate,
    ItpTemplateResponse,
)
from ..use_cases.itp_assignment import (
    LotInstanceView,
    assign_template_use_case,
    get_lot_instance_use_case,
)
from ..use_cases.itp_completions import (
    CompletionOutcome,
    record_completion_use_case,
    remove_completion_use_case,
    verify_completion_use_case,
)
from ..use_cases.itp_templates import (
    add_template_item_use_case,
    create_template_use_case,
    update_template_item_use_case,
)

router = APIRouter(prefix="/itp", tags=["itp"])


def _instance_response(view: LotInstanceView) -> ItpInstanceResponse:
    return ItpInstanceResponse(
        id=view.instance.id,
        lot_id=view.instance.lot_id,
        template_id=view.instance.template_id,
        template_name=view.template_name,
        created_at=view.instance.created_at,
        checklist_items=[ChecklistItemView.model_validate(item) for item in view.items],
        completions=[ItpCompletionResponse.model_validate(c) for c in view.completions],
    )


def _completion_response(outcome: CompletionOutcome) -> CompletionActionResponse:
    return CompletionActionResponse(
        completion=ItpCompletionResponse.model_validate(outcome.completion) if outcome.completion else None,
        lot_status=outcome.lot_status,
        witness_notification=outcome.witness_notification,
        advisories=[{"name": a.name, "ok": a.ok, "error": a.error} for a in outcome.advisories],
    )


@router.post("/templates", response_model=ItpTemplateResponse, status_code=201)
def create_template(
    data: ItpTemplateCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create ITP template with checklist items."""
    return create_template_use_case(db=db, data=data, current_user=current_user)


@router.post("/templates/{template_id}/items", response_model=ChecklistItemResponse, status_code=201)
def add_template_item(
    template_id: UUID,
    data: ChecklistItemCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return add_template_item_use_case(db=db, template_id=template_id, data=data, current_user=current_user)


@router.patch("/templates/{template_id}/items/{item_id}", response_model=ChecklistItemResponse)
def update_template_item(
    template_id: UUID,
    item_id: UUID,
    data: ChecklistItemUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Edit a template item. Lots that already have the ITP keep their snapshot."""
    return update_template_item_use_case(
        db=db,
        template_id=template_id,
        item_id=item_id,
        data=data,
        current_user=current_user,
    )


@router.post("/instances", response_model=ItpInstanceResponse, status_code=201)
def assign_template(
    data: ItpAssignRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Assign ITP template to lot."""
    assign_template_use_case(
        db=db,
        lot_id=data.lot_id,
        template_id=data.template_id,
        current_user=current_user,
    )
    view = get_lot_instance_use_case(db=db, lot_id=data.lot_id, current_user=current_user)
    return _instance_response(view)


@router.get("/instances/lot/{lot_id}", response_model=ItpInstanceResponse)
def get_lot_instance(
    lot_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    view = get_lot_instance_use_case(db=db, lot_id=lot_id, current_user=current_user)
    return _instance_response(view)


@router.post("/completions", response_model=CompletionActionResponse)
def record_completion(
    data: ItpCompletionCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Complete (or mark N/A) a checklist item."""
    outcome = record_completion_use_case(db=db, data=data, current_user=current_user)
    return _completion_response(outcome)


@router.post("/completions/{completion_id}/verify", response_model=CompletionActionResponse)
def verify_completion(
    completion_id: UUID,
    data: CompletionVerifyRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    outcome = verify_completion_use_case(
        db=db,
        completion_id=completion_id,
        data=data,
        current_user=current_user,
    )
    return _completion_response(outcome)


@router.delete("/completions/{completion_id}", response_model=CompletionActionResponse)
def remove_completion(
    completion_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    outcome = remove_completion_use_case(db=db, completion_id=completion_id, current_user=current_user)
    return _completion_response(outcome)
