from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from app.domain_errors import DomainError
from app.models import AuditEvent, ItpChecklistItem, ItpCompletion, ItpInstance, ItpTemplate, Lot, ProjectUser
from app.schemas import ChecklistItemCreate, ChecklistItemUpdate, ItpTemplateCreate
from app.services.checklist_snapshot import resolve_items
from app.use_cases.itp_assignment import assign_template_use_case, get_lot_instance_use_case
from app.use_cases.itp_templates import (
    add_template_item_use_case,
    create_template_use_case,
    update_template_item_use_case,
)
from session_stubs import SessionStub


def _manager():
    return SimpleNamespace(id=uuid4(), display_name="Quinn Quality")


def _membership(role="quality_manager"):
    return [SimpleNamespace(role=role)]


def _item(sequence_number, description, **overrides):
    values = {
        "id": uuid4(),
        "description": description,
        "sequence_number": sequence_number,
        "point_type": "standard",
        "responsible_party": "contractor",
        "evidence_required": None,
        "acceptance_criteria": None,
        "test_type": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_create_template_numbers_items_in_order() -> None:
    db = SessionStub(results={ProjectUser: _membership()})
    project_id = uuid4()

    template = create_template_use_case(
        db=db,
        data=ItpTemplateCreate(
            project_id=project_id,
            name="Earthworks",
            checklist_items=[
                ChecklistItemCreate(description="Set out"),
                ChecklistItemCreate(description="Proof roll", point_type="witness"),
            ],
        ),
        current_user=_manager(),
    )

    assert db.added_of(ItpTemplate) == [template]
    assert [(i.sequence_number, i.point_type) for i in template.checklist_items] == [(1, "standard"), (2, "witness")]
    assert db.added_of(AuditEvent)[0].details["itemCount"] == 2
    assert db.commit_calls == 1


def test_create_template_rejects_duplicate_sequence_numbers() -> None:
    db = SessionStub(results={ProjectUser: _membership()})

    with pytest.raises(DomainError) as exc:
        create_template_use_case(
            db=db,
            data=ItpTemplateCreate(
                project_id=uuid4(),
                name="Dup",
                checklist_items=[
                    ChecklistItemCreate(description="A", sequence_number=2),
                    ChecklistItemCreate(description="B", sequence_number=2),
                ],
            ),
            current_user=_manager(),
        )

    assert exc.value.code == "ITP_ITEM_SEQUENCE_CONFLICT"
    assert exc.value.http_status == 409


def test_foreman_cannot_manage_templates() -> None:
    db = SessionStub(results={ProjectUser: _membership("foreman")})

    with pytest.raises(DomainError) as exc:
        create_template_use_case(
            db=db,
            data=ItpTemplateCreate(project_id=uuid4(), name="Nope"),
            current_user=_manager(),
        )

    assert exc.value.code == "PERMISSION_DENIED"


def test_added_item_takes_next_free_sequence_number() -> None:
    template = SimpleNamespace(id=uuid4(), project_id=uuid4(), checklist_items=[_item(1, "A"), _item(4, "B")])
    db = SessionStub(results={ItpTemplate: [template], ProjectUser: _membership()})

    item = add_template_item_use_case(
        db=db,
        template_id=template.id,
        data=ChecklistItemCreate(description="C", point_type="hold"),
        current_user=_manager(),
    )

    assert item.sequence_number == 5
    assert db.added_of(ItpChecklistItem) == [item]


def test_added_item_with_taken_sequence_conflicts() -> None:
    template = SimpleNamespace(id=uuid4(), project_id=uuid4(), checklist_items=[_item(1, "A")])
    db = SessionStub(results={ItpTemplate: [template], ProjectUser: _membership()})

    with pytest.raises(DomainError) as exc:
        add_template_item_use_case(
            db=db,
            template_id=template.id,
            data=ChecklistItemCreate(description="Clash", sequence_number=1),
            current_user=_manager(),
        )

    assert exc.value.code == "ITP_ITEM_SEQUENCE_CONFLICT"


def test_updating_an_item_changes_only_sent_fields() -> None:
    item = _item(1, "Old", acceptance_criteria="95% MDD")
    template = SimpleNamespace(id=uuid4(), project_id=uuid4(), checklist_items=[item])
    db = SessionStub(results={ItpTemplate: [template], ItpChecklistItem: [item], ProjectUser: _membership()})

    update_template_item_use_case(
        db=db,
        template_id=template.id,
        item_id=item.id,
        data=ChecklistItemUpdate(description="New"),
        current_user=_manager(),
    )

    assert item.description == "New"
    assert item.acceptance_criteria == "95% MDD"
    assert db.added_of(AuditEvent)[0].details["fields"] == ["description"]


def test_missing_template_is_not_found() -> None:
    db = SessionStub(results={ProjectUser: _membership()})

    with pytest.raises(DomainError) as exc:
        add_template_item_use_case(
            db=db,
            template_id=uuid4(),
            data=ChecklistItemCreate(description="X"),
            current_user=_manager(),
        )

    assert exc.value.code == "ITP_TEMPLATE_NOT_FOUND"
    assert exc.value.http_status == 404


def _lot_and_template():
    project_id = uuid4()
    lot = SimpleNamespace(id=uuid4(), project_id=project_id)
    template = SimpleNamespace(
        id=uuid4(),
        project_id=project_id,
        name="Earthworks",
        description=None,
        activity_type="earthworks",
        checklist_items=[_item(2, "Compaction", test_type="compaction"), _item(1, "Set out")],
    )
    return lot, template


def test_assignment_freezes_the_template() -> None:
    lot, template = _lot_and_template()
    db = SessionStub(results={Lot: [lot], ItpTemplate: [template], ProjectUser: _membership()})

    instance = assign_template_use_case(db=db, lot_id=lot.id, template_id=template.id, current_user=_manager())

    assert db.added_of(ItpInstance) == [instance]
    assert instance.template_snapshot["name"] == "Earthworks"
    template.checklist_items[1].description = "Renamed after assignment"
    assert [record.description for record in resolve_items(instance)] == ["Set out", "Compaction"]


def test_second_assignment_conflicts() -> None:
    lot, template = _lot_and_template()
    db = SessionStub(
        results={
            Lot: [lot],
            ItpTemplate: [template],
            ProjectUser: _membership(),
            ItpInstance: [SimpleNamespace(id=uuid4())],
        }
    )

    with pytest.raises(DomainError) as exc:
        assign_template_use_case(db=db, lot_id=lot.id, template_id=template.id, current_user=_manager())

    assert exc.value.code == "ITP_ALREADY_ASSIGNED"
    assert exc.value.http_status == 409
    assert db.added == []


def test_template_from_another_project_is_rejected() -> None:
    lot, template = _lot_and_template()
    template.project_id = uuid4()
    db = SessionStub(results={Lot: [lot], ItpTemplate: [template], ProjectUser: _membership()})

    with pytest.raises(DomainError) as exc:
        assign_template_use_case(db=db, lot_id=lot.id, template_id=template.id, current_user=_manager())

    assert exc.value.code == "ITP_TEMPLATE_PROJECT_MISMATCH"


def test_lot_instance_view_reads_the_snapshot_name() -> None:
    lot, template = _lot_and_template()
    instance = SimpleNamespace(
        id=uuid4(),
        template=None,
        template_snapshot={"name": "Frozen name", "checklistItems": [{"id": str(uuid4()), "sequenceNumber": 1}]},
    )
    completion = SimpleNamespace(id=uuid4())
    db = SessionStub(
        results={Lot: [lot], ProjectUser: _membership("foreman"), ItpInstance: [instance], ItpCompletion: [completion]}
    )

    view = get_lot_instance_use_case(db=db, lot_id=lot.id, current_user=_manager())

    assert view.template_name == "Frozen name"
    assert len(view.items) == 1
    assert view.completions == [completion]
