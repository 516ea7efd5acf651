from __future__ import annotations

import json
from types import SimpleNamespace
from uuid import uuid4

from app.services.checklist_snapshot import create_snapshot, find_item, resolve_items


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


def _template(items):
    return SimpleNamespace(
        id=uuid4(),
        name="Earthworks",
        description=None,
        activity_type="earthworks",
        checklist_items=items,
    )


def test_snapshot_orders_items_and_uses_camel_case_keys() -> None:
    later = _item(2, "Compaction test", evidence_required="test", test_type="compaction")
    first = _item(1, "Set out")
    snapshot = create_snapshot(_template([later, first]))

    assert [raw["sequenceNumber"] for raw in snapshot["checklistItems"]] == [1, 2]
    assert snapshot["checklistItems"][1]["testType"] == "compaction"
    assert snapshot["checklistItems"][0]["id"] == str(first.id)


def test_template_edits_after_assignment_do_not_change_the_instance() -> None:
    item = _item(1, "Original wording")
    template = _template([item])
    instance = SimpleNamespace(template_snapshot=create_snapshot(template), template=template)

    item.description = "Edited wording"
    template.checklist_items.append(_item(2, "Added later"))

    items = resolve_items(instance)
    assert [record.description for record in items] == ["Original wording"]


def test_point_type_aliases_are_normalized() -> None:
    template = _template([
        _item(1, "Hold", point_type="hold_point"),
        _item(2, "Witness", point_type="witness_point"),
        _item(3, "Plain", point_type=None),
    ])
    items = resolve_items(SimpleNamespace(template_snapshot=create_snapshot(template), template=None))

    assert [record.point_type for record in items] == ["hold", "witness", "standard"]
    assert items[0].is_hold_point
    assert items[1].is_witness_point


def test_snapshot_stored_as_json_string_is_read() -> None:
    template = _template([_item(1, "Survey")])
    instance = SimpleNamespace(template_snapshot=json.dumps(create_snapshot(template)), template=None)

    items = resolve_items(instance)
    assert len(items) == 1
    assert items[0].description == "Survey"


def test_live_template_is_used_only_without_a_snapshot() -> None:
    template = _template([_item(2, "Second"), _item(1, "First")])
    instance = SimpleNamespace(template_snapshot=None, template=template)

    assert [record.description for record in resolve_items(instance)] == ["First", "Second"]
    assert resolve_items(SimpleNamespace(template_snapshot=None, template=None)) == []


def test_test_items_are_detected_by_evidence_or_test_type() -> None:
    template = _template([
        _item(1, "By evidence", evidence_required="test"),
        _item(2, "By type", test_type="density"),
        _item(3, "Neither", evidence_required="photo"),
    ])
    items = resolve_items(SimpleNamespace(template_snapshot=create_snapshot(template), template=None))

    assert [record.is_test_item for record in items] == [True, True, False]


def test_find_item_accepts_uuid_or_string() -> None:
    item = _item(1, "Survey")
    items = resolve_items(SimpleNamespace(template_snapshot=None, template=_template([item])))

    assert find_item(items, item.id).description == "Survey"
    assert find_item(items, str(item.id)).description == "Survey"
    assert find_item(items, uuid4()) is None
