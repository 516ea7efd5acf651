"""Frozen checklist snapshots and the single item-resolution read path."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

POINT_TYPE_ALIASES = {
    "hold_point": "hold",
    "witness_point": "witness",
}


@dataclass(frozen=True)
class ChecklistItemRecord:
    """Immutable checklist item as seen by the workflow."""

    id: str
    description: str
    sequence_number: int
    point_type: str = "standard"
    responsible_party: str = "contractor"
    evidence_required: str | None = None
    acceptance_criteria: str | None = None
    test_type: str | None = None

    @property
    def is_test_item(self) -> bool:
        return self.evidence_required == "test" or bool(self.test_type)

    @property
    def is_hold_point(self) -> bool:
        return self.point_type == "hold"

    @property
    def is_witness_point(self) -> bool:
        return self.point_type == "witness"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "sequenceNumber": self.sequence_number,
            "pointType": self.point_type,
            "responsibleParty": self.responsible_party,
            "evidenceRequired": self.evidence_required,
            "acceptanceCriteria": self.acceptance_criteria,
            "testType": self.test_type,
        }


def normalize_point_type(value: str | None) -> str:
    if not value:
        return "standard"
    return POINT_TYPE_ALIASES.get(value, value)


def _record_from_item(item: Any) -> ChecklistItemRecord:
    return ChecklistItemRecord(
        id=str(item.id),
        description=item.description,
        sequence_number=int(item.sequence_number),
        point_type=normalize_point_type(item.point_type),
        responsible_party=item.responsible_party or "contractor",
        evidence_required=item.evidence_required,
        acceptance_criteria=item.acceptance_criteria,
        test_type=item.test_type,
    )


def _record_from_snapshot(raw: dict[str, Any]) -> ChecklistItemRecord:
    return ChecklistItemRecord(
        id=str(raw["id"]),
        description=raw.get("description") or "",
        sequence_number=int(raw.get("sequenceNumber") or 0),
        point_type=normalize_point_type(raw.get("pointType")),
        responsible_party=raw.get("responsibleParty") or "contractor",
        evidence_required=raw.get("evidenceRequired"),
        acceptance_criteria=raw.get("acceptanceCriteria"),
        test_type=raw.get("testType"),
    )


def create_snapshot(template: Any) -> dict[str, Any]:
    """Deep copy of a template and its items, ordered by sequence number."""
    items = sorted(template.checklist_items or [], key=lambda item: item.sequence_number)
    return {
        "id": str(template.id),
        "name": template.name,
        "description": template.description,
        "activityType": template.activity_type,
        "checklistItems": [_record_from_item(item).to_dict() for item in items],
    }


def _load_snapshot(snapshot: Any) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    if isinstance(snapshot, str):
        # Legacy rows stored the snapshot as a JSON string.
        try:
            snapshot = json.loads(snapshot)
        except ValueError:
            logger.warning("Unreadable checklist snapshot, falling back to template")
            return None
    if not isinstance(snapshot, dict):
        return None
    return snapshot


def resolve_items(instance: Any) -> list[ChecklistItemRecord]:
    """
    Checklist items for an instance.

    The stored snapshot wins; the live template is only consulted when the
    instance has no snapshot at all.
    """
    snapshot = _load_snapshot(getattr(instance, "template_snapshot", None))
    if snapshot is not None:
        records = [_record_from_snapshot(raw) for raw in snapshot.get("checklistItems") or []]
    else:
        template = getattr(instance, "template", None)
        if template is None:
            return []
        records = [_record_from_item(item) for item in template.checklist_items or []]
    return sorted(records, key=lambda record: record.sequence_number)


def find_item(items: list[ChecklistItemRecord], item_id: Any) -> ChecklistItemRecord | None:
    key = str(item_id)
    for item in items:
        if item.id == key:
            return item
    return None
