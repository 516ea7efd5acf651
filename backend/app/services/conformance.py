"""Conformance prerequisites, recomputed from source facts on every call."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.orm import Session

from ..models import ItpCompletion, ItpInstance, Ncr, NcrLot, TestResult
from .checklist_snapshot import ChecklistItemRecord, resolve_items
from .lot_progression import finished_item_ids

CLOSED_NCR_STATUSES = frozenset({"closed", "closed_concession"})


@dataclass
class ConformancePrerequisites:
    itp_assigned: bool = False
    itp_completed: bool = False
    itp_completed_count: int = 0
    itp_total_count: int = 0
    itp_incomplete_items: list[dict[str, Any]] = field(default_factory=list)
    has_passing_test: bool = False
    test_results: list[dict[str, Any]] = field(default_factory=list)
    no_open_ncrs: bool = True
    open_ncrs: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ConformanceCheck:
    prerequisites: ConformancePrerequisites
    can_conform: bool
    blocking_reasons: list[str]


def evaluate_prerequisites(
    *,
    items: list[ChecklistItemRecord] | None,
    completions: Iterable,
    test_results: Iterable,
    ncrs: Iterable,
) -> ConformanceCheck:
    """
    Pure evaluation. ``items`` is None when no ITP is assigned.

    Completed and not-applicable items satisfy the checklist; pending
    verification and rejected ones do not.
    """
    prerequisites = ConformancePrerequisites()

    if items is not None:
        prerequisites.itp_assigned = True
        finished = finished_item_ids(completions)
        prerequisites.itp_total_count = len(items)
        prerequisites.itp_completed_count = sum(1 for item in items if item.id in finished)
        prerequisites.itp_completed = (
            len(items) > 0 and prerequisites.itp_completed_count == len(items)
        )
        prerequisites.itp_incomplete_items = [
            {"id": item.id, "description": item.description, "point_type": item.point_type}
            for item in items
            if item.id not in finished
        ]

    test_results = list(test_results)
    prerequisites.test_results = [
        {"id": str(t.id), "test_type": t.test_type, "pass_fail": t.pass_fail, "status": t.status}
        for t in test_results
    ]
    prerequisites.has_passing_test = any(
        t.pass_fail == "pass" and t.status == "verified" for t in test_results
    )

    open_ncrs = [ncr for ncr in ncrs if ncr.status not in CLOSED_NCR_STATUSES]
    prerequisites.open_ncrs = [
        {"id": str(ncr.id), "ncr_number": ncr.ncr_number, "description": ncr.description, "status": ncr.status}
        for ncr in open_ncrs
    ]
    prerequisites.no_open_ncrs = not open_ncrs

    blocking_reasons: list[str] = []
    if not prerequisites.itp_assigned:
        blocking_reasons.append("No ITP assigned to this lot")
    elif not prerequisites.itp_completed:
        blocking_reasons.append(
            f"ITP checklist incomplete ({prerequisites.itp_completed_count}/"
            f"{prerequisites.itp_total_count} items completed)"
        )
    if not prerequisites.has_passing_test:
        blocking_reasons.append("No passing verified test result")
    if not prerequisites.no_open_ncrs:
        blocking_reasons.append(f"{len(prerequisites.open_ncrs)} open NCR(s) must be closed")

    can_conform = (
        prerequisites.itp_assigned
        and prerequisites.itp_completed
        and prerequisites.has_passing_test
        and prerequisites.no_open_ncrs
    )
    return ConformanceCheck(
        prerequisites=prerequisites,
        can_conform=can_conform,
        blocking_reasons=blocking_reasons,
    )


def load_prerequisites(db: Session, *, lot: Any) -> ConformanceCheck:
    """Read the facts for a lot and evaluate them."""
    instance = db.query(ItpInstance).filter(ItpInstance.lot_id == lot.id).first()
    items = None
    completions: list = []
    if instance is not None:
        items = resolve_items(instance)
        completions = db.query(ItpCompletion).filter(ItpCompletion.itp_instance_id == instance.id).all()

    test_results = db.query(TestResult).filter(TestResult.lot_id == lot.id).all()
    ncrs = db.query(Ncr).join(NcrLot, NcrLot.ncr_id == Ncr.id).filter(NcrLot.lot_id == lot.id).all()

    return evaluate_prerequisites(
        items=items,
        completions=completions,
        test_results=test_results,
        ncrs=ncrs,
    )
