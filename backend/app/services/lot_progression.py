"""Lot status derived from checklist completion state."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from ..models import ItpCompletion, ItpInstance, Lot
from .advisory import AdvisoryResult, run_advisory
from .checklist_snapshot import ChecklistItemRecord, resolve_items
from .hold_point_rules import monotonic_after

logger = logging.getLogger(__name__)

FROZEN_LOT_STATUSES = frozenset({"conformed", "claimed", "ncr_raised"})
FINISHED_COMPLETION_STATUSES = frozenset({"completed", "not_applicable"})


def finished_item_ids(completions: Iterable) -> set[str]:
    """Item ids whose completion counts as done (rejected/pending never do)."""
    return {
        str(completion.checklist_item_id)
        for completion in completions
        if completion.status in FINISHED_COMPLETION_STATUSES
    }


def _step(status: str, items: list[ChecklistItemRecord], finished: set[str]) -> str | None:
    test_items = [item for item in items if item.is_test_item]
    non_test_items = [item for item in items if not item.is_test_item]
    completed_count = sum(1 for item in items if item.id in finished)
    non_test_done = all(item.id in finished for item in non_test_items)
    tests_done = all(item.id in finished for item in test_items)

    if status == "not_started" and completed_count > 0:
        return "in_progress"
    if status in ("in_progress", "not_started") and non_test_items and non_test_done and not tests_done:
        return "awaiting_test"
    if status in ("in_progress", "not_started", "awaiting_test") and non_test_done and tests_done:
        return "completed"
    return None


def next_lot_status(status: str, items: list[ChecklistItemRecord], finished: set[str]) -> str:
    """
    Apply the progression rules until none fires.

    Frozen statuses and empty checklists are returned unchanged.
    """
    if status in FROZEN_LOT_STATUSES or not items:
        return status
    current = status
    # Each rule only moves forward, so the chain is bounded.
    for _ in range(len(items) + 4):
        new_status = _step(current, items, finished)
        if new_status is None or new_status == current:
            break
        current = new_status
    return current


def _reevaluate(db: Session, instance_id: UUID) -> str | None:
    instance = db.query(ItpInstance).filter(ItpInstance.id == instance_id).first()
    if not instance or not instance.lot:
        return None
    lot = instance.lot
    if lot.status in FROZEN_LOT_STATUSES:
        return None

    items = resolve_items(instance)
    if not items:
        return None

    completions = db.query(ItpCompletion).filter(ItpCompletion.itp_instance_id == instance.id).all()
    new_status = next_lot_status(lot.status, items, finished_item_ids(completions))
    if new_status == lot.status:
        return None

    observed_updated_at = lot.updated_at
    updated = db.query(Lot).filter(
        Lot.id == lot.id,
        Lot.updated_at == observed_updated_at,
    ).update(
        {"status": new_status, "updated_at": monotonic_after(observed_updated_at, datetime.now(timezone.utc))},
        synchronize_session=False,
    )
    if not updated:
        logger.info("Lot %s changed concurrently, skipping status update to %s", lot.id, new_status)
        return None

    logger.info("Lot %s status %s -> %s", lot.id, lot.status, new_status)
    return new_status


def reevaluate_lot_status(db: Session, instance_id: UUID) -> AdvisoryResult:
    """Idempotent re-derivation of the lot status; never raises."""
    return run_advisory("lot_progression", db, _reevaluate, db, instance_id)
