"""Lot conformance: prerequisite read model and the authoritative conform action."""
from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import DomainError, conflict
from ..models import Lot, User
from ..security import require_entity, require_project_member, require_project_permission
from ..services.audit_log import record_audit
from ..services.conformance import ConformanceCheck, load_prerequisites
from ..services.hold_point_rules import monotonic_after

LOCKED_LOT_STATUSES = frozenset({"conformed", "claimed"})


def _get_lot_or_404(*, db: Session, lot_id: UUID) -> Lot:
    return require_entity(db, Lot, entity_id=lot_id, code="LOT_NOT_FOUND", message="Lot not found")


def get_conformance_prerequisites_use_case(
    *,
    db: Session,
    lot_id: UUID,
    current_user: User,
) -> tuple[Lot, ConformanceCheck]:
    lot = _get_lot_or_404(db=db, lot_id=lot_id)
    require_project_member(db, project_id=lot.project_id, user=current_user)
    return lot, load_prerequisites(db, lot=lot)


def conform_lot_use_case(
    *,
    db: Session,
    lot_id: UUID,
    current_user: User,
    expected_updated_at: datetime | None = None,
) -> Lot:
    """
    Declare a lot conformant.

    Prerequisites are re-derived from the underlying facts here; the cached
    lot status is never trusted.
    """
    lot = _get_lot_or_404(db=db, lot_id=lot_id)
    require_project_permission(db, project_id=lot.project_id, user=current_user, permission="canConformLots")

    if lot.status in LOCKED_LOT_STATUSES:
        raise conflict(
            "LOT_ALREADY_CONFORMED",
            f"Lot is already {lot.status}",
            details={"status": lot.status},
        )

    check = load_prerequisites(db, lot=lot)
    if not check.can_conform:
        raise DomainError(
            code="CONFORMANCE_PREREQUISITES_NOT_MET",
            http_status=400,
            message="Lot cannot be conformed until all prerequisites are met",
            details={
                "blocking_reasons": check.blocking_reasons,
                "prerequisites": asdict(check.prerequisites),
            },
        )

    observed_updated_at = expected_updated_at or lot.updated_at
    now = datetime.now(timezone.utc)
    previous_status = lot.status
    updated = db.query(Lot).filter(
        Lot.id == lot.id,
        Lot.updated_at == observed_updated_at,
    ).update(
        {
            "status": "conformed",
            "conformed_at": now,
            "conformed_by_id": current_user.id,
            "updated_at": monotonic_after(observed_updated_at, now),
        },
        synchronize_session=False,
    )
    if not updated:
        raise conflict(
            "LOT_CONCURRENT_MODIFICATION",
            "Lot was modified by another request; reload and try again",
        )

    record_audit(
        db,
        project_id=lot.project_id,
        action="lot_conformed",
        entity_type="lot",
        entity_id=lot.id,
        user=current_user,
        details={"oldStatus": previous_status, "newStatus": "conformed"},
    )
    db.commit()
    db.refresh(lot)
    return lot
