"""Lot conformance endpoints."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import (
    ConformanceCheckResponse,
    ConformancePrerequisitesResponse,
    ConformRequest,
    LotResponse,
)
from ..use_cases.lot_conformance import conform_lot_use_case, get_conformance_prerequisites_use_case

router = APIRouter(prefix="/lots", tags=["lots"])


@router.get("/{lot_id}/conformance-prerequisites", response_model=ConformanceCheckResponse)
def get_conformance_prerequisites(
    lot_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Read-only prerequisite check for the conform action."""
    lot, check = get_conformance_prerequisites_use_case(db=db, lot_id=lot_id, current_user=current_user)
    return ConformanceCheckResponse(
        lot=LotResponse.model_validate(lot),
        prerequisites=ConformancePrerequisitesResponse.model_validate(check.prerequisites),
        can_conform=check.can_conform,
        blocking_reasons=check.blocking_reasons,
    )


@router.post("/{lot_id}/conform", response_model=LotResponse)
def conform_lot(
    lot_id: UUID,
    data: Optional[ConformRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return conform_lot_use_case(
        db=db,
        lot_id=lot_id,
        current_user=current_user,
        expected_updated_at=data.expected_updated_at if data else None,
    )
