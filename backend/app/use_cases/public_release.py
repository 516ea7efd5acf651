"""No-login hold point release through single-use links."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from ..domain_errors import DomainError
from ..models import HoldPoint, HoldPointReleaseToken, ItpCompletion, ItpInstance, TestResult
from ..schemas import PublicReleaseRequest
from ..services.advisory import run_advisory
from ..services.audit_log import record_audit
from ..services.checklist_snapshot import find_item, resolve_items
from ..services.hold_point_rules import assert_token_usable, ensure_not_released, utc_now
from ..services.notifications import notify, queue_external_email
from .hold_points import mark_hold_point_released

logger = logging.getLogger(__name__)


@dataclass
class PublicHoldPointSummary:
    hold_point: HoldPoint
    release_token: HoldPointReleaseToken
    evidence: list[dict[str, Any]]
    test_results: list[dict[str, Any]]


def _get_usable_token(*, db: Session, token: str, now: datetime) -> HoldPointReleaseToken:
    release_token = db.query(HoldPointReleaseToken).filter(HoldPointReleaseToken.token == token).first()
    assert_token_usable(release_token, now)
    return release_token


def _evidence_for(db: Session, hold_point: HoldPoint) -> list[dict[str, Any]]:
    """Checklist items up to and including the hold point, with completion state."""
    instance = db.query(ItpInstance).filter(ItpInstance.lot_id == hold_point.lot_id).first()
    if instance is None:
        return []
    items = resolve_items(instance)
    target = find_item(items, hold_point.checklist_item_id)
    completions = {
        str(c.checklist_item_id): c
        for c in db.query(ItpCompletion).filter(ItpCompletion.itp_instance_id == instance.id).all()
    }
    evidence = []
    for item in items:
        if target is not None and item.sequence_number > target.sequence_number:
            break
        completion = completions.get(item.id)
        evidence.append(
            {
                "id": item.id,
                "description": item.description,
                "sequence_number": item.sequence_number,
                "point_type": item.point_type,
                "is_completed": bool(completion and completion.status in ("completed", "not_applicable")),
                "completed_at": completion.completed_at if completion else None,
                "notes": completion.notes if completion else None,
            }
        )
    return evidence


def view_by_token_use_case(*, db: Session, token: str) -> PublicHoldPointSummary:
    """Read-only view for the release page; does not consume the token."""
    release_token = _get_usable_token(db=db, token=token, now=utc_now())
    hold_point = release_token.hold_point

    test_results = db.query(TestResult).filter(
        TestResult.lot_id == hold_point.lot_id,
        TestResult.status == "verified",
    ).all()
    return PublicHoldPointSummary(
        hold_point=hold_point,
        release_token=release_token,
        evidence=_evidence_for(db, hold_point),
        test_results=[
            {
                "id": str(t.id),
                "test_type": t.test_type,
                "test_request_number": t.test_request_number,
                "laboratory_name": t.laboratory_name,
                "pass_fail": t.pass_fail,
            }
            for t in test_results
        ],
    )


def _send_release_confirmations(
    db: Session,
    *,
    hold_point: HoldPoint,
    release_token: HoldPointReleaseToken,
    released_by_name: str,
) -> int:
    lot = hold_point.lot
    sent = 0
    if hold_point.requested_by_id:
        notify(
            db,
            user_id=hold_point.requested_by_id,
            project_id=lot.project_id,
            type="hold_point_released",
            title=f"Hold point released: {hold_point.description}",
            message=f"{released_by_name} released the hold point on lot {lot.lot_number} via secure link.",
            link_url=f"/projects/{lot.project_id}/lots/{lot.id}?tab=holdpoints&hp={hold_point.id}",
        )
        sent += 1
    queue_external_email(
        db,
        email=release_token.recipient_email,
        project_id=lot.project_id,
        type="hold_point_release_confirmation",
        subject=f"Hold point release confirmed - lot {lot.lot_number}",
        message=f"Thank you. Your release of \"{hold_point.description}\" on lot {lot.lot_number} was recorded.",
        idempotency_key=f"hold_point_release_confirmation:{release_token.id}",
    )
    return sent + 1


def release_by_token_use_case(*, db: Session, token: str, data: PublicReleaseRequest) -> HoldPoint:
    """
    Release a hold point through its secure link.

    The token is consumed with one conditional UPDATE; if no row matches, the
    link was used or expired by a concurrent request.
    """
    now = utc_now()
    release_token = _get_usable_token(db=db, token=token, now=now)
    hold_point = release_token.hold_point
    ensure_not_released(hold_point)

    consumed = db.query(HoldPointReleaseToken).filter(
        HoldPointReleaseToken.id == release_token.id,
        HoldPointReleaseToken.used_at == None,
        HoldPointReleaseToken.expires_at > now,
    ).update({"used_at": now}, synchronize_session=False)
    if not consumed:
        raise DomainError(
            code="RELEASE_TOKEN_USED",
            http_status=410,
            message="This release link is no longer valid",
        )

    mark_hold_point_released(
        db,
        hold_point=hold_point,
        released_by_name=data.released_by_name,
        released_by_org=data.released_by_org,
        release_notes=data.release_notes,
        signature_data_url=data.signature_data_url,
        method="secure_link",
        verified_by_id=None,
        now=now,
    )
    record_audit(
        db,
        project_id=hold_point.lot.project_id,
        action="hold_point_released",
        entity_type="hold_point",
        entity_id=hold_point.id,
        user=None,
        details={
            "method": "secure_link",
            "releasedByName": data.released_by_name,
            "releasedByOrg": data.released_by_org,
            "recipientEmail": release_token.recipient_email,
        },
    )
    db.commit()
    logger.info("Hold point %s released via secure link by %s", hold_point.id, release_token.recipient_email)

    run_advisory(
        "release_confirmations", db, _send_release_confirmations,
        db, hold_point=hold_point, release_token=release_token, released_by_name=data.released_by_name,
    )
    db.commit()
    db.refresh(hold_point)
    return hold_point
