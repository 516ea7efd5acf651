"""Advance notice for upcoming witness points."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from ..models import ItpCompletion, Notification, User
from ..security import WITNESS_NOTIFY_ROLES, project_member_ids
from .checklist_snapshot import find_item, resolve_items
from .lot_progression import finished_item_ids
from .notifications import notify_many
from .project_settings import load_quality_settings

logger = logging.getLogger(__name__)

WITNESS_APPROACHING = "witness_point_approaching"


def check_and_notify_witness_point(
    db: Session,
    *,
    instance: Any,
    completed_item_id: Any,
    actor: User,
) -> dict[str, Any] | None:
    """
    Notify project managers when a witness point is one or two items away.

    Returns a summary when notifications were sent, otherwise None.
    """
    lot = instance.lot
    project = lot.project if lot else None
    if project is None:
        return None

    items = resolve_items(instance)
    completed_item = find_item(items, completed_item_id)
    if completed_item is None:
        return None

    quality = load_quality_settings(project)
    if not quality.witness_notification_enabled:
        return None

    position = next(i for i, item in enumerate(items) if item is completed_item)
    target = position + quality.witness_lookahead
    if target >= len(items):
        return None
    witness_item = items[target]
    if not witness_item.is_witness_point:
        return None

    completions = db.query(ItpCompletion).filter(ItpCompletion.itp_instance_id == instance.id).all()
    if witness_item.id in finished_item_ids(completions):
        return None

    already_notified = db.query(Notification).filter(
        Notification.project_id == project.id,
        Notification.type == WITNESS_APPROACHING,
        Notification.link_url.contains(f"/lots/{lot.id}?"),
        Notification.link_url.contains(f"highlight={witness_item.id}"),
    ).first()
    if already_notified:
        return None

    actor_name = getattr(actor, "display_name", None) or "A team member"
    recipients = project_member_ids(db, project_id=project.id, roles=WITNESS_NOTIFY_ROLES)
    created = notify_many(
        db,
        user_ids=recipients,
        project_id=project.id,
        type=WITNESS_APPROACHING,
        title=f"Witness Point Approaching: {witness_item.description}",
        message=(
            f'{actor_name} completed "{completed_item.description}" on lot {lot.lot_number}. '
            "The next item is a witness point that requires client notification."
        ),
        link_url=f"/projects/{project.id}/lots/{lot.id}?tab=itp&highlight={witness_item.id}",
    )
    logger.info(
        "Witness point %s approaching on lot %s, notified %s user(s)",
        witness_item.id, lot.id, len(created),
    )
    return {
        "witness_point": {
            "id": witness_item.id,
            "description": witness_item.description,
            "sequence_number": witness_item.sequence_number,
        },
        "notifications_sent": len(created),
        "client_email": quality.witness_client_email,
        "client_name": quality.witness_client_name,
    }
