"""In-app notifications plus outbox rows for webhook delivery."""
from __future__ import annotations

import logging
import uuid
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from ..models import Notification, NotificationOutbox

logger = logging.getLogger(__name__)


def notify(
    db: Session,
    *,
    user_id: UUID,
    project_id: UUID | None,
    type: str,
    title: str,
    message: str,
    link_url: str | None = None,
) -> Notification:
    """Create an in-app notification and queue it for delivery (1 outbox row per recipient)."""
    notification = Notification(
        id=uuid.uuid4(),
        user_id=user_id,
        project_id=project_id,
        type=type,
        title=title,
        message=message,
        link_url=link_url,
        is_read=False,
    )
    db.add(notification)
    db.add(
        NotificationOutbox(
            project_id=project_id,
            type=type,
            recipient_user_id=user_id,
            subject=title,
            message=message,
            meta_data={"notificationId": str(notification.id), "linkUrl": link_url},
            idempotency_key=f"{type}:{notification.id}",
            status="pending",
            attempts=0,
        )
    )
    return notification


def notify_many(
    db: Session,
    *,
    user_ids: list[UUID],
    project_id: UUID | None,
    type: str,
    title: str,
    message: str,
    link_url: str | None = None,
) -> list[Notification]:
    seen: set[UUID] = set()
    created = []
    for user_id in user_ids:
        if user_id in seen:
            continue
        seen.add(user_id)
        created.append(
            notify(
                db,
                user_id=user_id,
                project_id=project_id,
                type=type,
                title=title,
                message=message,
                link_url=link_url,
            )
        )
    return created


def queue_external_email(
    db: Session,
    *,
    email: str,
    project_id: UUID | None,
    type: str,
    subject: str,
    message: str,
    idempotency_key: str,
    meta_data: dict[str, Any] | None = None,
) -> NotificationOutbox:
    """Queue a delivery to someone outside the user directory."""
    row = NotificationOutbox(
        project_id=project_id,
        type=type,
        recipient_email=email,
        subject=subject,
        message=message,
        meta_data=meta_data or {},
        idempotency_key=idempotency_key,
        status="pending",
        attempts=0,
    )
    db.add(row)
    logger.info("Queued %s delivery to external recipient %s", type, email)
    return row
