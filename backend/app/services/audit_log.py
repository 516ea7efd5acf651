"""Append-only audit trail for workflow actions."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from ..models import AuditEvent


def record_audit(
    db: Session,
    *,
    project_id: UUID | None,
    action: str,
    entity_type: str,
    entity_id: UUID,
    user: Any | None,
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    event = AuditEvent(
        project_id=project_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=getattr(user, "id", None),
        user_name=getattr(user, "display_name", None),
        details=details or {},
    )
    db.add(event)
    return event
