"""Security helpers (project membership, role permissions, scoped lookups)."""

from __future__ import annotations

from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from .auth import check_permission
from .domain_errors import DomainError
from .models import ProjectUser, User

T = TypeVar("T")

MANAGER_ROLES = ("project_manager", "quality_manager")
WITNESS_NOTIFY_ROLES = ("project_manager", "admin", "superintendent")


def get_project_role(db: Session, *, project_id: UUID, user: User) -> str | None:
    """Return the user's active role on a project, or None."""
    membership = db.query(ProjectUser).filter(
        ProjectUser.project_id == project_id,
        ProjectUser.user_id == user.id,
        ProjectUser.status == "active",
    ).first()
    return membership.role if membership else None


def require_project_permission(db: Session, *, project_id: UUID, user: User, permission: str) -> str:
    """Enforce project membership plus a role permission; returns the role."""
    role = get_project_role(db, project_id=project_id, user=user)
    if role is None:
        raise DomainError(
            code="PROJECT_ACCESS_DENIED",
            http_status=403,
            message="You are not a member of this project",
        )
    if not check_permission(role, permission):
        raise DomainError(
            code="PERMISSION_DENIED",
            http_status=403,
            message=f"Permission denied: {permission} required",
            details={"role": role},
        )
    return role


def require_entity(db: Session, model: type[T], *, entity_id: UUID, code: str, message: str) -> T:
    """Load an entity by id or raise a 404 DomainError."""
    entity = db.query(model).filter(getattr(model, "id") == entity_id).first()  # noqa: B009
    if not entity:
        raise DomainError(code=code, http_status=404, message=message)
    return entity


def project_member_ids(db: Session, *, project_id: UUID, roles: tuple[str, ...]) -> list[UUID]:
    """User ids of active project members holding any of the given roles."""
    rows = db.query(ProjectUser.user_id).filter(
        ProjectUser.project_id == project_id,
        ProjectUser.role.in_(roles),
        ProjectUser.status == "active",
    ).all()
    return [row[0] for row in rows]


def require_project_member(db: Session, *, project_id: UUID, user: User) -> str:
    """Enforce active project membership; returns the role."""
    role = get_project_role(db, project_id=project_id, user=user)
    if role is None:
        raise DomainError(
            code="PROJECT_ACCESS_DENIED",
            http_status=403,
            message="You are not a member of this project",
        )
    return role
