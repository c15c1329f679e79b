from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models
from ..rbac import PlatformRole
from .lookup import LookupDeadline

# purpose: per-project platform role bindings that take precedence over a user's global role
# status: active


def role_in_project(
    db: Session,
    user_id: UUID,
    project_id: UUID,
    *,
    deadline: LookupDeadline | None = None,
) -> PlatformRole | None:
    query = db.query(models.ProjectTeamAssignment.assigned_role).filter(
        models.ProjectTeamAssignment.project_id == project_id,
        models.ProjectTeamAssignment.user_id == user_id,
    )
    if deadline is None:
        row = query.first()
    else:
        with deadline.bound(db, "assignment"):
            row = query.first()
    if row is None:
        return None
    try:
        return PlatformRole(row[0])
    except ValueError:
        # unknown stored roles grant nothing
        return None


def assign(
    db: Session,
    *,
    project_id: UUID,
    user_id: UUID,
    role: PlatformRole,
    workspace_id: UUID,
    assigned_by: UUID | None = None,
) -> models.ProjectTeamAssignment:
    record = (
        db.query(models.ProjectTeamAssignment)
        .filter(
            models.ProjectTeamAssignment.project_id == project_id,
            models.ProjectTeamAssignment.user_id == user_id,
        )
        .first()
    )
    if record is None:
        record = models.ProjectTeamAssignment(
            project_id=project_id,
            user_id=user_id,
            workspace_id=workspace_id,
        )
    record.assigned_role = PlatformRole(role).value
    record.assigned_by = assigned_by
    record.assigned_at = datetime.now(timezone.utc)
    db.add(record)
    db.flush()
    return record


def unassign(db: Session, *, project_id: UUID, user_id: UUID) -> bool:
    record = (
        db.query(models.ProjectTeamAssignment)
        .filter(
            models.ProjectTeamAssignment.project_id == project_id,
            models.ProjectTeamAssignment.user_id == user_id,
        )
        .first()
    )
    if record is None:
        return False
    db.delete(record)
    db.flush()
    return True


def list_assignments(db: Session, user_id: UUID, workspace_id: UUID | None = None) -> list[models.ProjectTeamAssignment]:
    query = db.query(models.ProjectTeamAssignment).filter(models.ProjectTeamAssignment.user_id == user_id)
    if workspace_id is not None:
        query = query.filter(models.ProjectTeamAssignment.workspace_id == workspace_id)
    return query.order_by(models.ProjectTeamAssignment.assigned_at.desc()).all()


def project_team(db: Session, project_id: UUID) -> list[models.ProjectTeamAssignment]:
    return (
        db.query(models.ProjectTeamAssignment)
        .filter(models.ProjectTeamAssignment.project_id == project_id)
        .order_by(models.ProjectTeamAssignment.assigned_at)
        .all()
    )
