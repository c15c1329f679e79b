from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session
from uuid import UUID

from ..database import get_db
from ..models import Project
from ..schemas import DecisionOut, TeamAssignmentOut, TeamAssignmentSet
from ..auth import Principal, get_current_principal
from ..dependencies import require_platform_role, require_project_access
from ..exceptions import ObjectNotFoundError
from ..rbac import Action, PlatformRole, ResourceType
from ..services import assignments
from ..services.decisions import Decision

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("/{project_id}/team", response_model=list[TeamAssignmentOut])
async def list_team(
    project_id: UUID,
    db: Session = Depends(get_db),
    role: PlatformRole = Depends(require_platform_role(PlatformRole.VIEWER)),
):
    return assignments.project_team(db, project_id)


@router.put("/{project_id}/team/{user_id}", response_model=TeamAssignmentOut)
async def assign_member(
    project_id: UUID,
    user_id: UUID,
    payload: TeamAssignmentSet,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    role: PlatformRole = Depends(require_platform_role(PlatformRole.MANAGER)),
):
    project = db.get(Project, project_id)
    if not project:
        raise ObjectNotFoundError()
    record = assignments.assign(
        db,
        project_id=project_id,
        user_id=user_id,
        role=payload.role,
        workspace_id=project.workspace_id,
        assigned_by=principal.id,
    )
    db.commit()
    db.refresh(record)
    return record


@router.delete("/{project_id}/team/{user_id}", status_code=204)
async def remove_member(
    project_id: UUID,
    user_id: UUID,
    db: Session = Depends(get_db),
    role: PlatformRole = Depends(require_platform_role(PlatformRole.MANAGER)),
):
    assignments.unassign(db, project_id=project_id, user_id=user_id)
    db.commit()
    return Response(status_code=204)


@router.get("/{project_id}/reports/{resource_id}/access", response_model=DecisionOut)
async def report_access(
    project_id: UUID,
    resource_id: UUID,
    decision: Decision = Depends(require_project_access(ResourceType.REPORT, Action.VIEW)),
):
    return decision


@router.get("/{project_id}/samples/{resource_id}/download-access", response_model=DecisionOut)
async def sample_download_access(
    project_id: UUID,
    resource_id: UUID,
    decision: Decision = Depends(require_project_access(ResourceType.SAMPLE, Action.DOWNLOAD)),
):
    return decision
