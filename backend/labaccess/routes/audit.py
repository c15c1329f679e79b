from uuid import UUID
from datetime import datetime
from sqlalchemy.orm import Session
from fastapi import APIRouter, Depends
from ..database import get_db
from ..auth import Principal, get_current_principal
from ..dependencies import ObjectAccessContext, require_object_access
from ..exceptions import AccessDeniedError, InvalidDataError
from ..rbac import PlatformRole, has_required_platform_role
from .. import schemas, audit

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/objects/{object_type}/{object_id}", response_model=list[schemas.AuditLogOut])
async def object_trail(
    object_type: str,
    object_id: str,
    limit: int = 100,
    db: Session = Depends(get_db),
    context: ObjectAccessContext = Depends(require_object_access()),
):
    return audit.object_audit_trail(db, context.resource_type.value, context.object_id, min(limit, 500))


@router.get("/security", response_model=list[schemas.SecurityLogOut])
async def list_security_events(
    event_type: str | None = None,
    severity: str | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    if principal.workspace_id is None:
        raise InvalidDataError("Caller has no workspace")
    if not has_required_platform_role(principal.role, PlatformRole.MANAGER):
        raise AccessDeniedError(f"{principal.role.value} role insufficient, manager required")
    return audit.security_events(db, principal.workspace_id, event_type, severity, min(limit, 500))


@router.get("/report", response_model=list[schemas.AuditReportItem])
async def audit_report(
    start: datetime,
    end: datetime,
    actor_id: UUID | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    if actor_id is None:
        actor_id = principal.id
    elif actor_id != principal.id and principal.role != PlatformRole.ADMIN:
        raise AccessDeniedError("only administrators may report on other users")
    return audit.generate_report(db, start, end, actor_id)
