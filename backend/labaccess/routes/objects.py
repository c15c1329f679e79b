from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from .. import schemas
from ..audit import AuditEvent, request_metadata
from ..auth import Principal, get_current_principal
from ..database import get_db
from ..dependencies import ObjectAccessContext, require_object_access, require_reshare_permission
from ..rbac import AuditAction
from ..services import grants
from ..workers.audit_writer import AuditDispatcher, get_audit_dispatcher
from .access import grant_out

router = APIRouter(prefix="/api/objects", tags=["objects"])


def _context_out(context: ObjectAccessContext) -> schemas.ObjectAccessOut:
    return schemas.ObjectAccessOut(
        object_type=context.resource_type,
        object_id=context.object_id,
        is_owner=context.is_owner,
        grant=schemas.GrantContextOut.model_validate(context.grant) if context.grant else None,
    )


@router.get("/{object_type}/{object_id}", response_model=schemas.ObjectAccessOut)
async def get_object_access(
    object_type: str,
    object_id: str,
    context: ObjectAccessContext = Depends(require_object_access()),
):
    return _context_out(context)


@router.post(
    "/{object_type}/{object_id}/share",
    response_model=schemas.GrantOut,
    dependencies=[Depends(require_object_access()), Depends(require_reshare_permission)],
)
async def share_object(
    object_type: str,
    object_id: str,
    payload: schemas.ShareRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    dispatcher: AuditDispatcher = Depends(get_audit_dispatcher),
):
    context: ObjectAccessContext = request.state.object_access
    record = grants.grant(
        db,
        object_type=context.resource_type,
        object_id=context.object_id,
        to_org_id=payload.granted_to_org_id,
        role=payload.granted_role,
        mode=payload.access_mode,
        can_reshare=payload.can_reshare,
        expires_at=payload.expires_at,
        created_by=principal.id,
        granting_org_id=principal.org_id,
    )
    db.commit()
    db.refresh(record)
    dispatcher.submit(
        AuditEvent(
            object_type=record.object_type,
            object_id=str(record.object_id),
            action=AuditAction.SHARE.value,
            actor_id=principal.id,
            actor_workspace_id=principal.workspace_id,
            actor_org_id=principal.org_id,
            details={
                "grant_id": str(record.id),
                "granted_role": record.granted_role,
                "granted_to_org_id": str(record.granted_to_org_id),
                "reshared": not context.is_owner,
            },
            **request_metadata(request),
        )
    )
    return grant_out(record)
