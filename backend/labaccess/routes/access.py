from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from .. import models, schemas
from ..audit import AuditEvent, access_denied_event, request_metadata, reshare_denied_event
from ..auth import Principal, get_current_principal
from ..database import get_db
from ..exceptions import (
    AccessDeniedError,
    GrantNotFoundError,
    InvalidDataError,
    ObjectNotFoundError,
    ReshareNotPermittedError,
)
from ..rbac import OVERRIDE_TYPES, Action, AuditAction, PlatformRole, ResourceType, parse_resource_type
from ..services import grants, overrides
from ..services.decisions import check_access
from ..services.ownership import is_owner, load_resource
from ..workers.audit_writer import AuditDispatcher, get_audit_dispatcher

router = APIRouter(prefix="/api/access", tags=["access"])


def grant_out(record: models.AccessGrant) -> schemas.GrantOut:
    return schemas.GrantOut.model_validate(record).model_copy(update={"status": grants.grant_status(record)})


def _grant_event(principal: Principal, record: models.AccessGrant, action: AuditAction, request: Request, **details) -> AuditEvent:
    return AuditEvent(
        object_type=record.object_type,
        object_id=str(record.object_id),
        action=action.value,
        actor_id=principal.id,
        actor_workspace_id=principal.workspace_id,
        actor_org_id=principal.org_id,
        details={"grant_id": str(record.id), "granted_role": record.granted_role, **details},
        **request_metadata(request),
    )


def _require_owned(db: Session, principal: Principal, object_type: ResourceType, object_id: UUID):
    resource = load_resource(db, object_type, object_id)
    if resource is None:
        raise ObjectNotFoundError()
    if not is_owner(resource, principal.workspace_id):
        raise AccessDeniedError("only the owning workspace may manage grants on this object")
    return resource


@router.post("/grants", response_model=schemas.GrantOut)
async def create_grant(
    payload: schemas.GrantCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    dispatcher: AuditDispatcher = Depends(get_audit_dispatcher),
):
    try:
        record = grants.issue_grant(
            db,
            principal,
            object_type=payload.object_type,
            object_id=payload.object_id,
            to_org_id=payload.granted_to_org_id,
            role=payload.granted_role,
            mode=payload.access_mode,
            can_reshare=payload.can_reshare,
            expires_at=payload.expires_at,
        )
    except ReshareNotPermittedError:
        dispatcher.submit(reshare_denied_event(principal, payload.object_type.value, payload.object_id, request))
        raise
    except AccessDeniedError as exc:
        dispatcher.submit(access_denied_event(principal, payload.object_type.value, payload.object_id, exc.detail, request))
        raise
    db.commit()
    db.refresh(record)
    dispatcher.submit(
        _grant_event(
            principal,
            record,
            AuditAction.SHARE,
            request,
            granted_to_org_id=str(record.granted_to_org_id),
            can_reshare=record.can_reshare,
        )
    )
    return grant_out(record)


@router.get("/grants", response_model=list[schemas.GrantOut])
async def list_object_grants(
    object_type: ResourceType,
    object_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    _require_owned(db, principal, object_type, object_id)
    return [grant_out(r) for r in grants.list_grants(db, object_type, object_id)]


@router.get("/grants/{grant_id}", response_model=schemas.GrantOut)
async def get_grant(
    grant_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    record = db.get(models.AccessGrant, grant_id)
    if record is None:
        raise GrantNotFoundError()
    involved = principal.org_id is not None and principal.org_id in (record.granted_to_org_id, record.granted_by_org_id)
    if not involved:
        _require_owned(db, principal, ResourceType(record.object_type), record.object_id)
    return grant_out(record)


@router.post("/grants/{grant_id}/revoke", response_model=schemas.GrantOut)
async def revoke_grant(
    grant_id: UUID,
    payload: schemas.GrantRevoke,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    dispatcher: AuditDispatcher = Depends(get_audit_dispatcher),
):
    record = db.get(models.AccessGrant, grant_id)
    if record is None:
        raise GrantNotFoundError()
    granted_by_caller = principal.org_id is not None and principal.org_id == record.granted_by_org_id
    if not granted_by_caller:
        _require_owned(db, principal, ResourceType(record.object_type), record.object_id)
    already_revoked = record.revoked_at is not None
    record = grants.revoke(db, grant_id, reason=payload.reason, revoked_by=principal.id)
    db.commit()
    db.refresh(record)
    if not already_revoked:
        dispatcher.submit(
            _grant_event(
                principal,
                record,
                AuditAction.REVOKE,
                request,
                reason=payload.reason,
                original_expires_at=record.expires_at.isoformat() if record.expires_at else None,
            )
        )
    return grant_out(record)


@router.get("/revocations", response_model=list[schemas.GrantOut])
async def list_revocations(
    object_type: ResourceType,
    object_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    _require_owned(db, principal, object_type, object_id)
    return [grant_out(r) for r in grants.revocation_history(db, object_type, object_id)]


@router.post("/check", response_model=schemas.DecisionOut)
async def evaluate_access(
    payload: schemas.AccessCheckRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    user_id = payload.user_id or principal.id
    if user_id != principal.id and principal.role != PlatformRole.ADMIN:
        raise AccessDeniedError("only administrators may evaluate access for another user")
    decision = check_access(
        db,
        user_id,
        payload.project_id,
        payload.resource_type,
        payload.action,
        payload.resource_id,
    )
    return schemas.DecisionOut.model_validate(decision)


def _override_target(db: Session, principal: Principal, resource_type: str, resource_id: UUID):
    parsed = parse_resource_type(resource_type)
    if parsed is None or parsed not in OVERRIDE_TYPES:
        raise InvalidDataError("Access overrides apply to reports and samples only")
    resource = load_resource(db, parsed, resource_id)
    if resource is None:
        raise ObjectNotFoundError()
    if resource.project_id is not None:
        decision = check_access(db, principal.id, resource.project_id, parsed, Action.SHARE, resource_id)
        if not decision.allowed:
            raise AccessDeniedError(decision.reason)
    elif not is_owner(resource, principal.workspace_id):
        raise AccessDeniedError("only the owning workspace may manage access overrides")
    return parsed, resource


@router.put("/overrides/{resource_type}/{resource_id}/{user_id}", response_model=schemas.OverrideOut)
async def set_override(
    resource_type: str,
    resource_id: UUID,
    user_id: UUID,
    payload: schemas.OverrideSet,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    dispatcher: AuditDispatcher = Depends(get_audit_dispatcher),
):
    parsed, resource = _override_target(db, principal, resource_type, resource_id)
    override_id = overrides.grant_resource_access(
        db,
        parsed,
        resource_id,
        user_id,
        resource.workspace_id,
        payload.level,
        granted_by=principal.id,
        can_share=payload.can_share,
    )
    db.commit()
    dispatcher.submit(
        AuditEvent(
            object_type=parsed.value,
            object_id=str(resource_id),
            action=AuditAction.SHARE.value,
            actor_id=principal.id,
            actor_workspace_id=principal.workspace_id,
            actor_org_id=principal.org_id,
            details={"override_user_id": str(user_id), "access_level": payload.level.value},
            **request_metadata(request),
        )
    )
    return schemas.OverrideOut(override_id=override_id)


@router.delete("/overrides/{resource_type}/{resource_id}/{user_id}")
async def remove_override(
    resource_type: str,
    resource_id: UUID,
    user_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    dispatcher: AuditDispatcher = Depends(get_audit_dispatcher),
):
    parsed, _ = _override_target(db, principal, resource_type, resource_id)
    overrides.revoke_resource_access(db, parsed, resource_id, user_id)
    db.commit()
    dispatcher.submit(
        AuditEvent(
            object_type=parsed.value,
            object_id=str(resource_id),
            action=AuditAction.REVOKE.value,
            actor_id=principal.id,
            actor_workspace_id=principal.workspace_id,
            actor_org_id=principal.org_id,
            details={"override_user_id": str(user_id)},
            **request_metadata(request),
        )
    )
    return {"status": "removed"}
