"""FastAPI dependencies enforcing access decisions on routes.

``require_object_access`` guards workspace-owned objects with the ownership
and grant policy. ``require_project_access`` and ``require_platform_role``
guard project-team resources with the role matrix and overrides.
Allowed requests are audited, denied ones produce security events; both go
through the audit dispatcher so the response never waits on log I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .audit import (
    AuditEvent,
    access_denied_event,
    request_metadata,
    reshare_denied_event,
    validation_failure_event,
)
from .auth import Principal, get_current_principal
from .database import get_db
from .exceptions import (
    AccessCheckFailedError,
    AccessDeniedError,
    InvalidDataError,
    InvalidObjectTypeError,
    MissingObjectIdError,
    ReshareNotPermittedError,
)
from .rbac import (
    OBJECT_ACCESS_TYPES,
    Action,
    AuditAction,
    GrantRole,
    PlatformRole,
    ResourceType,
    has_required_platform_role,
    parse_resource_type,
)
from .services.assignments import role_in_project
from .services.decisions import Decision, GrantContext, check_access, check_object_access
from .services.lookup import LookupDeadline
from .services.ownership import load_resource
from .workers.audit_writer import AuditDispatcher, get_audit_dispatcher

logger = logging.getLogger(__name__)

_METHOD_ACTIONS = {
    "GET": AuditAction.READ,
    "HEAD": AuditAction.READ,
    "POST": AuditAction.CREATE,
    "PUT": AuditAction.UPDATE,
    "PATCH": AuditAction.UPDATE,
    "DELETE": AuditAction.DELETE,
}


@dataclass(frozen=True)
class ObjectAccessContext:
    resource_type: ResourceType
    object_id: UUID
    is_owner: bool
    grant: GrantContext | None = None


def audit_action_for(method: str) -> AuditAction:
    return _METHOD_ACTIONS.get(method.upper(), AuditAction.READ)


def _request_value(request: Request, *names: str) -> str | None:
    for name in names:
        value = request.path_params.get(name)
        if value:
            return str(value)
    for name in names:
        value = request.query_params.get(name)
        if value:
            return value
    return None


def _parse_uuid(raw: str, label: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError as exc:
        raise InvalidDataError(f"Invalid {label}") from exc


def require_object_access(resource_type: ResourceType | str | None = None, minimum_role: GrantRole | None = None):
    """Build a dependency enforcing ownership-or-grant access on one object.

    The resource type comes from ``resource_type`` or the ``object_type`` path
    parameter, the object id from the ``object_id``/``id`` path parameter or
    the ``id`` query parameter. Both are validated before any lookup.
    """

    def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        db: Session = Depends(get_db),
        dispatcher: AuditDispatcher = Depends(get_audit_dispatcher),
    ) -> ObjectAccessContext:
        raw_type = resource_type.value if isinstance(resource_type, ResourceType) else resource_type
        if raw_type is None:
            raw_type = request.path_params.get("object_type")
        parsed = parse_resource_type(raw_type)
        if parsed is None or parsed not in OBJECT_ACCESS_TYPES:
            dispatcher.submit(validation_failure_event(principal, raw_type, "Invalid object type", request))
            raise InvalidObjectTypeError()

        raw_id = request.path_params.get("object_id") or request.path_params.get("id") or request.query_params.get("id")
        if not raw_id:
            dispatcher.submit(validation_failure_event(principal, parsed.value, "Object ID required", request))
            raise MissingObjectIdError()
        try:
            object_id = UUID(str(raw_id))
        except ValueError as exc:
            dispatcher.submit(validation_failure_event(principal, parsed.value, "Malformed object ID", request))
            raise MissingObjectIdError("Invalid object ID") from exc

        decision = check_object_access(db, principal, parsed, object_id, minimum_role, deadline=LookupDeadline())
        if not decision.allowed:
            dispatcher.submit(access_denied_event(principal, parsed.value, object_id, decision.reason, request))
            raise AccessDeniedError(decision.reason)

        context = ObjectAccessContext(
            resource_type=parsed,
            object_id=object_id,
            is_owner=decision.grant is None,
            grant=decision.grant,
        )
        request.state.object_access = context
        details = {"method": request.method, "endpoint": request.url.path, "is_owner": context.is_owner}
        if context.grant is not None:
            details["grant_id"] = str(context.grant.grant_id)
            details["grant_role"] = context.grant.role.value
        dispatcher.submit(
            AuditEvent(
                object_type=parsed.value,
                object_id=str(object_id),
                action=audit_action_for(request.method).value,
                actor_id=principal.id,
                actor_workspace_id=principal.workspace_id,
                actor_org_id=principal.org_id,
                details=details,
                **request_metadata(request),
            )
        )
        return context

    return dependency


def require_reshare_permission(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    dispatcher: AuditDispatcher = Depends(get_audit_dispatcher),
) -> ObjectAccessContext:
    """Refuse re-sharing unless the caller owns the object or holds a reshareable grant.

    Must run after ``require_object_access`` has attached its context.
    """

    context: ObjectAccessContext | None = getattr(request.state, "object_access", None)
    if context is not None and (context.is_owner or (context.grant is not None and context.grant.can_reshare)):
        return context
    resource_type = context.resource_type.value if context else request.path_params.get("object_type")
    object_id = context.object_id if context else None
    dispatcher.submit(reshare_denied_event(principal, resource_type, object_id, request))
    raise ReshareNotPermittedError()


def _project_id(request: Request, principal: Principal, dispatcher: AuditDispatcher) -> UUID:
    raw = _request_value(request, "project_id")
    if raw is None:
        dispatcher.submit(validation_failure_event(principal, ResourceType.PROJECT.value, "Project ID required", request))
        raise InvalidDataError("Project ID required")
    return _parse_uuid(raw, "project ID")


def require_platform_role(required: PlatformRole):
    """Dependency requiring a project team role at or above ``required``."""

    def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        db: Session = Depends(get_db),
        dispatcher: AuditDispatcher = Depends(get_audit_dispatcher),
    ) -> PlatformRole:
        project_id = _project_id(request, principal, dispatcher)
        role = role_in_project(db, principal.id, project_id, deadline=LookupDeadline())
        if role is None:
            reason = "User is not assigned to this project"
        elif not has_required_platform_role(role, required):
            reason = f"{role.value} role insufficient, {PlatformRole(required).value} required"
        else:
            return role
        dispatcher.submit(access_denied_event(principal, ResourceType.PROJECT.value, project_id, reason, request))
        raise AccessDeniedError(reason)

    return dependency


def _belongs_to_project(
    db: Session,
    resource_type: ResourceType,
    resource_id: UUID,
    project_id: UUID,
    deadline: LookupDeadline,
) -> bool:
    """A missing row or one filed under another project counts as outside it."""

    try:
        resource = load_resource(db, resource_type, resource_id, deadline=deadline)
    except SQLAlchemyError as exc:
        logger.exception(
            "Error loading project resource",
            extra={"resource_type": ResourceType(resource_type).value, "resource_id": str(resource_id)},
        )
        raise AccessCheckFailedError() from exc
    return resource is not None and getattr(resource, "project_id", None) == project_id


def require_project_access(resource_type: ResourceType, action: Action):
    """Dependency running the role matrix and override policy for one project resource.

    A ``resource_id`` must name a row filed under ``project_id``; anything else is denied
    before the matrix is consulted.
    """

    def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        db: Session = Depends(get_db),
        dispatcher: AuditDispatcher = Depends(get_audit_dispatcher),
    ) -> Decision:
        project_id = _project_id(request, principal, dispatcher)
        raw_resource = _request_value(request, "resource_id")
        resource_id = _parse_uuid(raw_resource, "resource ID") if raw_resource else None
        deadline = LookupDeadline()
        if resource_id is not None and not _belongs_to_project(db, resource_type, resource_id, project_id, deadline):
            reason = f"{ResourceType(resource_type).value} is not part of this project"
            dispatcher.submit(access_denied_event(principal, ResourceType(resource_type).value, resource_id, reason, request))
            raise AccessDeniedError(reason)
        decision = check_access(
            db,
            principal.id,
            project_id,
            resource_type,
            action,
            resource_id,
            deadline=deadline,
        )
        if not decision.allowed:
            dispatcher.submit(
                access_denied_event(principal, ResourceType(resource_type).value, resource_id or project_id, decision.reason, request)
            )
            raise AccessDeniedError(decision.reason)
        request.state.access_decision = decision
        return decision

    return dependency
