from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

import jwt
from fastapi import Depends, Header, Request

from . import config
from .audit import auth_failure_event
from .exceptions import InvalidTokenError
from .rbac import PlatformRole
from .workers.audit_writer import AuditDispatcher, get_audit_dispatcher

logger = logging.getLogger(__name__)

# purpose: verify bearer credentials and expose the authenticated principal to access checks
# inputs: Authorization header carrying a JWT with sub, workspace_id, org_id and role claims
# outputs: Principal instances; auth_failure security events on rejection
# status: active


@dataclass(frozen=True)
class Principal:
    id: UUID
    workspace_id: UUID | None
    org_id: UUID | None
    role: PlatformRole


def _optional_uuid(value) -> UUID | None:
    if value in (None, ""):
        return None
    return UUID(str(value))


def decode_principal(token: str) -> Principal:
    """Verify ``token`` and build the principal from its claims."""

    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError as exc:
        raise InvalidTokenError("Invalid or expired token") from exc
    try:
        return Principal(
            id=UUID(str(payload["sub"])),
            workspace_id=_optional_uuid(payload.get("workspace_id")),
            org_id=_optional_uuid(payload.get("org_id")),
            role=PlatformRole(payload.get("role", PlatformRole.VIEWER.value)),
        )
    except (KeyError, ValueError) as exc:
        raise InvalidTokenError("Invalid token claims") from exc


def get_current_principal(
    request: Request,
    authorization: str | None = Header(None),
    dispatcher: AuditDispatcher = Depends(get_audit_dispatcher),
) -> Principal:
    if not authorization or not authorization.startswith("Bearer "):
        dispatcher.submit(auth_failure_event("Missing token", request))
        raise InvalidTokenError("Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        return decode_principal(token)
    except InvalidTokenError as exc:
        logger.info("Rejected bearer token", extra={"reason": exc.detail, "endpoint": request.url.path})
        dispatcher.submit(auth_failure_event(exc.detail, request))
        raise
