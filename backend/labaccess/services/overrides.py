from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from .. import models
from ..exceptions import InvalidDataError
from ..rbac import OVERRIDE_TYPES, AccessLevel, ResourceType
from .lookup import LookupDeadline

logger = logging.getLogger(__name__)

# purpose: per-user access level exceptions on reports and samples
# inputs: resource reference, user, workspace, access level
# outputs: ResourceAccessOverride rows keyed by (resource type, resource id, user)
# status: active


def _override_type(resource_type: ResourceType | str) -> ResourceType:
    try:
        coerced = ResourceType(resource_type)
    except ValueError as exc:
        raise InvalidDataError("Invalid resource type") from exc
    if coerced not in OVERRIDE_TYPES:
        raise InvalidDataError("Access overrides apply to reports and samples only")
    return coerced


def lookup_override(
    db: Session,
    resource_type: ResourceType,
    resource_id: UUID,
    user_id: UUID,
    *,
    deadline: LookupDeadline | None = None,
) -> models.ResourceAccessOverride | None:
    query = db.query(models.ResourceAccessOverride).filter(
        models.ResourceAccessOverride.resource_type == ResourceType(resource_type).value,
        models.ResourceAccessOverride.resource_id == resource_id,
        models.ResourceAccessOverride.user_id == user_id,
    )
    if deadline is None:
        return query.first()
    with deadline.bound(db, "override"):
        return query.first()


def grant_resource_access(
    db: Session,
    resource_type: ResourceType,
    resource_id: UUID,
    user_id: UUID,
    workspace_id: UUID,
    level: AccessLevel,
    granted_by: UUID | None = None,
    can_share: bool = False,
) -> UUID:
    """Create or replace the override for ``user_id`` and return its id."""

    override_type = _override_type(resource_type)
    try:
        access_level = AccessLevel(level)
    except ValueError as exc:
        raise InvalidDataError("Invalid access level") from exc

    record = lookup_override(db, override_type, resource_id, user_id)
    if record is None:
        record = models.ResourceAccessOverride(
            resource_type=override_type.value,
            resource_id=resource_id,
            user_id=user_id,
        )
    record.workspace_id = workspace_id
    record.access_level = access_level.value
    record.can_share = can_share
    record.granted_by = granted_by
    record.granted_at = datetime.now(timezone.utc)
    db.add(record)
    db.flush()
    logger.info(
        "Resource access override set",
        extra={
            "resource_type": override_type.value,
            "resource_id": str(resource_id),
            "user_id": str(user_id),
            "access_level": access_level.value,
        },
    )
    return record.id


def revoke_resource_access(
    db: Session,
    resource_type: ResourceType,
    resource_id: UUID,
    user_id: UUID,
) -> None:
    override_type = _override_type(resource_type)
    record = lookup_override(db, override_type, resource_id, user_id)
    if record is None:
        return
    db.delete(record)
    db.flush()
    logger.info(
        "Resource access override removed",
        extra={"resource_type": override_type.value, "resource_id": str(resource_id), "user_id": str(user_id)},
    )
