from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from .. import models
from ..rbac import ResourceType
from .lookup import LookupDeadline

# purpose: resolve resource rows and compare their owning workspace with the caller's
# status: active


def load_resource(
    db: Session,
    resource_type: ResourceType,
    resource_id: UUID,
    *,
    deadline: LookupDeadline | None = None,
):
    """Return the resource row for ``(resource_type, resource_id)`` or None."""

    model = models.RESOURCE_MODELS[resource_type]
    if deadline is None:
        return db.get(model, resource_id)
    with deadline.bound(db, "ownership"):
        return db.get(model, resource_id)


def is_owner(resource, caller_workspace_id: UUID | None) -> bool:
    if resource is None or caller_workspace_id is None:
        return False
    return resource.workspace_id == caller_workspace_id


def owner_workspace_id(db: Session, resource_type: ResourceType, resource_id: UUID) -> UUID | None:
    resource = load_resource(db, resource_type, resource_id)
    return resource.workspace_id if resource is not None else None
