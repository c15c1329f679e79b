from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import config, models
from ..auth import Principal
from ..exceptions import (
    AccessDeniedError,
    GrantConflictError,
    GrantNotFoundError,
    InvalidDataError,
    ObjectNotFoundError,
    OrganizationNotFoundError,
    ReshareNotPermittedError,
)
from ..rbac import AccessMode, GrantRole, ResourceType
from .lookup import LookupDeadline
from .ownership import is_owner, load_resource

logger = logging.getLogger(__name__)

# purpose: delegated cross-organization grants with expiry and audited revocation
# inputs: object reference, receiving organization, grant role, reshare flag, optional expiry
# outputs: AccessGrant rows; revoked rows are kept for the audit trail
# status: active

SUPERSEDED_REASON = "superseded"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _activity_cutoff(now: datetime | None) -> datetime:
    return (_as_utc(now) or _now()) + timedelta(seconds=config.GRANT_EXPIRY_BUFFER_SECONDS)


def is_active(grant: models.AccessGrant, *, now: datetime | None = None) -> bool:
    """Revocation wins; otherwise the grant is active until its expiry passes."""

    if grant.revoked_at is not None:
        return False
    expires_at = _as_utc(grant.expires_at)
    return expires_at is None or expires_at > _activity_cutoff(now)


def grant_status(grant: models.AccessGrant, *, now: datetime | None = None) -> str:
    if grant.revoked_at is not None:
        return "revoked"
    if not is_active(grant, now=now):
        return "expired"
    return "active"


def lookup_active(
    db: Session,
    object_type: ResourceType,
    object_id: UUID,
    org_id: UUID | None,
    *,
    now: datetime | None = None,
    deadline: LookupDeadline | None = None,
) -> models.AccessGrant | None:
    """Return the active grant held by ``org_id`` on the object, if any."""

    if org_id is None:
        return None
    cutoff = _activity_cutoff(now)
    query = (
        db.query(models.AccessGrant)
        .filter(
            models.AccessGrant.object_type == ResourceType(object_type).value,
            models.AccessGrant.object_id == object_id,
            models.AccessGrant.granted_to_org_id == org_id,
            models.AccessGrant.revoked_at.is_(None),
            sa.or_(models.AccessGrant.expires_at.is_(None), models.AccessGrant.expires_at > cutoff),
        )
        .order_by(models.AccessGrant.created_at.desc())
    )
    if deadline is None:
        return query.first()
    with deadline.bound(db, "grant"):
        return query.first()


def grant(
    db: Session,
    *,
    object_type: ResourceType,
    object_id: UUID,
    to_org_id: UUID,
    role: GrantRole,
    created_by: UUID,
    mode: AccessMode = AccessMode.PLATFORM,
    can_reshare: bool = False,
    expires_at: datetime | None = None,
    granting_org_id: UUID | None = None,
) -> models.AccessGrant:
    """Insert a grant, refusing a second active grant for the same (object, organization)."""

    if granting_org_id is not None and granting_org_id == to_org_id:
        raise InvalidDataError("Access can only be granted to a different organization")
    if db.get(models.Organization, to_org_id) is None:
        raise OrganizationNotFoundError()
    if expires_at is not None and _as_utc(expires_at) <= _now():
        raise InvalidDataError("Grant expiry must be in the future")

    now = _now()
    open_rows = (
        db.query(models.AccessGrant)
        .filter(
            models.AccessGrant.object_type == ResourceType(object_type).value,
            models.AccessGrant.object_id == object_id,
            models.AccessGrant.granted_to_org_id == to_org_id,
            models.AccessGrant.revoked_at.is_(None),
        )
        .all()
    )
    for row in open_rows:
        if is_active(row, now=now):
            raise GrantConflictError()
        # expired but never revoked: close it so the unique index admits the new grant
        row.revoked_at = now
        row.revocation_reason = SUPERSEDED_REASON
        row.revoked_by = created_by
        db.add(row)

    record = models.AccessGrant(
        object_type=ResourceType(object_type).value,
        object_id=object_id,
        granted_to_org_id=to_org_id,
        granted_by_org_id=granting_org_id,
        granted_role=GrantRole(role).value,
        access_mode=AccessMode(mode).value,
        can_reshare=can_reshare,
        expires_at=_as_utc(expires_at),
        created_by=created_by,
        created_at=now,
    )
    db.add(record)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise GrantConflictError() from exc
    logger.info(
        "Access grant created",
        extra={
            "grant_id": str(record.id),
            "object_type": record.object_type,
            "object_id": str(object_id),
            "granted_to_org_id": str(to_org_id),
            "granted_role": record.granted_role,
        },
    )
    return record


def issue_grant(
    db: Session,
    principal: Principal,
    *,
    object_type: ResourceType,
    object_id: UUID,
    to_org_id: UUID,
    role: GrantRole,
    mode: AccessMode = AccessMode.PLATFORM,
    can_reshare: bool = False,
    expires_at: datetime | None = None,
) -> models.AccessGrant:
    """Grant on behalf of ``principal``: owners always may, holders only with can_reshare."""

    resource = load_resource(db, object_type, object_id)
    if resource is None:
        raise ObjectNotFoundError()
    if not is_owner(resource, principal.workspace_id):
        held = lookup_active(db, object_type, object_id, principal.org_id)
        if held is None:
            raise AccessDeniedError("no ownership or access grant found")
        if not held.can_reshare:
            raise ReshareNotPermittedError()
    return grant(
        db,
        object_type=object_type,
        object_id=object_id,
        to_org_id=to_org_id,
        role=role,
        mode=mode,
        can_reshare=can_reshare,
        expires_at=expires_at,
        created_by=principal.id,
        granting_org_id=principal.org_id,
    )


def revoke(
    db: Session,
    grant_id: UUID,
    *,
    reason: str,
    revoked_by: UUID,
) -> models.AccessGrant:
    """Mark a grant revoked. Revoking an already revoked grant changes nothing."""

    record = db.get(models.AccessGrant, grant_id)
    if record is None:
        raise GrantNotFoundError()
    if record.revoked_at is not None:
        return record
    record.revoked_at = _now()
    record.revocation_reason = reason
    record.revoked_by = revoked_by
    db.add(record)
    db.flush()
    logger.info(
        "Access grant revoked",
        extra={"grant_id": str(record.id), "revoked_by": str(revoked_by), "reason": reason},
    )
    return record


def list_grants(db: Session, object_type: ResourceType, object_id: UUID) -> list[models.AccessGrant]:
    return (
        db.query(models.AccessGrant)
        .filter(
            models.AccessGrant.object_type == ResourceType(object_type).value,
            models.AccessGrant.object_id == object_id,
        )
        .order_by(models.AccessGrant.created_at.desc())
        .all()
    )


def revocation_history(db: Session, object_type: ResourceType, object_id: UUID) -> list[models.AccessGrant]:
    return (
        db.query(models.AccessGrant)
        .filter(
            models.AccessGrant.object_type == ResourceType(object_type).value,
            models.AccessGrant.object_id == object_id,
            models.AccessGrant.revoked_at.is_not(None),
        )
        .order_by(models.AccessGrant.revoked_at.desc())
        .all()
    )
