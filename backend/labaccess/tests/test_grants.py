import uuid
from datetime import datetime, timedelta, timezone

import pytest

from labaccess import models
from labaccess.exceptions import (
    AccessDeniedError,
    GrantConflictError,
    GrantNotFoundError,
    InvalidDataError,
    OrganizationNotFoundError,
    ReshareNotPermittedError,
)
from labaccess.rbac import GrantRole, ResourceType
from labaccess.services import grants

from .conftest import make_resource, make_tenant


def _now():
    return datetime.now(timezone.utc)


def _grant(db, owner, partner, sample, **kwargs):
    kwargs.setdefault("role", GrantRole.PROCESSOR)
    record = grants.grant(
        db,
        object_type=ResourceType.SAMPLE,
        object_id=sample.id,
        to_org_id=partner.org.id,
        created_by=owner.principal.id,
        granting_org_id=owner.org.id,
        **kwargs,
    )
    db.commit()
    return record


def test_grant_and_lookup_active(db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    record = _grant(db, owner, partner, sample)

    found = grants.lookup_active(db, ResourceType.SAMPLE, sample.id, partner.org.id)
    assert found.id == record.id
    assert grants.grant_status(found) == "active"
    assert grants.lookup_active(db, ResourceType.SAMPLE, sample.id, owner.org.id) is None
    assert grants.lookup_active(db, ResourceType.SAMPLE, sample.id, None) is None


def test_duplicate_active_grant_conflicts(db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    _grant(db, owner, partner, sample)
    with pytest.raises(GrantConflictError):
        _grant(db, owner, partner, sample, role=GrantRole.CLIENT)


def test_grant_validation(db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    with pytest.raises(InvalidDataError):
        grants.grant(
            db,
            object_type=ResourceType.SAMPLE,
            object_id=sample.id,
            to_org_id=owner.org.id,
            role=GrantRole.VIEWER,
            created_by=owner.principal.id,
            granting_org_id=owner.org.id,
        )
    with pytest.raises(OrganizationNotFoundError):
        grants.grant(
            db,
            object_type=ResourceType.SAMPLE,
            object_id=sample.id,
            to_org_id=uuid.uuid4(),
            role=GrantRole.VIEWER,
            created_by=owner.principal.id,
        )
    with pytest.raises(InvalidDataError):
        _grant(db, owner, partner, sample, expires_at=_now() - timedelta(days=1))


def test_revocation_wins_over_future_expiry(db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    record = _grant(db, owner, partner, sample, expires_at=_now() + timedelta(days=30))

    grants.revoke(db, record.id, reason="contract ended", revoked_by=owner.principal.id)
    db.commit()

    assert not grants.is_active(record)
    assert grants.grant_status(record) == "revoked"
    assert grants.lookup_active(db, ResourceType.SAMPLE, sample.id, partner.org.id) is None
    # revoked rows are kept
    assert db.get(models.AccessGrant, record.id).revocation_reason == "contract ended"


def test_revoke_is_idempotent(db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    record = _grant(db, owner, partner, sample)
    first = grants.revoke(db, record.id, reason="first", revoked_by=owner.principal.id)
    db.commit()
    revoked_at = first.revoked_at
    second = grants.revoke(db, record.id, reason="second", revoked_by=partner.principal.id)
    assert second.revoked_at == revoked_at
    assert second.revocation_reason == "first"

    with pytest.raises(GrantNotFoundError):
        grants.revoke(db, uuid.uuid4(), reason="x", revoked_by=owner.principal.id)


def test_expired_grant_is_not_active(db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    record = _grant(db, owner, partner, sample, expires_at=_now() + timedelta(hours=1))

    later = _now() + timedelta(hours=2)
    assert not grants.is_active(record, now=later)
    assert grants.grant_status(record, now=later) == "expired"
    assert grants.lookup_active(db, ResourceType.SAMPLE, sample.id, partner.org.id, now=later) is None


def test_expiry_buffer(db, monkeypatch):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    record = _grant(db, owner, partner, sample, expires_at=_now() + timedelta(seconds=30))
    assert grants.is_active(record)
    monkeypatch.setattr(grants.config, "GRANT_EXPIRY_BUFFER_SECONDS", 60)
    assert not grants.is_active(record)


def test_expired_grant_is_superseded(db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    stale = _grant(db, owner, partner, sample, expires_at=_now() + timedelta(seconds=30))
    stale.expires_at = _now() - timedelta(seconds=1)
    db.commit()

    fresh = _grant(db, owner, partner, sample, role=GrantRole.ANALYZER)
    db.refresh(stale)
    assert stale.revocation_reason == grants.SUPERSEDED_REASON
    assert grants.lookup_active(db, ResourceType.SAMPLE, sample.id, partner.org.id).id == fresh.id
    assert [g.id for g in grants.revocation_history(db, ResourceType.SAMPLE, sample.id)] == [stale.id]
    assert len(grants.list_grants(db, ResourceType.SAMPLE, sample.id)) == 2


def test_issue_grant_requires_ownership_or_reshare(db):
    owner, holder, third = make_tenant(db), make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)

    with pytest.raises(AccessDeniedError):
        grants.issue_grant(
            db, holder.principal, object_type=ResourceType.SAMPLE, object_id=sample.id,
            to_org_id=third.org.id, role=GrantRole.VIEWER,
        )

    grants.issue_grant(
        db, owner.principal, object_type=ResourceType.SAMPLE, object_id=sample.id,
        to_org_id=holder.org.id, role=GrantRole.PROCESSOR, can_reshare=False,
    )
    db.commit()
    with pytest.raises(ReshareNotPermittedError):
        grants.issue_grant(
            db, holder.principal, object_type=ResourceType.SAMPLE, object_id=sample.id,
            to_org_id=third.org.id, role=GrantRole.VIEWER,
        )


def test_reshare_allowed_when_flag_set(db):
    owner, holder, third = make_tenant(db), make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    grants.issue_grant(
        db, owner.principal, object_type=ResourceType.SAMPLE, object_id=sample.id,
        to_org_id=holder.org.id, role=GrantRole.ANALYZER, can_reshare=True,
    )
    db.commit()
    reshared = grants.issue_grant(
        db, holder.principal, object_type=ResourceType.SAMPLE, object_id=sample.id,
        to_org_id=third.org.id, role=GrantRole.VIEWER,
    )
    db.commit()
    assert reshared.granted_by_org_id == holder.org.id
