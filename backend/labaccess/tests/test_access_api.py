import uuid
from datetime import datetime, timedelta, timezone

from labaccess import models
from labaccess.rbac import PlatformRole
from labaccess.services import assignments, overrides

from .conftest import auth_headers, client, make_resource, make_tenant, member_of


def _create_grant(client, owner, partner, sample, **extra):
    payload = {
        "object_type": "sample",
        "object_id": str(sample.id),
        "granted_to_org_id": str(partner.org.id),
        "granted_role": "processor",
        **extra,
    }
    return client.post("/api/access/grants", json=payload, headers=owner.headers)


def test_grant_lifecycle(client, db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    expires = (datetime.now(timezone.utc) + timedelta(days=7)).isoformat()

    resp = _create_grant(client, owner, partner, sample, expires_at=expires)
    assert resp.status_code == 200
    grant = resp.json()
    assert grant["status"] == "active"
    assert grant["granted_by_org_id"] == str(owner.org.id)

    assert _create_grant(client, owner, partner, sample).status_code == 409

    listed = client.get(
        "/api/access/grants", params={"object_type": "sample", "object_id": str(sample.id)}, headers=owner.headers
    )
    assert [g["id"] for g in listed.json()] == [grant["id"]]

    seen_by_partner = client.get(f"/api/access/grants/{grant['id']}", headers=partner.headers)
    assert seen_by_partner.status_code == 200

    revoked = client.post(f"/api/access/grants/{grant['id']}/revoke", json={"reason": "done"}, headers=owner.headers)
    assert revoked.json()["status"] == "revoked"
    again = client.post(f"/api/access/grants/{grant['id']}/revoke", json={"reason": "twice"}, headers=owner.headers)
    assert again.status_code == 200
    assert again.json()["revocation_reason"] == "done"

    history = client.get(
        "/api/access/revocations", params={"object_type": "sample", "object_id": str(sample.id)}, headers=owner.headers
    )
    assert [g["id"] for g in history.json()] == [grant["id"]]

    # a new grant is possible once the previous one is revoked
    assert _create_grant(client, owner, partner, sample).status_code == 200


def test_grant_listing_is_owner_only(client, db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    _create_grant(client, owner, partner, sample)
    resp = client.get(
        "/api/access/grants", params={"object_type": "sample", "object_id": str(sample.id)}, headers=partner.headers
    )
    assert resp.status_code == 403


def test_grant_errors(client, db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)

    assert client.get(f"/api/access/grants/{uuid.uuid4()}", headers=owner.headers).status_code == 404
    stranger = client.post(
        "/api/access/grants",
        json={"object_type": "sample", "object_id": str(sample.id), "granted_to_org_id": str(owner.org.id)},
        headers=partner.headers,
    )
    assert stranger.status_code == 403
    self_grant = client.post(
        "/api/access/grants",
        json={"object_type": "sample", "object_id": str(sample.id), "granted_to_org_id": str(owner.org.id)},
        headers=owner.headers,
    )
    assert self_grant.status_code == 400
    missing = client.post(
        "/api/access/grants",
        json={"object_type": "sample", "object_id": str(uuid.uuid4()), "granted_to_org_id": str(partner.org.id)},
        headers=owner.headers,
    )
    assert missing.status_code == 404
    bad_role = _create_grant(client, owner, partner, sample, granted_role="owner")
    assert bad_role.status_code == 422


def test_non_owner_cannot_revoke(client, db):
    owner, partner = make_tenant(db), make_tenant(db)
    sample = make_resource(db, models.Sample, owner.workspace_id)
    grant = _create_grant(client, owner, partner, sample).json()
    resp = client.post(f"/api/access/grants/{grant['id']}/revoke", json={"reason": "mine now"}, headers=partner.headers)
    assert resp.status_code == 403


def test_check_endpoint(client, db):
    tenant = make_tenant(db)
    project = make_resource(db, models.Project, tenant.workspace_id)
    viewer = member_of(tenant, PlatformRole.VIEWER)
    assignments.assign(db, project_id=project.id, user_id=viewer.id, role=PlatformRole.VIEWER, workspace_id=tenant.workspace_id)
    db.commit()

    resp = client.post(
        "/api/access/check",
        json={"project_id": str(project.id), "resource_type": "sample", "action": "edit"},
        headers=auth_headers(viewer),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["allowed"] is False
    assert body["reason"] == "Role 'viewer' cannot edit sample"
    assert body["policy"] == "project"

    other = client.post(
        "/api/access/check",
        json={"project_id": str(project.id), "resource_type": "sample", "action": "view", "user_id": str(uuid.uuid4())},
        headers=auth_headers(viewer),
    )
    assert other.status_code == 403

    admin = member_of(tenant, PlatformRole.ADMIN)
    on_behalf = client.post(
        "/api/access/check",
        json={"project_id": str(project.id), "resource_type": "sample", "action": "view", "user_id": str(viewer.id)},
        headers=auth_headers(admin),
    )
    assert on_behalf.json()["allowed"] is True


def test_check_endpoint_validates_enumerations(client, db):
    tenant = make_tenant(db)
    resp = client.post(
        "/api/access/check",
        json={"project_id": str(uuid.uuid4()), "resource_type": "Widget", "action": "view"},
        headers=tenant.headers,
    )
    assert resp.status_code == 422


def test_override_endpoints(client, db):
    tenant = make_tenant(db)
    project = make_resource(db, models.Project, tenant.workspace_id)
    report = make_resource(db, models.Report, tenant.workspace_id, project_id=project.id)
    manager = member_of(tenant, PlatformRole.MANAGER)
    assignments.assign(db, project_id=project.id, user_id=manager.id, role=PlatformRole.MANAGER, workspace_id=tenant.workspace_id)
    db.commit()
    target = uuid.uuid4()

    path = f"/api/access/overrides/report/{report.id}/{target}"
    resp = client.put(path, json={"level": "download"}, headers=auth_headers(manager))
    assert resp.status_code == 200
    override_id = resp.json()["override_id"]
    record = overrides.lookup_override(db, "report", report.id, target)
    assert str(record.id) == override_id
    assert record.access_level == "download"
    assert record.workspace_id == tenant.workspace_id

    assert client.delete(path, headers=auth_headers(manager)).status_code == 200
    db.expire_all()
    assert overrides.lookup_override(db, "report", report.id, target) is None
    # removing an absent override is a no-op
    assert client.delete(path, headers=auth_headers(manager)).status_code == 200


def test_override_endpoints_require_share_permission(client, db):
    tenant = make_tenant(db)
    project = make_resource(db, models.Project, tenant.workspace_id)
    sample = make_resource(db, models.Sample, tenant.workspace_id, project_id=project.id)
    scientist = member_of(tenant, PlatformRole.SCIENTIST)
    assignments.assign(db, project_id=project.id, user_id=scientist.id, role=PlatformRole.SCIENTIST, workspace_id=tenant.workspace_id)
    db.commit()

    resp = client.put(
        f"/api/access/overrides/sample/{sample.id}/{uuid.uuid4()}", json={"level": "edit"}, headers=auth_headers(scientist)
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Access denied: Role 'scientist' cannot share sample"

    batch = make_resource(db, models.Batch, tenant.workspace_id, project_id=project.id)
    wrong_type = client.put(
        f"/api/access/overrides/batch/{batch.id}/{uuid.uuid4()}", json={"level": "view"}, headers=auth_headers(scientist)
    )
    assert wrong_type.status_code == 400


def test_routes_require_authentication(client):
    assert client.post("/api/access/check", json={}).status_code == 401
    assert client.get("/api/audit/security").status_code == 401
