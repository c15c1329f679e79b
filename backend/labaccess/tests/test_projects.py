import uuid

from labaccess import models
from labaccess.rbac import AccessLevel, PlatformRole, ResourceType
from labaccess.services import assignments, overrides

from .conftest import auth_headers, client, make_resource, make_tenant, member_of


def _team(db, *roles):
    tenant = make_tenant(db)
    project = make_resource(db, models.Project, tenant.workspace_id)
    members = []
    for role in roles:
        member = member_of(tenant, role)
        assignments.assign(db, project_id=project.id, user_id=member.id, role=role, workspace_id=tenant.workspace_id)
        members.append(member)
    db.commit()
    return tenant, project, members


def test_manager_assigns_and_removes_members(client, db):
    tenant, project, (manager,) = _team(db, PlatformRole.MANAGER)
    newcomer = uuid.uuid4()

    resp = client.put(
        f"/api/projects/{project.id}/team/{newcomer}", json={"role": "scientist"}, headers=auth_headers(manager)
    )
    assert resp.status_code == 200
    assert resp.json()["assigned_role"] == "scientist"
    assert resp.json()["assigned_by"] == str(manager.id)

    team = client.get(f"/api/projects/{project.id}/team", headers=auth_headers(manager)).json()
    assert {m["user_id"] for m in team} == {str(manager.id), str(newcomer)}

    removed = client.delete(f"/api/projects/{project.id}/team/{newcomer}", headers=auth_headers(manager))
    assert removed.status_code == 204
    assert assignments.role_in_project(db, newcomer, project.id) is None


def test_scientist_cannot_manage_team(client, db):
    _, project, (scientist,) = _team(db, PlatformRole.SCIENTIST)
    resp = client.put(
        f"/api/projects/{project.id}/team/{uuid.uuid4()}", json={"role": "viewer"}, headers=auth_headers(scientist)
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Access denied: scientist role insufficient, manager required"


def test_unassigned_user_cannot_see_team(client, db):
    tenant, project, _ = _team(db, PlatformRole.MANAGER)
    outsider = member_of(tenant, PlatformRole.ADMIN)
    resp = client.get(f"/api/projects/{project.id}/team", headers=auth_headers(outsider))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Access denied: User is not assigned to this project"


def test_malformed_project_id(client, db, recording_dispatcher):
    tenant = make_tenant(db)
    resp = client.get("/api/projects/not-a-uuid/team", headers=tenant.headers)
    assert resp.status_code == 400


def test_report_access_dependency(client, db):
    tenant, project, (viewer,) = _team(db, PlatformRole.VIEWER)
    report = make_resource(db, models.Report, tenant.workspace_id, project_id=project.id)

    resp = client.get(f"/api/projects/{project.id}/reports/{report.id}/access", headers=auth_headers(viewer))
    assert resp.status_code == 200
    body = resp.json()
    assert body["allowed"] is True
    assert body["reason"] == "Role 'viewer' allows view on report"


def test_sample_download_uses_override(client, db):
    tenant, project, (viewer,) = _team(db, PlatformRole.VIEWER)
    sample = make_resource(db, models.Sample, tenant.workspace_id, project_id=project.id)
    path = f"/api/projects/{project.id}/samples/{sample.id}/download-access"

    denied = client.get(path, headers=auth_headers(viewer))
    assert denied.status_code == 403
    assert denied.json()["detail"] == "Access denied: Role 'viewer' cannot download sample"

    scientist_tenant, scientist_project, (scientist,) = _team(db, PlatformRole.SCIENTIST)
    scientist_sample = make_resource(db, models.Sample, scientist_tenant.workspace_id, project_id=scientist_project.id)
    overrides.grant_resource_access(
        db, ResourceType.SAMPLE, scientist_sample.id, scientist.id, scientist_tenant.workspace_id, AccessLevel.VIEW
    )
    db.commit()
    narrowed = client.get(
        f"/api/projects/{scientist_project.id}/samples/{scientist_sample.id}/download-access",
        headers=auth_headers(scientist),
    )
    assert narrowed.status_code == 403
    assert narrowed.json()["detail"] == "Access denied: User's explicit access level (view) does not allow download"


def test_report_outside_project_is_denied(client, db, recording_dispatcher):
    tenant, project, (viewer,) = _team(db, PlatformRole.VIEWER)
    other_tenant, other_project, _ = _team(db, PlatformRole.MANAGER)
    foreign = make_resource(db, models.Report, other_tenant.workspace_id, project_id=other_project.id)
    sibling = make_resource(db, models.Project, tenant.workspace_id)
    unfiled = make_resource(db, models.Report, tenant.workspace_id, project_id=sibling.id)

    for report_id in (foreign.id, unfiled.id, uuid.uuid4()):
        resp = client.get(f"/api/projects/{project.id}/reports/{report_id}/access", headers=auth_headers(viewer))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Access denied: report is not part of this project"

    denied = [e for e in recording_dispatcher.entries if getattr(e, "event_type", None) == "access_denied"]
    assert len(denied) == 3


def test_sample_outside_project_is_denied(client, db):
    _, project, (scientist,) = _team(db, PlatformRole.SCIENTIST)
    other_tenant, other_project, _ = _team(db, PlatformRole.SCIENTIST)
    foreign = make_resource(db, models.Sample, other_tenant.workspace_id, project_id=other_project.id)

    resp = client.get(
        f"/api/projects/{project.id}/samples/{foreign.id}/download-access", headers=auth_headers(scientist)
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Access denied: sample is not part of this project"
