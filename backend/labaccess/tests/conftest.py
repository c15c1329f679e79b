import os
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-labaccess-tokens")
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

import uuid
from dataclasses import dataclass

import jwt

sys.path.append(str(Path(__file__).resolve().parents[2]))

from labaccess import config, models
from labaccess.auth import Principal
from labaccess.main import app
from labaccess.database import Base, get_db
from labaccess.rbac import PlatformRole
from labaccess.workers.audit_writer import AuditDispatcher, get_audit_dispatcher

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


class RecordingDispatcher:
    """Stands in for the audit writer and keeps submitted entries in memory."""

    def __init__(self):
        self.entries = []

    def submit(self, event):
        self.entries.append(event)
        return True

    def flush(self):
        pass

    def stop(self):
        pass


@pytest.fixture(autouse=True)
def audit_dispatcher():
    dispatcher = AuditDispatcher(session_factory=TestingSessionLocal)
    app.dependency_overrides[get_audit_dispatcher] = lambda: dispatcher
    yield dispatcher
    dispatcher.stop()
    app.dependency_overrides.pop(get_audit_dispatcher, None)


@pytest.fixture
def recording_dispatcher(audit_dispatcher):
    recorder = RecordingDispatcher()
    app.dependency_overrides[get_audit_dispatcher] = lambda: recorder
    yield recorder
    app.dependency_overrides[get_audit_dispatcher] = lambda: audit_dispatcher


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def query_counter():
    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    yield statements
    event.remove(engine, "before_cursor_execute", record)


@dataclass
class Tenant:
    """An organization with its workspace and one signed-in member."""

    org: models.Organization
    principal: Principal

    @property
    def workspace_id(self):
        return self.principal.workspace_id

    @property
    def headers(self):
        return auth_headers(self.principal)


def token_for(principal: Principal) -> str:
    claims = {
        "sub": str(principal.id),
        "workspace_id": str(principal.workspace_id) if principal.workspace_id else None,
        "org_id": str(principal.org_id) if principal.org_id else None,
        "role": principal.role.value,
    }
    return jwt.encode(claims, config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def auth_headers(principal: Principal) -> dict:
    return {"Authorization": f"Bearer {token_for(principal)}"}


def make_tenant(db, role: PlatformRole = PlatformRole.SCIENTIST, name: str | None = None) -> Tenant:
    workspace_id = uuid.uuid4()
    org = models.Organization(name=name or f"org-{uuid.uuid4().hex[:8]}", workspace_id=workspace_id)
    db.add(org)
    db.commit()
    principal = Principal(id=uuid.uuid4(), workspace_id=workspace_id, org_id=org.id, role=role)
    return Tenant(org=org, principal=principal)


def member_of(tenant: Tenant, role: PlatformRole = PlatformRole.SCIENTIST) -> Principal:
    return Principal(id=uuid.uuid4(), workspace_id=tenant.workspace_id, org_id=tenant.org.id, role=role)


def make_resource(db, model, workspace_id, **fields):
    fields.setdefault("name", f"{model.__tablename__}-{uuid.uuid4().hex[:6]}")
    resource = model(workspace_id=workspace_id, **fields)
    db.add(resource)
    db.commit()
    return resource
