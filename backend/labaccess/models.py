import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    DDL,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Session, relationship
from datetime import datetime, timezone

from .database import Base
from .rbac import ResourceType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to mutate an append-only or immutable column."""


class Organization(Base):
    __tablename__ = "organizations"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    workspace_id = Column(UUID(as_uuid=True), nullable=True)
    is_platform_workspace = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class WorkspaceOwnedMixin:
    """Columns shared by every workspace-owned laboratory object."""

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Project(WorkspaceOwnedMixin, Base):
    __tablename__ = "projects"
    description = Column(String)

    team = relationship("ProjectTeamAssignment", back_populates="project", cascade="all, delete-orphan")


class Sample(WorkspaceOwnedMixin, Base):
    __tablename__ = "samples"
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True)


class DerivedSample(WorkspaceOwnedMixin, Base):
    __tablename__ = "derived_samples"
    root_sample_id = Column(UUID(as_uuid=True), ForeignKey("samples.id"), nullable=True)


class Batch(WorkspaceOwnedMixin, Base):
    __tablename__ = "batches"
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True)


class Analysis(WorkspaceOwnedMixin, Base):
    __tablename__ = "analyses"
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True)
    execution_mode = Column(String, default="platform", nullable=False)


class Document(WorkspaceOwnedMixin, Base):
    __tablename__ = "documents"
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True)


class Report(WorkspaceOwnedMixin, Base):
    __tablename__ = "reports"
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True)


RESOURCE_MODELS: dict[ResourceType, type] = {
    ResourceType.PROJECT: Project,
    ResourceType.SAMPLE: Sample,
    ResourceType.DERIVED_SAMPLE: DerivedSample,
    ResourceType.BATCH: Batch,
    ResourceType.ANALYSIS: Analysis,
    ResourceType.DOCUMENT: Document,
    ResourceType.REPORT: Report,
}


class AccessGrant(Base):
    __tablename__ = "access_grants"
    __table_args__ = (
        # one unrevoked grant per (object, receiving organization); revoked rows stay for audit
        sa.Index(
            "uq_access_grants_active_object_org",
            "object_type",
            "object_id",
            "granted_to_org_id",
            unique=True,
            sqlite_where=sa.text("revoked_at IS NULL"),
            postgresql_where=sa.text("revoked_at IS NULL"),
        ),
        sa.Index("ix_access_grants_org", "granted_to_org_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    object_type = Column(String, nullable=False)
    object_id = Column(UUID(as_uuid=True), nullable=False)
    granted_to_org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False)
    granted_by_org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=True)
    granted_role = Column(String, nullable=False)
    access_mode = Column(String, default="platform", nullable=False)
    can_reshare = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revocation_reason = Column(String, nullable=True)
    revoked_by = Column(UUID(as_uuid=True), nullable=True)

    granted_to = relationship("Organization", foreign_keys=[granted_to_org_id])


class ProjectTeamAssignment(Base):
    __tablename__ = "project_team_assignments"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_team_user"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    workspace_id = Column(UUID(as_uuid=True), nullable=False)
    assigned_role = Column(String, nullable=False)
    assigned_by = Column(UUID(as_uuid=True), nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=_utcnow)

    project = relationship("Project", back_populates="team")


class ResourceAccessOverride(Base):
    __tablename__ = "resource_access_overrides"
    __table_args__ = (
        UniqueConstraint("resource_type", "resource_id", "user_id", name="uq_resource_override_user"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    resource_type = Column(String, nullable=False)
    resource_id = Column(UUID(as_uuid=True), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    workspace_id = Column(UUID(as_uuid=True), nullable=False)
    access_level = Column(String, default="view", nullable=False)
    can_share = Column(Boolean, default=False, nullable=False)
    granted_by = Column(UUID(as_uuid=True), nullable=True)
    granted_at = Column(DateTime(timezone=True), default=_utcnow)


class AuditLogEntry(Base):
    __tablename__ = "audit_log_entries"
    __table_args__ = (
        sa.Index("ix_audit_log_object", "object_type", "object_id"),
        sa.Index("ix_audit_log_created_at", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    object_type = Column(String, nullable=False)
    object_id = Column(String, nullable=False)
    action = Column(String, nullable=False)
    actor_id = Column(UUID(as_uuid=True), nullable=False)
    actor_workspace_id = Column(UUID(as_uuid=True), nullable=True)
    actor_org_id = Column(UUID(as_uuid=True), nullable=True)
    details = Column(JSON, default=dict)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class SecurityLogEntry(Base):
    __tablename__ = "security_log_entries"
    __table_args__ = (sa.Index("ix_security_log_workspace", "workspace_id", "created_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_type = Column(String, nullable=False)
    severity = Column(String, nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=True)
    workspace_id = Column(UUID(as_uuid=True), nullable=True)
    organization_id = Column(UUID(as_uuid=True), nullable=True)
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)
    reason = Column(String, nullable=False)
    details = Column(JSON, default=dict)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


APPEND_ONLY_MODELS: tuple[type, ...] = (AuditLogEntry, SecurityLogEntry)


def _install_append_only_triggers(model: type) -> None:
    table = model.__table__
    name = table.name
    for operation in ("UPDATE", "DELETE"):
        sqlite_trigger = DDL(
            f"CREATE TRIGGER IF NOT EXISTS {name}_no_{operation.lower()} "
            f"BEFORE {operation} ON {name} "
            f"BEGIN SELECT RAISE(ABORT, '{name} is append-only'); END;"
        )
        event.listen(table, "after_create", sqlite_trigger.execute_if(dialect="sqlite"))

    pg_function = DDL(
        f"CREATE OR REPLACE FUNCTION {name}_append_only() RETURNS trigger AS $$ "
        f"BEGIN RAISE EXCEPTION '{name} is append-only'; END; $$ LANGUAGE plpgsql;"
    )
    pg_trigger = DDL(
        f"CREATE TRIGGER {name}_append_only BEFORE UPDATE OR DELETE ON {name} "
        f"FOR EACH ROW EXECUTE FUNCTION {name}_append_only();"
    )
    event.listen(table, "after_create", pg_function.execute_if(dialect="postgresql"))
    event.listen(table, "after_create", pg_trigger.execute_if(dialect="postgresql"))


for _model in APPEND_ONLY_MODELS:
    _install_append_only_triggers(_model)


@event.listens_for(Session, "before_flush")
def _guard_immutable_rows(session, flush_context, instances):
    for obj in session.dirty:
        if isinstance(obj, APPEND_ONLY_MODELS) and session.is_modified(obj):
            raise ImmutableRecordError(f"{obj.__tablename__} rows cannot be updated")
        if isinstance(obj, WorkspaceOwnedMixin):
            # an expired attribute has no old value in its history; any assignment counts
            history = sa.inspect(obj).attrs.workspace_id.history
            if history.added and list(history.added) != list(history.deleted):
                raise ImmutableRecordError("resource ownership cannot change after creation")
    for obj in session.deleted:
        if isinstance(obj, APPEND_ONLY_MODELS):
            raise ImmutableRecordError(f"{obj.__tablename__} rows cannot be deleted")


@event.listens_for(Session, "do_orm_execute")
def _guard_bulk_log_mutation(orm_execute_state):
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is not None and mapper.class_ in APPEND_ONLY_MODELS:
        raise ImmutableRecordError(f"{mapper.class_.__tablename__} is append-only")
