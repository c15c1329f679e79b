from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from fastapi import Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models

# purpose: append-only audit and security trail; insert and read helpers only
# status: active


@dataclass
class AuditEvent:
    object_type: str
    object_id: str
    action: str
    actor_id: UUID
    actor_workspace_id: UUID | None = None
    actor_org_id: UUID | None = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self) -> models.AuditLogEntry:
        return models.AuditLogEntry(
            object_type=self.object_type,
            object_id=str(self.object_id),
            action=self.action,
            actor_id=self.actor_id,
            actor_workspace_id=self.actor_workspace_id,
            actor_org_id=self.actor_org_id,
            details=self.details,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            created_at=self.created_at,
        )


@dataclass
class SecurityEvent:
    event_type: str
    severity: str
    reason: str
    user_id: UUID | None = None
    workspace_id: UUID | None = None
    organization_id: UUID | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self) -> models.SecurityLogEntry:
        return models.SecurityLogEntry(
            event_type=self.event_type,
            severity=self.severity,
            reason=self.reason,
            user_id=self.user_id,
            workspace_id=self.workspace_id,
            organization_id=self.organization_id,
            resource_type=self.resource_type,
            resource_id=None if self.resource_id is None else str(self.resource_id),
            details=self.details,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            created_at=self.created_at,
        )


def request_metadata(request: Request | None) -> dict[str, Any]:
    """Network and client metadata recorded with every log row."""

    if request is None:
        return {"ip_address": None, "user_agent": None}
    client = request.client
    user_agent = request.headers.get("user-agent")
    return {
        "ip_address": client.host if client else None,
        "user_agent": user_agent[:500] if user_agent else None,
    }


def _request_details(request: Request | None) -> dict[str, Any]:
    if request is None:
        return {}
    return {"method": request.method, "endpoint": request.url.path}


def access_denied_event(principal, resource_type: str, resource_id, reason: str, request: Request | None) -> SecurityEvent:
    return SecurityEvent(
        event_type="access_denied",
        severity="medium",
        reason=reason,
        user_id=principal.id,
        workspace_id=principal.workspace_id,
        organization_id=principal.org_id,
        resource_type=resource_type,
        resource_id=None if resource_id is None else str(resource_id),
        details=_request_details(request),
        **request_metadata(request),
    )


def reshare_denied_event(principal, resource_type: str, resource_id, request: Request | None) -> SecurityEvent:
    event = access_denied_event(principal, resource_type, resource_id, "Re-sharing not permitted", request)
    event.event_type = "reshare_denied"
    return event


def validation_failure_event(principal, resource_type: str | None, reason: str, request: Request | None) -> SecurityEvent:
    return SecurityEvent(
        event_type="validation_failure",
        severity="low",
        reason=reason,
        user_id=principal.id,
        workspace_id=principal.workspace_id,
        organization_id=principal.org_id,
        resource_type=resource_type,
        details=_request_details(request),
        **request_metadata(request),
    )


def auth_failure_event(reason: str, request: Request | None) -> SecurityEvent:
    return SecurityEvent(
        event_type="auth_failure",
        severity="high",
        reason=reason,
        details=_request_details(request),
        **request_metadata(request),
    )


def log_action(db: Session, event: AuditEvent) -> models.AuditLogEntry:
    row = event.to_row()
    db.add(row)
    db.commit()
    return row


def log_security_event(db: Session, event: SecurityEvent) -> models.SecurityLogEntry:
    row = event.to_row()
    db.add(row)
    db.commit()
    return row


def write_event(db: Session, event: AuditEvent | SecurityEvent):
    if isinstance(event, SecurityEvent):
        return log_security_event(db, event)
    return log_action(db, event)


def object_audit_trail(
    db: Session,
    object_type: str,
    object_id: UUID | str,
    limit: int = 100,
) -> list[models.AuditLogEntry]:
    return (
        db.query(models.AuditLogEntry)
        .filter(
            models.AuditLogEntry.object_type == object_type,
            models.AuditLogEntry.object_id == str(object_id),
        )
        .order_by(models.AuditLogEntry.created_at.desc())
        .limit(limit)
        .all()
    )


def security_events(
    db: Session,
    workspace_id: UUID,
    event_type: str | None = None,
    severity: str | None = None,
    limit: int = 100,
) -> list[models.SecurityLogEntry]:
    query = db.query(models.SecurityLogEntry).filter(models.SecurityLogEntry.workspace_id == workspace_id)
    if event_type:
        query = query.filter(models.SecurityLogEntry.event_type == event_type)
    if severity:
        query = query.filter(models.SecurityLogEntry.severity == severity)
    return query.order_by(models.SecurityLogEntry.created_at.desc()).limit(limit).all()


def generate_report(
    db: Session,
    start: datetime,
    end: datetime,
    actor_id: UUID | None = None,
):
    query = db.query(models.AuditLogEntry).filter(
        models.AuditLogEntry.created_at >= start,
        models.AuditLogEntry.created_at <= end,
    )
    if actor_id:
        query = query.filter(models.AuditLogEntry.actor_id == actor_id)
    rows = (
        query.with_entities(models.AuditLogEntry.action, func.count(models.AuditLogEntry.id))
        .group_by(models.AuditLogEntry.action)
        .all()
    )
    return [{"action": r[0], "count": r[1]} for r in rows]
