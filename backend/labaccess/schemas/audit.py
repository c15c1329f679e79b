from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AuditLogOut(BaseModel):
    id: UUID
    object_type: str
    object_id: str
    action: str
    actor_id: UUID
    actor_workspace_id: Optional[UUID] = None
    actor_org_id: Optional[UUID] = None
    details: Dict[str, Any] = {}
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class SecurityLogOut(BaseModel):
    id: UUID
    event_type: str
    severity: str
    reason: str
    user_id: Optional[UUID] = None
    workspace_id: Optional[UUID] = None
    organization_id: Optional[UUID] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: Dict[str, Any] = {}
    ip_address: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditReportItem(BaseModel):
    action: str
    count: int
