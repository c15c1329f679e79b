from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..rbac import AccessLevel, AccessMode, Action, GrantRole, PlatformRole, ResourceType


class GrantBase(BaseModel):
    granted_to_org_id: UUID
    granted_role: GrantRole = GrantRole.VIEWER
    access_mode: AccessMode = AccessMode.PLATFORM
    can_reshare: bool = False
    expires_at: Optional[datetime] = None


class GrantCreate(GrantBase):
    object_type: ResourceType
    object_id: UUID


class ShareRequest(GrantBase):
    pass


class GrantRevoke(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class GrantOut(BaseModel):
    id: UUID
    object_type: ResourceType
    object_id: UUID
    granted_to_org_id: UUID
    granted_by_org_id: Optional[UUID] = None
    granted_role: GrantRole
    access_mode: AccessMode
    can_reshare: bool
    expires_at: Optional[datetime] = None
    created_by: UUID
    created_at: datetime
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None
    revoked_by: Optional[UUID] = None
    status: str = "active"
    model_config = ConfigDict(from_attributes=True)


class GrantContextOut(BaseModel):
    grant_id: UUID
    role: GrantRole
    can_reshare: bool
    expires_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ObjectAccessOut(BaseModel):
    object_type: ResourceType
    object_id: UUID
    is_owner: bool
    grant: Optional[GrantContextOut] = None


class AccessCheckRequest(BaseModel):
    project_id: UUID
    resource_type: ResourceType
    action: Action
    resource_id: Optional[UUID] = None
    user_id: Optional[UUID] = Field(None, description="Defaults to the caller")


class DecisionOut(BaseModel):
    allowed: bool
    reason: str
    policy: str
    access_level: Optional[AccessLevel] = None
    grant: Optional[GrantContextOut] = None
    model_config = ConfigDict(from_attributes=True)


class OverrideSet(BaseModel):
    level: AccessLevel
    can_share: bool = False


class OverrideOut(BaseModel):
    override_id: UUID


class TeamAssignmentSet(BaseModel):
    role: PlatformRole


class TeamAssignmentOut(BaseModel):
    id: UUID
    project_id: UUID
    user_id: UUID
    workspace_id: UUID
    assigned_role: PlatformRole
    assigned_by: Optional[UUID] = None
    assigned_at: datetime
    model_config = ConfigDict(from_attributes=True)
