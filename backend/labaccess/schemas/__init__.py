"""Pydantic schemas for the access-control API."""

# purpose: aggregate request and response schemas for FastAPI surfaces
# status: active

from .access import (
    AccessCheckRequest,
    DecisionOut,
    GrantContextOut,
    GrantCreate,
    GrantOut,
    GrantRevoke,
    ObjectAccessOut,
    OverrideOut,
    OverrideSet,
    ShareRequest,
    TeamAssignmentOut,
    TeamAssignmentSet,
)
from .audit import AuditLogOut, AuditReportItem, SecurityLogOut

__all__ = [
    "AccessCheckRequest",
    "AuditLogOut",
    "AuditReportItem",
    "DecisionOut",
    "GrantContextOut",
    "GrantCreate",
    "GrantOut",
    "GrantRevoke",
    "ObjectAccessOut",
    "OverrideOut",
    "OverrideSet",
    "SecurityLogOut",
    "ShareRequest",
    "TeamAssignmentOut",
    "TeamAssignmentSet",
]
