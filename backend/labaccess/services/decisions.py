"""Access decision pipeline.

Each authorization rule is a strategy with a ``decide`` method returning a
:class:`Decision` or ``None`` to abstain. :class:`PolicyPipeline` composes
strategies in order:

* a deny is authoritative and ends evaluation;
* an allow marked ``final`` ends evaluation;
* a non-final allow becomes the running verdict, which later strategies may
  replace or narrow;
* with no allow at all the outcome is a deny.

Two pipelines are built from the four strategies. The object policy
(ownership, then delegated grants) guards workspace-owned objects, the
project policy (role matrix, then per-user overrides) guards project-team
resources.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import AccessCheckFailedError, LookupTimeoutError
from ..metrics import ACCESS_DECISIONS
from ..permissions import PermissionMatrix, get_permission_matrix
from ..rbac import (
    OVERRIDE_TYPES,
    AccessLevel,
    Action,
    GrantRole,
    ResourceType,
    action_within_level,
    has_sufficient_role,
)
from .assignments import role_in_project
from .grants import lookup_active
from .lookup import LookupDeadline
from .overrides import lookup_override
from .ownership import is_owner, load_resource

logger = logging.getLogger(__name__)

# purpose: compose ownership, grant, role matrix and override rules into auditable decisions
# inputs: caller identity, resource reference, action or minimum grant role
# outputs: Decision records; access_decisions_total counter per policy and outcome
# status: active

OBJECT_POLICY = "object"
PROJECT_POLICY = "project"

# actions an override level can gate; create/delete/share keep the role matrix verdict
_OVERRIDE_GATED_ACTIONS = frozenset({Action.VIEW, Action.DOWNLOAD, Action.EDIT})


@dataclass(frozen=True)
class GrantContext:
    grant_id: UUID
    role: GrantRole
    can_reshare: bool
    expires_at: datetime | None = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    policy: str = ""
    access_level: AccessLevel | None = None
    grant: GrantContext | None = None
    final: bool = field(default=False, compare=False)

    @classmethod
    def allow(cls, reason: str, **kwargs: Any) -> "Decision":
        return cls(allowed=True, reason=reason, **kwargs)

    @classmethod
    def deny(cls, reason: str, **kwargs: Any) -> "Decision":
        return cls(allowed=False, reason=reason, **kwargs)


@dataclass
class AccessRequest:
    db: Session
    user_id: UUID
    resource_type: ResourceType
    resource_id: UUID | None = None
    action: Action | None = None
    workspace_id: UUID | None = None
    org_id: UUID | None = None
    project_id: UUID | None = None
    minimum_role: GrantRole | None = None
    matrix: PermissionMatrix | None = None
    deadline: LookupDeadline = field(default_factory=LookupDeadline)


class AccessPolicy(Protocol):
    def decide(self, request: AccessRequest) -> Decision | None:
        ...


class PolicyPipeline:
    def __init__(self, name: str, strategies: Iterable[AccessPolicy]):
        self.name = name
        self.strategies = list(strategies)

    def evaluate(self, request: AccessRequest) -> Decision:
        verdict: Decision | None = None
        for strategy in self.strategies:
            decision = strategy.decide(request)
            if decision is None:
                continue
            if not decision.allowed or decision.final:
                verdict = decision
                break
            verdict = decision
        if verdict is None:
            verdict = Decision.deny("No policy allowed this request")
        return replace(verdict, policy=self.name)


class OwnershipStrategy:
    """Allow outright when the caller's workspace owns the object."""

    def decide(self, request: AccessRequest) -> Decision | None:
        if request.resource_id is None:
            return None
        resource = load_resource(request.db, request.resource_type, request.resource_id, deadline=request.deadline)
        if is_owner(resource, request.workspace_id):
            return Decision.allow("Caller's workspace owns this object", final=True)
        return None


class DelegatedGrantStrategy:
    def decide(self, request: AccessRequest) -> Decision | None:
        if request.resource_id is None:
            return Decision.deny("No ownership or access grant found")
        grant = lookup_active(
            request.db,
            request.resource_type,
            request.resource_id,
            request.org_id,
            deadline=request.deadline,
        )
        if grant is None:
            return Decision.deny("No ownership or access grant found")
        if request.minimum_role is not None and not has_sufficient_role(grant.granted_role, request.minimum_role):
            required = GrantRole(request.minimum_role).value
            return Decision.deny(f"{grant.granted_role} role insufficient, {required} required")
        context = GrantContext(
            grant_id=grant.id,
            role=GrantRole(grant.granted_role),
            can_reshare=bool(grant.can_reshare),
            expires_at=grant.expires_at,
        )
        return Decision.allow(f"Access granted via {grant.granted_role} grant", grant=context, final=True)


class RoleMatrixStrategy:
    def decide(self, request: AccessRequest) -> Decision | None:
        role = role_in_project(request.db, request.user_id, request.project_id, deadline=request.deadline)
        if role is None:
            return Decision.deny("User is not assigned to this project")
        matrix = request.matrix if request.matrix is not None else get_permission_matrix()
        resource_type = ResourceType(request.resource_type).value
        action = Action(request.action).value
        if not matrix.is_role_allowed(role, request.resource_type, request.action):
            return Decision.deny(f"Role '{role.value}' cannot {action} {resource_type}")
        return Decision.allow(f"Role '{role.value}' allows {action} on {resource_type}")


class OverrideStrategy:
    """Per-user override on reports and samples, authoritative for view/download/edit."""

    def decide(self, request: AccessRequest) -> Decision | None:
        if request.resource_id is None or request.resource_type not in OVERRIDE_TYPES:
            return None
        if Action(request.action) not in _OVERRIDE_GATED_ACTIONS:
            return None
        override = lookup_override(
            request.db,
            request.resource_type,
            request.resource_id,
            request.user_id,
            deadline=request.deadline,
        )
        if override is None:
            return None
        level = AccessLevel(override.access_level)
        action = Action(request.action).value
        if not action_within_level(action, level):
            return Decision.deny(f"User's explicit access level ({level.value}) does not allow {action}")
        return Decision.allow(f"User has explicit {level.value} access", access_level=level, final=True)


object_policy = PolicyPipeline(OBJECT_POLICY, [OwnershipStrategy(), DelegatedGrantStrategy()])
project_policy = PolicyPipeline(PROJECT_POLICY, [RoleMatrixStrategy(), OverrideStrategy()])


def _run(pipeline: PolicyPipeline, request: AccessRequest) -> Decision:
    try:
        decision = pipeline.evaluate(request)
    except LookupTimeoutError:
        ACCESS_DECISIONS.labels(policy=pipeline.name, outcome="error").inc()
        raise
    except SQLAlchemyError as exc:
        ACCESS_DECISIONS.labels(policy=pipeline.name, outcome="error").inc()
        logger.exception(
            "Error checking access",
            extra={
                "policy": pipeline.name,
                "user_id": str(request.user_id),
                "resource_type": ResourceType(request.resource_type).value,
                "resource_id": str(request.resource_id) if request.resource_id else None,
            },
        )
        raise AccessCheckFailedError() from exc
    outcome = "allow" if decision.allowed else "deny"
    ACCESS_DECISIONS.labels(policy=pipeline.name, outcome=outcome).inc()
    if not decision.allowed:
        logger.info(
            "Access denied",
            extra={
                "policy": pipeline.name,
                "user_id": str(request.user_id),
                "resource_type": ResourceType(request.resource_type).value,
                "reason": decision.reason,
            },
        )
    return decision


def check_object_access(
    db: Session,
    principal,
    resource_type: ResourceType,
    object_id: UUID,
    minimum_role: GrantRole | None = None,
    *,
    deadline: LookupDeadline | None = None,
) -> Decision:
    """Ownership first, then the caller organization's active grant."""

    request = AccessRequest(
        db=db,
        user_id=principal.id,
        workspace_id=principal.workspace_id,
        org_id=principal.org_id,
        resource_type=ResourceType(resource_type),
        resource_id=object_id,
        minimum_role=minimum_role,
        deadline=deadline or LookupDeadline(),
    )
    return _run(object_policy, request)


def check_access(
    db: Session,
    user_id: UUID,
    project_id: UUID,
    resource_type: ResourceType,
    action: Action,
    resource_id: UUID | None = None,
    matrix: PermissionMatrix | None = None,
    *,
    deadline: LookupDeadline | None = None,
) -> Decision:
    """Project assignment, role matrix, then any per-user override."""

    request = AccessRequest(
        db=db,
        user_id=user_id,
        project_id=project_id,
        resource_type=ResourceType(resource_type),
        resource_id=resource_id,
        action=Action(action),
        matrix=matrix,
        deadline=deadline or LookupDeadline(),
    )
    return _run(project_policy, request)
