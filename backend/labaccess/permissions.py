"""Role permission matrix for project-scoped access checks.

The matrix maps ``(platform role, resource type, action)`` to an allow flag.
It is data: the default seed below is used unless ``ACCESS_MATRIX_PATH``
points at a JSON document of the form::

    {"permissions": [
        {"role": "viewer", "resource_type": "sample", "action": "view", "allowed": true},
        ...
    ]}

Missing rows are denials.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable

from . import config
from .rbac import Action, PlatformRole, ResourceType

logger = logging.getLogger(__name__)

# purpose: data-driven role x resource type x action allow table with default deny
# status: active


@dataclass(frozen=True)
class RolePermission:
    role: PlatformRole
    resource_type: ResourceType
    action: Action
    allowed: bool


_DEFAULT_ROLE_ACTIONS: dict[PlatformRole, tuple[Action, ...]] = {
    PlatformRole.ADMIN: tuple(Action),
    PlatformRole.MANAGER: (Action.VIEW, Action.DOWNLOAD, Action.CREATE, Action.EDIT, Action.SHARE),
    PlatformRole.SCIENTIST: (Action.VIEW, Action.DOWNLOAD, Action.CREATE, Action.EDIT),
    PlatformRole.VIEWER: (Action.VIEW,),
}


class PermissionMatrix:
    """Immutable lookup table built from :class:`RolePermission` rows."""

    def __init__(self, rows: Iterable[RolePermission]):
        table: dict[tuple[PlatformRole, ResourceType, Action], bool] = {}
        for row in rows:
            table[(row.role, row.resource_type, row.action)] = bool(row.allowed)
        self._table = table

    def __len__(self) -> int:
        return len(self._table)

    def rows(self) -> list[RolePermission]:
        return [
            RolePermission(role=role, resource_type=resource_type, action=action, allowed=allowed)
            for (role, resource_type, action), allowed in self._table.items()
        ]

    def is_role_allowed(
        self,
        role: PlatformRole | str,
        resource_type: ResourceType | str,
        action: Action | str,
    ) -> bool:
        """Return the stored verdict, or False when no row matches."""

        try:
            key = (PlatformRole(role), ResourceType(resource_type), Action(action))
        except ValueError:
            return False
        allowed = self._table.get(key)
        if allowed is None:
            logger.warning(
                "Permission rule not found",
                extra={"role": key[0].value, "resource_type": key[1].value, "action": key[2].value},
            )
            return False
        return allowed


def default_rows() -> list[RolePermission]:
    rows: list[RolePermission] = []
    for role, actions in _DEFAULT_ROLE_ACTIONS.items():
        for resource_type in ResourceType:
            for action in Action:
                rows.append(
                    RolePermission(
                        role=role,
                        resource_type=resource_type,
                        action=action,
                        allowed=action in actions,
                    )
                )
    return rows


def default_matrix() -> PermissionMatrix:
    return PermissionMatrix(default_rows())


def parse_matrix(document: dict) -> PermissionMatrix:
    """Build a matrix from a decoded JSON document, rejecting unknown vocabulary."""

    entries = document.get("permissions")
    if not isinstance(entries, list):
        raise ValueError("permission matrix document must contain a 'permissions' list")
    rows = []
    for index, entry in enumerate(entries):
        try:
            rows.append(
                RolePermission(
                    role=PlatformRole(entry["role"]),
                    resource_type=ResourceType(entry["resource_type"]),
                    action=Action(entry["action"]),
                    allowed=bool(entry.get("allowed", True)),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"invalid permission row at index {index}: {entry!r}") from exc
    return PermissionMatrix(rows)


def load_matrix(path: str | Path) -> PermissionMatrix:
    with open(path, encoding="utf-8") as handle:
        document = json.load(handle)
    matrix = parse_matrix(document)
    logger.info("Loaded permission matrix", extra={"path": str(path), "rows": len(matrix)})
    return matrix


@lru_cache(maxsize=1)
def get_permission_matrix() -> PermissionMatrix:
    """Return the process-wide matrix, loaded once at startup."""

    if config.ACCESS_MATRIX_PATH:
        return load_matrix(config.ACCESS_MATRIX_PATH)
    return default_matrix()
