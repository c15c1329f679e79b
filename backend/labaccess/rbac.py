from __future__ import annotations

from enum import Enum

# purpose: role lattices and access vocabulary shared by every access policy
# status: active


class ResourceType(str, Enum):
    PROJECT = "project"
    SAMPLE = "sample"
    DERIVED_SAMPLE = "derived_sample"
    BATCH = "batch"
    ANALYSIS = "analysis"
    DOCUMENT = "document"
    REPORT = "report"


class GrantRole(str, Enum):
    """Role carried by a cross-organization access grant."""

    VIEWER = "viewer"
    PROCESSOR = "processor"
    ANALYZER = "analyzer"
    CLIENT = "client"


class PlatformRole(str, Enum):
    """Role a user holds on the platform or inside a project team."""

    VIEWER = "viewer"
    SCIENTIST = "scientist"
    MANAGER = "manager"
    ADMIN = "admin"


class Action(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    SHARE = "share"


class AccessLevel(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    EDIT = "edit"


class AccessMode(str, Enum):
    PLATFORM = "platform"
    OFFLINE = "offline"


class AuditAction(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    SHARE = "share"
    UPLOAD = "upload"
    DOWNLOAD = "download"
    REVOKE = "revoke"


# types guarded by ownership and delegated grants
OBJECT_ACCESS_TYPES: frozenset[ResourceType] = frozenset(
    {
        ResourceType.PROJECT,
        ResourceType.SAMPLE,
        ResourceType.DERIVED_SAMPLE,
        ResourceType.BATCH,
        ResourceType.ANALYSIS,
        ResourceType.DOCUMENT,
    }
)

# types that accept per-user access overrides
OVERRIDE_TYPES: frozenset[ResourceType] = frozenset({ResourceType.REPORT, ResourceType.SAMPLE})

_RESOURCE_TYPE_LABELS: dict[str, ResourceType] = {
    "Project": ResourceType.PROJECT,
    "Sample": ResourceType.SAMPLE,
    "DerivedSample": ResourceType.DERIVED_SAMPLE,
    "Batch": ResourceType.BATCH,
    "Analysis": ResourceType.ANALYSIS,
    "Document": ResourceType.DOCUMENT,
    "Report": ResourceType.REPORT,
}

_GRANT_ROLE_LEVELS: dict[GrantRole, int] = {
    GrantRole.VIEWER: 10,
    GrantRole.PROCESSOR: 20,
    GrantRole.ANALYZER: 30,
    GrantRole.CLIENT: 40,
}

_PLATFORM_ROLE_LEVELS: dict[PlatformRole, int] = {
    PlatformRole.VIEWER: 10,
    PlatformRole.SCIENTIST: 20,
    PlatformRole.MANAGER: 30,
    PlatformRole.ADMIN: 40,
}

_ACCESS_LEVEL_RANKS: dict[AccessLevel, int] = {
    AccessLevel.VIEW: 0,
    AccessLevel.DOWNLOAD: 1,
    AccessLevel.EDIT: 2,
}


def parse_resource_type(raw: str | None) -> ResourceType | None:
    """Resolve a wire value (``sample``) or label (``Sample``) to a resource type."""

    if not raw:
        return None
    if raw in _RESOURCE_TYPE_LABELS:
        return _RESOURCE_TYPE_LABELS[raw]
    try:
        return ResourceType(raw)
    except ValueError:
        return None


def _coerce(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def has_sufficient_role(actual: GrantRole | str, required: GrantRole | str) -> bool:
    """Return True when ``actual`` ranks at or above ``required`` in the grant lattice."""

    actual_role = _coerce(GrantRole, actual)
    required_role = _coerce(GrantRole, required)
    if actual_role is None or required_role is None:
        return False
    return _GRANT_ROLE_LEVELS[actual_role] >= _GRANT_ROLE_LEVELS[required_role]


def has_required_platform_role(actual: PlatformRole | str, required: PlatformRole | str) -> bool:
    """Return True when ``actual`` ranks at or above ``required`` in the platform lattice."""

    actual_role = _coerce(PlatformRole, actual)
    required_role = _coerce(PlatformRole, required)
    if actual_role is None or required_role is None:
        return False
    return _PLATFORM_ROLE_LEVELS[actual_role] >= _PLATFORM_ROLE_LEVELS[required_role]


def access_level_rank(level: AccessLevel | str) -> int | None:
    coerced = _coerce(AccessLevel, level)
    return None if coerced is None else _ACCESS_LEVEL_RANKS[coerced]


def action_within_level(action: Action | str, level: AccessLevel | str) -> bool:
    """Return True when an override at ``level`` covers ``action`` (view < download < edit)."""

    action_rank = access_level_rank(getattr(action, "value", action))
    level_rank = access_level_rank(level)
    if action_rank is None or level_rank is None:
        return False
    return action_rank <= level_rank
