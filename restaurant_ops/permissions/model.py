"""
Permission Model

The resource/action vocabulary and the per-role permission grid.

A grid is a fixed-shape, frozen pydantic record: one optional flag set per
resource. Anything not present is denied. Grids are validated when a role
is created or updated, so unknown resources, inapplicable actions
(``statistics.create``) and non-boolean flags never reach storage.

Usage:
    grid = PermissionGrid.from_mapping({"orders": {"read": True}})
    grid.allows(Permission.parse("orders.read"))    # True
    grid.allows(Permission.parse("orders.delete"))  # False
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictBool, ValidationError

from restaurant_ops.core.exceptions import InvalidPermissionGrid, InvalidPermissionSpec

logger = logging.getLogger(__name__)


class Resource(str, Enum):
    ORDERS = "orders"
    MENU = "menu"
    USERS = "users"
    TABLES = "tables"
    STATISTICS = "statistics"
    PAYMENTS = "payments"


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


ALL_ACTIONS = frozenset(Action)

APPLICABLE_ACTIONS: dict[Resource, frozenset[Action]] = {
    resource: ALL_ACTIONS for resource in Resource
}
APPLICABLE_ACTIONS[Resource.STATISTICS] = frozenset({Action.READ})


@dataclass(frozen=True)
class Permission:
    """A single ``resource.action`` pair."""

    resource: Resource
    action: Action

    @classmethod
    def parse(cls, spec: str) -> "Permission":
        """
        Parse a ``"resource.action"`` string.

        Raises:
            InvalidPermissionSpec: malformed string, unknown resource, or an
                action the resource does not support
        """
        if not isinstance(spec, str) or spec.count(".") != 1:
            raise InvalidPermissionSpec(
                f"Permission must look like 'resource.action', got {spec!r}",
                permission=repr(spec),
            )

        resource_name, action_name = spec.split(".")
        try:
            resource = Resource(resource_name)
        except ValueError:
            raise InvalidPermissionSpec(
                f"Unknown resource {resource_name!r} in permission {spec!r}",
                permission=spec,
            )
        try:
            action = Action(action_name)
        except ValueError:
            raise InvalidPermissionSpec(
                f"Unknown action {action_name!r} in permission {spec!r}",
                permission=spec,
            )

        if action not in APPLICABLE_ACTIONS[resource]:
            raise InvalidPermissionSpec(
                f"Action {action.value!r} is not valid for resource {resource.value!r}",
                permission=spec,
            )
        return cls(resource, action)

    def __str__(self) -> str:
        return f"{self.resource.value}.{self.action.value}"


PermissionLike = Union[str, Permission]


def parse_permissions(specs: Iterable[PermissionLike]) -> tuple[Permission, ...]:
    """
    Normalize a requirement list into Permission values.

    Order is preserved and duplicates are dropped. Call sites build their
    requirement tuples with this at import time so a typo fails on startup.
    """
    if isinstance(specs, (str, Permission)):
        specs = [specs]

    seen: dict[Permission, None] = {}
    for spec in specs:
        permission = spec if isinstance(spec, Permission) else Permission.parse(spec)
        seen.setdefault(permission, None)
    return tuple(seen)


# =============================================================================
# GRID
# =============================================================================

class CrudFlags(BaseModel):
    """Action flags for a resource that supports the full CRUD set."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    create: StrictBool = False
    read: StrictBool = False
    update: StrictBool = False
    delete: StrictBool = False


class ReadOnlyFlags(BaseModel):
    """Action flags for a read-only resource."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    read: StrictBool = False


class PermissionGrid(BaseModel):
    """
    Per-role permission grid.

    Each attribute is the flag set for one resource; ``None`` means the
    resource key was absent and every action on it is denied.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    orders: Optional[CrudFlags] = None
    menu: Optional[CrudFlags] = None
    users: Optional[CrudFlags] = None
    tables: Optional[CrudFlags] = None
    statistics: Optional[ReadOnlyFlags] = None
    payments: Optional[CrudFlags] = None

    def allows(self, permission: Permission) -> bool:
        flags = getattr(self, permission.resource.value)
        if flags is None:
            return False
        return getattr(flags, permission.action.value, False) is True

    def granted(self) -> list[str]:
        """Flat list of granted ``resource.action`` strings."""
        result = []
        for resource in Resource:
            for action in Action:
                if action in APPLICABLE_ACTIONS[resource]:
                    permission = Permission(resource, action)
                    if self.allows(permission):
                        result.append(str(permission))
        return result

    def to_storage(self) -> dict[str, Any]:
        """JSON-ready mapping with absent resources left out."""
        return self.model_dump(exclude_none=True)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PermissionGrid":
        """
        Validate a raw mapping (request body, seed data).

        Raises:
            InvalidPermissionGrid: unknown keys or non-boolean flags
        """
        if not isinstance(data, Mapping):
            raise InvalidPermissionGrid("Permission grid must be an object")
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            errors = [
                {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            raise InvalidPermissionGrid("Invalid permission grid", errors=errors)

    @classmethod
    def from_storage(cls, data: Any) -> Optional["PermissionGrid"]:
        """
        Load a grid persisted on a role.

        A stored value that no longer validates yields ``None`` so the
        evaluator denies everything for that role.
        """
        if data is None:
            return None
        try:
            return cls.from_mapping(data)
        except InvalidPermissionGrid as e:
            logger.error(f"Stored permission grid is invalid, denying all: {e.context}")
            return None

    @classmethod
    def deny_all(cls) -> "PermissionGrid":
        return cls()

    @classmethod
    def full_access(cls) -> "PermissionGrid":
        crud = CrudFlags(create=True, read=True, update=True, delete=True)
        return cls(
            orders=crud,
            menu=crud,
            users=crud,
            tables=crud,
            statistics=ReadOnlyFlags(read=True),
            payments=crud,
        )


# =============================================================================
# DEFAULT ROLES
# =============================================================================

DEFAULT_ROLES: dict[str, dict[str, Any]] = {
    "Super Admin": {
        "description": "Full access to all features",
        "permissions": PermissionGrid.full_access().to_storage(),
    },
    "Server": {
        "description": "Can manage orders and payments",
        "permissions": {
            "orders": {"create": True, "read": True, "update": True, "delete": False},
            "menu": {"create": False, "read": True, "update": False, "delete": False},
            "users": {"create": False, "read": False, "update": False, "delete": False},
            "tables": {"create": False, "read": True, "update": True, "delete": False},
            "statistics": {"read": False},
            "payments": {"create": True, "read": True, "update": False, "delete": False},
        },
    },
    "Cook": {
        "description": "Can view and update order status",
        "permissions": {
            "orders": {"create": False, "read": True, "update": True, "delete": False},
            "menu": {"create": False, "read": True, "update": False, "delete": False},
            "users": {"create": False, "read": False, "update": False, "delete": False},
            "tables": {"create": False, "read": True, "update": False, "delete": False},
            "statistics": {"read": False},
            "payments": {"create": False, "read": False, "update": False, "delete": False},
        },
    },
}
