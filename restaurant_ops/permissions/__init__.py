"""
Permission system for role-based access control.

Usage:
    from restaurant_ops.permissions import AuthorizationEvaluator, Principal

    evaluator = AuthorizationEvaluator()
    decision = evaluator.authorize(principal, ["orders.read"])
"""

from restaurant_ops.permissions.evaluator import (
    AuthorizationDecision,
    AuthorizationEvaluator,
    Decision,
    Principal,
)
from restaurant_ops.permissions.model import (
    APPLICABLE_ACTIONS,
    DEFAULT_ROLES,
    Action,
    CrudFlags,
    Permission,
    PermissionGrid,
    ReadOnlyFlags,
    Resource,
    parse_permissions,
)

__all__ = [
    "AuthorizationDecision",
    "AuthorizationEvaluator",
    "Decision",
    "Principal",
    "APPLICABLE_ACTIONS",
    "DEFAULT_ROLES",
    "Action",
    "CrudFlags",
    "Permission",
    "PermissionGrid",
    "ReadOnlyFlags",
    "Resource",
    "parse_permissions",
]
