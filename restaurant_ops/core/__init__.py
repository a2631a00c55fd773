"""
Core module initialization.
Exports configuration, logging utilities and the domain error types.
"""

from restaurant_ops.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from restaurant_ops.core.exceptions import (
    ErrorCode,
    RestaurantOpsError,
    Forbidden,
    PermissionDenied,
    CrossTenantAccess,
    UnknownTarget,
    InvalidPermissionSpec,
    InvalidTransition,
    OrderLocked,
    OrderNotReady,
    OrderClosed,
    ConcurrentModification,
    NotFound,
    ValidationFailed,
    InvalidPermissionGrid,
    OperationResult,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "ErrorCode",
    "RestaurantOpsError",
    "Forbidden",
    "PermissionDenied",
    "CrossTenantAccess",
    "UnknownTarget",
    "InvalidPermissionSpec",
    "InvalidTransition",
    "OrderLocked",
    "OrderNotReady",
    "OrderClosed",
    "ConcurrentModification",
    "NotFound",
    "ValidationFailed",
    "InvalidPermissionGrid",
    "OperationResult",
]
