"""
Authorization Evaluator

Decides whether a principal's role grants every permission an operation
requires. The evaluator is a pure function of (grid, requirements): it
holds no state, performs no I/O and does not look at tenants. Tenant
scope is checked separately by TenantIsolationGuard.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from restaurant_ops.core.exceptions import PermissionDenied
from restaurant_ops.permissions.model import (
    Permission,
    PermissionGrid,
    PermissionLike,
    parse_permissions,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """
    An authenticated user with their tenant and role context.

    Attributes:
        user_id: Acting user
        restaurant_id: Tenant the user belongs to
        grid: Role permission grid, None when the role has none
        role_id: Role the grid was loaded from
    """
    user_id: int
    restaurant_id: int
    grid: Optional[PermissionGrid] = None
    role_id: Optional[int] = None


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class AuthorizationDecision:
    decision: Decision
    required: tuple[Permission, ...] = ()
    missing: tuple[Permission, ...] = ()
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW

    def __bool__(self) -> bool:
        return self.allowed


class AuthorizationEvaluator:
    """
    Evaluates ``resource.action`` requirements against a principal's grid.

    Example:
        >>> evaluator = AuthorizationEvaluator()
        >>> evaluator.authorize(principal, ["orders.read", "orders.update"]).allowed
        True
    """

    def authorize(
        self,
        principal: Optional[Principal],
        required: Iterable[PermissionLike],
    ) -> AuthorizationDecision:
        """
        Allow iff every required permission is granted.

        Raises:
            InvalidPermissionSpec: a requirement names an unknown resource or action
        """
        permissions = parse_permissions(required)

        if principal is None:
            return AuthorizationDecision(Decision.DENY, permissions, permissions, "no principal")
        if principal.grid is None:
            return AuthorizationDecision(Decision.DENY, permissions, permissions, "no permission grid")

        missing = tuple(p for p in permissions if not principal.grid.allows(p))
        if missing:
            return AuthorizationDecision(Decision.DENY, permissions, missing, "missing permissions")
        return AuthorizationDecision(Decision.ALLOW, permissions)

    def require(
        self,
        principal: Optional[Principal],
        required: Iterable[PermissionLike],
    ) -> AuthorizationDecision:
        """Like authorize(), but raise PermissionDenied on a deny."""
        decision = self.authorize(principal, required)
        if not decision.allowed:
            user_id = principal.user_id if principal else None
            missing = [str(p) for p in decision.missing]
            logger.warning(
                f"Authorization denied: user={user_id} reason={decision.reason} missing={missing}"
            )
            raise PermissionDenied(
                "Role does not grant the required permissions",
                user_id=user_id,
                missing=missing,
            )
        return decision
