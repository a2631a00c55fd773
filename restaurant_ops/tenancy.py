"""
Tenant Isolation Guard

Every tenant-scoped entity belongs to exactly one Restaurant, either
directly (``restaurant_id`` column) or through its parents:

    OrderItem -> Order -> Table -> Restaurant
    Payment   -> Order -> Table -> Restaurant
    Dish      -> Menu  -> Restaurant

The guard resolves that owner and compares it with the principal's
restaurant. It is stateless and safe to share between requests.
"""

import logging
from typing import Any, Optional, Union

from sqlalchemy import Select

from restaurant_ops.core.exceptions import CrossTenantAccess, UnknownTarget
from restaurant_ops.models import Dish, Order, OrderItem, Payment, Restaurant, Table
from restaurant_ops.permissions.evaluator import Principal

logger = logging.getLogger(__name__)

# Entity type -> attribute holding its parent in the ownership chain
OWNERSHIP_CHAIN: dict[type, str] = {
    OrderItem: "order",
    Payment: "order",
    Order: "table",
    Dish: "menu",
}

MAX_CHAIN_DEPTH = 8


class TenantIsolationGuard:
    """Allows access only within the principal's own restaurant."""

    def resolve_restaurant_id(self, entity: Any) -> int:
        """
        Walk the ownership chain of ``entity`` up to its restaurant id.

        Raises:
            ValueError: the entity is not tenant-scoped or its chain is broken
        """
        current = entity
        for _ in range(MAX_CHAIN_DEPTH):
            if current is None:
                break
            if isinstance(current, Restaurant):
                return current.id

            parent_attr = OWNERSHIP_CHAIN.get(type(current))
            if parent_attr is None:
                restaurant_id = getattr(current, "restaurant_id", None)
                if restaurant_id is None:
                    break
                return restaurant_id
            current = getattr(current, parent_attr)

        raise ValueError(f"Cannot resolve the owning restaurant of {_describe(entity)}")

    def check(self, principal: Optional[Principal], target_restaurant_id: Optional[int]) -> bool:
        if principal is None or target_restaurant_id is None:
            return False
        return principal.restaurant_id == target_restaurant_id

    def ensure(self, principal: Optional[Principal], target: Union[int, Any]) -> int:
        """
        Raise CrossTenantAccess unless ``target`` belongs to the principal's restaurant.

        Args:
            principal: Acting principal
            target: A tenant-scoped entity or an already resolved restaurant id

        Returns:
            The resolved restaurant id
        """
        restaurant_id = target if isinstance(target, int) else self.resolve_restaurant_id(target)

        if not self.check(principal, restaurant_id):
            user_id = principal.user_id if principal else None
            caller_restaurant = principal.restaurant_id if principal else None
            logger.warning(
                f"Cross-tenant access blocked: user={user_id} "
                f"restaurant={caller_restaurant} target={_describe(target)} "
                f"target_restaurant={restaurant_id}"
            )
            raise CrossTenantAccess(
                "Target belongs to another restaurant",
                user_id=user_id,
                restaurant_id=caller_restaurant,
                target_restaurant_id=restaurant_id,
            )
        return restaurant_id

    def ensure_found(
        self,
        principal: Optional[Principal],
        entity: Optional[Any],
        label: str,
        entity_id: Any,
    ) -> int:
        """
        Like ensure, for an entity looked up by id on behalf of ``principal``.

        A missing entity raises UnknownTarget, which renders exactly like a
        cross-tenant hit so ids of other restaurants cannot be probed.
        """
        if entity is None:
            user_id = principal.user_id if principal else None
            logger.warning(f"Lookup of unknown {label} #{entity_id} by user={user_id}")
            raise UnknownTarget(f"{label} #{entity_id} not found", user_id=user_id, target_id=entity_id)
        return self.ensure(principal, entity)

    def scope_orders(self, statement: Select, principal: Principal) -> Select:
        """Restrict an Order query to the principal's restaurant."""
        return statement.join(Table, Order.table_id == Table.id).where(
            Table.restaurant_id == principal.restaurant_id
        )

    def scope(self, statement: Select, model: type, principal: Principal) -> Select:
        """Restrict a query on a model that carries ``restaurant_id`` directly."""
        return statement.where(model.restaurant_id == principal.restaurant_id)


def _describe(target: Any) -> str:
    if isinstance(target, int):
        return f"restaurant #{target}"
    return f"{type(target).__name__} #{getattr(target, 'id', None)}"
