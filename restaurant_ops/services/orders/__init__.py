"""
Order lifecycle: placement, item edits and status transitions.

Usage:
    from restaurant_ops.services.orders import OrderService

    service = OrderService(session_factory, evaluator, guard, notifier)
    result = await service.transition_order(principal, order_id, OrderStatus.PREPARING)
"""

from restaurant_ops.services.orders.locks import OrderLockRegistry
from restaurant_ops.services.orders.service import OrderService, UnitOutcome
from restaurant_ops.services.orders.state_machine import (
    EDITABLE_STATUSES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    OrderStateMachine,
    Transition,
)

__all__ = [
    "OrderLockRegistry",
    "OrderService",
    "UnitOutcome",
    "EDITABLE_STATUSES",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "OrderStateMachine",
    "Transition",
]
