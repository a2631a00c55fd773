"""
Order State Machine

    PENDING -> PREPARING -> READY -> SERVED -> PAID
       |           |
       +-----------+--> CANCELLED

SERVED -> PAID is internal: it happens when a recorded payment settles
the order and can never be requested directly. PAID and CANCELLED have
no outgoing edges.
"""

from dataclasses import dataclass
from typing import Optional

from restaurant_ops.core.exceptions import InvalidTransition, OrderLocked
from restaurant_ops.models import Order, OrderStatus, utcnow
from restaurant_ops.permissions.model import Permission


@dataclass(frozen=True)
class Transition:
    source: OrderStatus
    target: OrderStatus
    permission: Permission
    internal: bool = False


TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], Transition] = {
    (t.source, t.target): t
    for t in (
        Transition(OrderStatus.PENDING, OrderStatus.PREPARING, Permission.parse("orders.update")),
        Transition(OrderStatus.PENDING, OrderStatus.CANCELLED, Permission.parse("orders.delete")),
        Transition(OrderStatus.PREPARING, OrderStatus.READY, Permission.parse("orders.update")),
        Transition(OrderStatus.PREPARING, OrderStatus.CANCELLED, Permission.parse("orders.delete")),
        Transition(OrderStatus.READY, OrderStatus.SERVED, Permission.parse("orders.update")),
        Transition(
            OrderStatus.SERVED, OrderStatus.PAID, Permission.parse("payments.create"), internal=True
        ),
    )
}

EDITABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PREPARING})
TERMINAL_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.CANCELLED})
OPEN_STATUSES = frozenset(OrderStatus) - TERMINAL_STATUSES


class OrderStateMachine:
    """Validates and applies order status changes."""

    def __init__(self, transitions: Optional[dict[tuple[OrderStatus, OrderStatus], Transition]] = None):
        self._transitions = transitions or TRANSITIONS

    def allowed_targets(self, current: OrderStatus) -> list[OrderStatus]:
        """Statuses a client may request from ``current``."""
        return [
            t.target for (source, _), t in self._transitions.items()
            if source == current and not t.internal
        ]

    def transition_for(
        self,
        current: OrderStatus,
        target: OrderStatus,
        internal: bool = False,
    ) -> Transition:
        """
        Look up the edge ``current -> target``.

        Args:
            internal: Allow side-effect driven edges (settlement)

        Raises:
            InvalidTransition: same status, unknown edge, or an internal
                edge requested by a client
        """
        if current == target:
            raise InvalidTransition(
                f"Order is already {current.value}",
                current_status=current.value,
                requested_status=target.value,
            )

        transition = self._transitions.get((current, target))
        if transition is None or (transition.internal and not internal):
            raise InvalidTransition(
                f"Cannot move order from {current.value} to {target.value}",
                current_status=current.value,
                requested_status=target.value,
                allowed=[s.value for s in self.allowed_targets(current)],
            )
        return transition

    def apply(self, order: Order, transition: Transition) -> OrderStatus:
        """Write the new status onto ``order``. Returns the previous status."""
        previous = order.status
        if previous != transition.source:
            raise InvalidTransition(
                f"Order is {previous.value}, expected {transition.source.value}",
                current_status=previous.value,
                requested_status=transition.target.value,
            )

        now = utcnow()
        order.status = transition.target
        order.status_changed_at = now
        order.updated_at = now
        if transition.target in TERMINAL_STATUSES:
            order.closed_at = now
        return previous

    def ensure_items_editable(self, order: Order) -> None:
        if order.status not in EDITABLE_STATUSES:
            raise OrderLocked(
                f"Items of an order in {order.status.value} can no longer change",
                current_status=order.status.value,
            )
