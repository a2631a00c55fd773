"""
Notification Service Abstract Base Class

Defines the interface for publishing order lifecycle events to the
outside world (connected dashboards, kitchen screens).

Publishing happens after the order change has committed. Implementations
may fail; callers log the failure and carry on.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from restaurant_ops.models import Order, OrderStatus, utcnow


@dataclass
class OrderEvent:
    """A committed order status change."""
    order_id: int
    restaurant_id: int
    status: OrderStatus
    previous_status: Optional[OrderStatus] = None
    triggered_by: Optional[int] = None
    total: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def event_type(self) -> str:
        if self.previous_status is None:
            return "order.created"
        return "order.status_changed"

    @classmethod
    def from_order(
        cls,
        order: Order,
        restaurant_id: int,
        previous_status: Optional[OrderStatus],
        triggered_by: Optional[int],
    ) -> "OrderEvent":
        return cls(
            order_id=order.id,
            restaurant_id=restaurant_id,
            status=order.status,
            previous_status=previous_status,
            triggered_by=triggered_by,
            total=str(order.total),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.event_type,
            "order_id": self.order_id,
            "restaurant_id": self.restaurant_id,
            "status": self.status.value,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "triggered_by": self.triggered_by,
            "total": self.total,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass
class NotificationResult:
    """Result from publishing an event."""
    success: bool
    delivered: int = 0
    error_message: Optional[str] = None
    provider: str = "unknown"


class BaseNotificationService(ABC):
    """Abstract base class for order event publishers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def publish_order_event(self, event: OrderEvent) -> NotificationResult:
        """Deliver an order event to interested listeners."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service availability."""
        pass
