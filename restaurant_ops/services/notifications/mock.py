"""
Mock Notification Service

Log-only publisher for development and tests. Events are kept in memory
so tests can assert on what would have been pushed.
"""

import logging
import random

from restaurant_ops.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    OrderEvent,
)

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):
    """In-memory publisher used when realtime push is switched off."""

    def __init__(self, failure_rate: float = 0.0):
        self.failure_rate = failure_rate
        self.published: list[OrderEvent] = []
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def publish_order_event(self, event: OrderEvent) -> NotificationResult:
        """Record the event instead of pushing it anywhere."""
        if self._should_fail():
            logger.warning(f"Mock publish failed (simulated) for order #{event.order_id}")
            return NotificationResult(
                success=False,
                error_message="Simulated publish failure",
                provider="mock",
            )

        self.published.append(event)
        logger.info(
            f"Mock event {event.event_type}: order #{event.order_id} "
            f"{event.previous_status.value if event.previous_status else '-'} -> {event.status.value}"
        )
        return NotificationResult(success=True, delivered=1, provider="mock")

    async def health_check(self) -> bool:
        """Nothing external to reach."""
        return True
