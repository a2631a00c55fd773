"""
Notification Service Factory

Returns the WebSocket publisher or the log-only mock depending on
``REALTIME_NOTIFICATIONS``.
"""

import logging

from restaurant_ops.core.config import Settings
from restaurant_ops.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    OrderEvent,
)
from restaurant_ops.services.notifications.mock import MockNotificationService
from restaurant_ops.services.notifications.websocket import WebSocketNotificationService

logger = logging.getLogger(__name__)


def build_notification_service(settings: Settings) -> BaseNotificationService:
    """Create the configured notification service."""
    if settings.realtime_notifications:
        logger.info("Notification Service: Using WebSocketNotificationService")
        return WebSocketNotificationService()

    logger.info("Notification Service: Using MockNotificationService (realtime disabled)")
    return MockNotificationService()


__all__ = [
    "build_notification_service",
    "BaseNotificationService",
    "NotificationResult",
    "OrderEvent",
    "MockNotificationService",
    "WebSocketNotificationService",
]
