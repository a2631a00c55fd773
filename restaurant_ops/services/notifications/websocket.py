"""
WebSocket Notification Service

Pushes order events to dashboards connected on ``/ws/orders``. Clients are
grouped by restaurant, so an event is only ever sent to sockets opened by
users of the order's own restaurant.
"""

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

from restaurant_ops.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    OrderEvent,
)

logger = logging.getLogger(__name__)


class WebSocketNotificationService(BaseNotificationService):
    """Realtime publisher backed by FastAPI WebSockets."""

    def __init__(self):
        self._connections: dict[int, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()
        logger.info("WebSocketNotificationService initialized")

    @property
    def provider_name(self) -> str:
        return "websocket"

    async def connect(self, restaurant_id: int, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections[restaurant_id].add(websocket)
        logger.info(f"WebSocket connected for restaurant #{restaurant_id}")

    async def disconnect(self, restaurant_id: int, websocket: WebSocket) -> None:
        async with self._lock:
            sockets = self._connections.get(restaurant_id)
            if sockets is not None:
                sockets.discard(websocket)
                if not sockets:
                    del self._connections[restaurant_id]
        logger.info(f"WebSocket disconnected for restaurant #{restaurant_id}")

    def connection_count(self, restaurant_id: int) -> int:
        return len(self._connections.get(restaurant_id, ()))

    async def publish_order_event(self, event: OrderEvent) -> NotificationResult:
        async with self._lock:
            sockets = list(self._connections.get(event.restaurant_id, ()))

        payload = event.to_dict()
        delivered = 0
        stale = []
        for websocket in sockets:
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping WebSocket after send failure: {e}")
                stale.append(websocket)

        for websocket in stale:
            await self.disconnect(event.restaurant_id, websocket)

        logger.debug(
            f"Event {event.event_type} for order #{event.order_id} "
            f"delivered to {delivered}/{len(sockets)} clients"
        )
        return NotificationResult(
            success=not stale,
            delivered=delivered,
            error_message=f"{len(stale)} client(s) unreachable" if stale else None,
            provider="websocket",
        )

    async def health_check(self) -> bool:
        return True
