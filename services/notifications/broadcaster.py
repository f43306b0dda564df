import asyncio
import uuid
from typing import Any, Dict, List, Optional, Set

from starlette.websockets import WebSocket, WebSocketState

from core.logging import get_api_logger_safe
from core.monitoring import OrderMetricsCollector
from core.schemas.orders import StatusUpdate

logger = get_api_logger_safe("notification_broadcaster")


class ConnectionSession:
    """
    One subscriber connection attached to one order.

    `close()` is the only teardown path: disconnects, receive errors and send
    failures all end here, and it unsubscribes exactly once.
    """

    def __init__(self, order_id: str, websocket: WebSocket, broadcaster: "NotificationBroadcaster"):
        self.id = str(uuid.uuid4())
        self.order_id = order_id
        self.websocket = websocket
        self._broadcaster = broadcaster
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, data: Dict[str, Any]) -> None:
        await self.websocket.send_json(data)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._broadcaster.unsubscribe(self.order_id, self.id)


class NotificationBroadcaster:
    """Per-order fan-out of status updates to live websocket subscribers"""

    def __init__(self, metrics: Optional[OrderMetricsCollector] = None):
        self.metrics = metrics
        self._clients: Dict[str, ConnectionSession] = {}
        self._order_subscribers: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, order_id: str, websocket: WebSocket) -> ConnectionSession:
        """Register an accepted websocket; the caller must close() the returned session."""
        session = ConnectionSession(order_id, websocket, self)
        async with self._lock:
            self._clients[session.id] = session
            self._order_subscribers.setdefault(order_id, set()).add(session.id)
            total = len(self._clients)

        self._update_gauge(total)
        logger.info("Client subscribed to order",
                    order_id=order_id,
                    connection_id=session.id,
                    total_connections=total)
        return session

    async def unsubscribe(self, order_id: str, connection_id: str) -> None:
        async with self._lock:
            self._clients.pop(connection_id, None)
            subscribers = self._order_subscribers.get(order_id)
            if subscribers is not None:
                subscribers.discard(connection_id)
                if not subscribers:
                    del self._order_subscribers[order_id]
            total = len(self._clients)

        self._update_gauge(total)
        logger.info("Client unsubscribed from order",
                    order_id=order_id,
                    connection_id=connection_id,
                    total_connections=total)

    async def broadcast(self, update: StatusUpdate) -> int:
        """Send to every open subscriber of the order; returns the number of sends."""
        async with self._lock:
            connection_ids = self._order_subscribers.get(update.order_id)
            if not connection_ids:
                logger.debug("No subscribers for order", order_id=update.order_id)
                return 0
            sessions: List[ConnectionSession] = [
                self._clients[cid] for cid in connection_ids if cid in self._clients
            ]

        message = update.to_message()
        sent = 0
        for session in sessions:
            if not session.is_open:
                continue
            try:
                await session.send_json(message)
                sent += 1
            except Exception as e:
                logger.error("Failed to send status update",
                             order_id=update.order_id,
                             connection_id=session.id,
                             error=str(e))
                await session.close()

        if self.metrics and sent:
            self.metrics.record_ws_message(message["event"], sent)
        logger.debug("Status update broadcast",
                     order_id=update.order_id,
                     status=update.status.value,
                     recipients=sent)
        return sent

    def get_subscriber_count(self, order_id: str) -> int:
        return len(self._order_subscribers.get(order_id, ()))

    def has_order(self, order_id: str) -> bool:
        return order_id in self._order_subscribers

    def get_stats(self) -> Dict[str, Any]:
        return {
            "totalConnections": len(self._clients),
            "totalOrders": len(self._order_subscribers),
            "orderStats": {
                order_id: len(subscribers)
                for order_id, subscribers in self._order_subscribers.items()
            },
        }

    def _update_gauge(self, total: int) -> None:
        if self.metrics:
            self.metrics.set_ws_connections(total)
