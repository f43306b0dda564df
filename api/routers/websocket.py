import json
import time

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from api.dependencies import get_broadcaster
from core.logging import get_api_logger_safe
from services.notifications import NotificationBroadcaster

router = APIRouter(tags=["Real-time"])
logger = get_api_logger_safe("api.routers.websocket")


def _now_ms() -> int:
    return int(time.time() * 1000)


@router.websocket("/ws/{order_id}")
async def order_status_stream(
    websocket: WebSocket,
    order_id: str,
    broadcaster: NotificationBroadcaster = Depends(get_broadcaster),
):
    """Status updates for one order; answers {"type": "ping"} with a pong"""
    await websocket.accept()
    session = await broadcaster.subscribe(order_id, websocket)
    logger.info("WebSocket connection established", order_id=order_id, connection_id=session.id)

    try:
        await session.send_json({"event": "connected", "orderId": order_id, "timestamp": _now_ms()})

        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning("WebSocket message parsing error", order_id=order_id, error=str(e))
                continue

            logger.debug("WebSocket message received", order_id=order_id, message=message)
            if isinstance(message, dict) and message.get("type") == "ping":
                await session.send_json({"type": "pong", "timestamp": _now_ms()})

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected", order_id=order_id, connection_id=session.id)
    except Exception as e:
        logger.error("WebSocket connection error", order_id=order_id, error=str(e))
    finally:
        await session.close()
