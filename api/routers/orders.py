from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_dispatcher, get_order_cache, get_order_repository
from api.schemas.responses import (
    OrderListResponse,
    OrderResponse,
    OrderSubmissionResponse,
)
from core.logging import get_api_logger_safe
from core.schemas.orders import OrderRequest, OrderStatus
from core.utils.exceptions import OrderExecutionError, error_message_for
from services.dispatcher import JobDispatcher
from services.order_processor import OrderCache, OrderRepository

router = APIRouter(prefix="/api/orders", tags=["Orders"])
logger = get_api_logger_safe("api.routers.orders")


@router.post("/execute", status_code=status.HTTP_202_ACCEPTED, response_model=OrderSubmissionResponse)
async def execute_order(
    request: OrderRequest,
    repository: OrderRepository = Depends(get_order_repository),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """Create a pending order and hand it to the dispatcher without waiting for execution"""
    order = await repository.create_order(request)

    try:
        job_id = await dispatcher.enqueue(order)
    except Exception as e:
        # Order was never admitted; don't leave it pending forever
        try:
            await repository.update_order_status(
                order.id, OrderStatus.FAILED,
                error_reason=error_message_for(e),
                completed_at=datetime.now(timezone.utc),
            )
        except Exception as update_error:
            logger.error("Failed to mark unadmitted order failed",
                         order_id=order.id,
                         enqueue_error=error_message_for(e),
                         error=str(update_error))
        raise

    logger.info("Order submitted", order_id=order.id, user_id=order.user_id, job_id=job_id)
    return OrderSubmissionResponse(
        order_id=order.id,
        ws_url=f"/ws/{order.id}",
        status=OrderStatus.PENDING,
        created_at=order.created_at,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    cache: OrderCache = Depends(get_order_cache),
    repository: OrderRepository = Depends(get_order_repository),
):
    """Get order by id, cache first"""
    order = None
    try:
        order = await cache.get_order(order_id)
    except Exception as e:
        logger.warning("Order cache read failed", order_id=order_id, error=str(e))

    if order is None:
        order = await repository.get_order(order_id)
    if order is None:
        raise OrderExecutionError.order_not_found(order_id)

    return OrderResponse.from_order(order)


@router.get("", response_model=OrderListResponse)
async def list_orders(
    user_id: Optional[str] = Query(None, alias="userId"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    repository: OrderRepository = Depends(get_order_repository),
):
    """Paginated order history for one user, newest first"""
    if not user_id:
        raise OrderExecutionError.validation("userId query parameter is required")

    orders = await repository.get_orders_by_user(user_id, limit=limit, offset=offset)
    total = await repository.count_orders_by_user(user_id)

    logger.info("User orders retrieved", user_id=user_id, count=len(orders))
    return OrderListResponse(
        orders=[OrderResponse.from_order(order) for order in orders],
        limit=limit,
        offset=offset,
        total=total,
    )
