from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict
from datetime import datetime, timezone

from core.schemas.orders import Amount, Order, OrderStatus, Percentage


class CamelModel(BaseModel):
    """Response model rendered with camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    """Error response model"""
    error: str
    code: str


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# Order Responses
class OrderResponse(CamelModel):
    id: str
    user_id: str
    token_in: str
    token_out: str
    amount_in: Amount
    min_amount_out: Amount
    slippage_tolerance: Percentage
    status: OrderStatus
    dex_selected: Optional[str] = None
    tx_hash: Optional[str] = None
    executed_price: Optional[Amount] = None
    error_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls.model_validate(order.model_dump())


class OrderSubmissionResponse(CamelModel):
    order_id: str
    ws_url: str
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    limit: int
    offset: int
    total: int


# Stats Responses
class QueueStatsResponse(CamelModel):
    waiting_count: int
    active_count: int
    completed_count: int
    failed_count: int
    delayed_count: int
    concurrency: int


class BroadcasterStatsResponse(CamelModel):
    total_connections: int
    total_orders: int
    order_stats: Dict[str, int]
