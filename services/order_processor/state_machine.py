import asyncio
from datetime import datetime, timezone
from typing import Optional, Tuple

from core.config.settings import Settings
from core.logging import get_trading_logger_safe, get_error_logger_safe
from core.monitoring import OrderMetricsCollector, MetricsTimer
from core.schemas.orders import (
    Order,
    OrderStatus,
    Quote,
    RoutingDecision,
    StatusData,
    StatusUpdate,
    format_amount,
)
from core.utils.exceptions import (
    ErrorKind,
    OrderExecutionError,
    error_code_for,
    error_message_for,
)
from services.execution import ExecutionSimulator
from services.notifications import NotificationBroadcaster
from services.routing import VenueRouter
from .cache import OrderCache
from .repository import OrderRepository


class OrderStateMachine:
    """
    Drives one order through pending -> routing -> building -> submitted ->
    confirmed, or to failed from any non-terminal stage.

    Each transition persists the new state before broadcasting it, so a
    subscriber that reads the order after an event never sees an older
    status than the event announced.
    """

    def __init__(
        self,
        settings: Settings,
        router: VenueRouter,
        simulator: ExecutionSimulator,
        repository: OrderRepository,
        broadcaster: NotificationBroadcaster,
        cache: Optional[OrderCache] = None,
        metrics: Optional[OrderMetricsCollector] = None,
    ):
        self.settings = settings
        self.router = router
        self.simulator = simulator
        self.repository = repository
        self.broadcaster = broadcaster
        self.cache = cache
        self.metrics = metrics
        self.logger = get_trading_logger_safe("order_processor")
        self.error_logger = get_error_logger_safe("order_processor")

    async def process(self, order: Order, attempt: int = 1) -> Order:
        """Run the full lifecycle; failures are recorded, broadcast, then re-raised."""
        timer = MetricsTimer()
        try:
            with timer:
                order = await self.announce_pending(order)
                order, decision = await self.start_routing(order)
                order, quote = await self.build_transaction(order, decision)
                order = await self.submit(order, quote)
                order = await self.confirm(order, quote)
        except Exception as exc:
            await self.fail(order, exc, attempt)
            if self.metrics:
                self.metrics.record_order_processed(OrderStatus.FAILED.value, order.dex_selected, timer.duration)
            raise

        if self.metrics:
            self.metrics.record_order_processed(order.status.value, order.dex_selected, timer.duration)
        return order

    # Transitions, one per edge

    async def announce_pending(self, order: Order) -> Order:
        """(Re)enter pending; clears stage and failure fields left by a previous attempt."""
        order = await self._persist(
            order, OrderStatus.PENDING,
            dex_selected=None, tx_hash=None, executed_price=None,
            error_reason=None, completed_at=None,
        )
        await self._emit(order, StatusData())
        return order

    async def start_routing(self, order: Order) -> Tuple[Order, RoutingDecision]:
        order = await self._persist(order, OrderStatus.ROUTING)
        await self._emit(order, StatusData())

        decision = await self.router.route(order.token_in, order.token_out, order.amount_in)
        self.logger.info("Order routed",
                         order_id=order.id,
                         selected_venue=decision.selected_venue,
                         reason=decision.reason)

        order = await self._persist(order, OrderStatus.ROUTING, dex_selected=decision.selected_venue)
        return order, decision

    async def build_transaction(self, order: Order, decision: RoutingDecision) -> Tuple[Order, Quote]:
        quote = decision.selected_quote
        order = await self._persist(order, OrderStatus.BUILDING)
        await self._emit(order, StatusData(dex=quote.venue))

        await asyncio.sleep(self.settings.mock.build_delay_ms / 1000)
        return order, quote

    async def submit(self, order: Order, quote: Quote) -> Order:
        """Announces the quoted price; says nothing about settlement yet."""
        order = await self._persist(order, OrderStatus.SUBMITTED)
        await self._emit(order, StatusData(dex=quote.venue, price=format_amount(quote.output_amount)))
        return order

    async def confirm(self, order: Order, quote: Quote) -> Order:
        try:
            result = await self.simulator.execute(order, quote)
        except OrderExecutionError as exc:
            if exc.kind is ErrorKind.EXECUTION_ERROR:
                await self.repository.record_execution(
                    order.id, quote.venue, order.amount_in, None, None, "failed", exc.message
                )
            raise

        await self.repository.record_execution(
            order.id, quote.venue, order.amount_in, result.executed_amount, result.receipt_id, "completed"
        )
        order = await self._persist(
            order,
            OrderStatus.CONFIRMED,
            tx_hash=result.receipt_id,
            executed_price=result.executed_amount,
            completed_at=datetime.now(timezone.utc),
        )

        if self.cache:
            try:
                await self.cache.cache_order(order)
            except Exception as e:
                self.error_logger.warning("Failed to cache confirmed order", order_id=order.id, error=str(e))

        await self._emit(order, StatusData(
            dex=quote.venue,
            price=format_amount(result.executed_amount),
            tx_hash=result.receipt_id,
        ))
        self.logger.info("Order execution completed",
                         order_id=order.id,
                         tx_hash=result.receipt_id,
                         executed_price=format_amount(result.executed_amount))
        return order

    async def fail(self, order: Order, error: BaseException, attempt: int = 1) -> None:
        """Record, persist and broadcast a failure. Bookkeeping errors are logged, not raised."""
        reason = error_message_for(error)
        code = error_code_for(error)
        self.error_logger.error("Order execution failed",
                                order_id=order.id,
                                attempt=attempt,
                                error=reason,
                                error_code=code)
        if self.metrics:
            self.metrics.record_error("order_processor", code)

        try:
            await self.repository.record_failure(order.id, attempt, reason, code, {
                "tokenIn": order.token_in,
                "tokenOut": order.token_out,
                "amountIn": format_amount(order.amount_in),
            })
        except Exception as e:
            self.error_logger.error("Failed to record order failure", order_id=order.id, error=str(e))

        try:
            order = await self.repository.update_order_status(
                order.id, OrderStatus.FAILED,
                error_reason=reason,
                completed_at=datetime.now(timezone.utc),
            )
        except Exception as e:
            self.error_logger.error("Failed to persist failed status", order_id=order.id, error=str(e))

        try:
            await self.broadcaster.broadcast(
                StatusUpdate(order_id=order.id, status=OrderStatus.FAILED, data=StatusData(error=reason))
            )
        except Exception as e:
            self.error_logger.error("Failed to broadcast failure", order_id=order.id, error=str(e))

    async def _persist(self, order: Order, status: OrderStatus, **fields) -> Order:
        if status is not OrderStatus.PENDING and status != order.status \
                and not order.status.can_transition_to(status):
            raise OrderExecutionError(
                ErrorKind.UNKNOWN_ERROR,
                f"Illegal transition {order.status.value} -> {status.value}",
                {"order_id": order.id},
            )
        return await self.repository.update_order_status(order.id, status, **fields)

    async def _emit(self, order: Order, data: StatusData) -> None:
        await self.broadcaster.broadcast(StatusUpdate(order_id=order.id, status=order.status, data=data))
        self.logger.debug("Status update emitted", order_id=order.id, status=order.status.value)
