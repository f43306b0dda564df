from decimal import Decimal

import pytest

from core.config.settings import Settings, MockSettings
from core.monitoring import get_metrics_for_testing
from core.schemas.orders import (
    ExecutionResult,
    OrderStatus,
    Quote,
    RoutingDecision,
)
from core.utils.exceptions import ErrorKind, OrderExecutionError
from services.order_processor import OrderStateMachine


class FakeRepository:
    def __init__(self, order, log):
        self.orders = {order.id: order}
        self.log = log
        self.executions = []
        self.failures = []
        self.fail_on_record_failure = False

    async def update_order_status(self, order_id, status, **fields):
        order = self.orders[order_id].model_copy(update={"status": OrderStatus(status), **fields})
        self.orders[order_id] = order
        self.log.append(("persist", order.status.value))
        return order

    async def record_execution(self, order_id, dex, input_amount, output_amount, tx_hash, status,
                               error_reason=None):
        self.executions.append({
            "order_id": order_id,
            "dex": dex,
            "output_amount": output_amount,
            "tx_hash": tx_hash,
            "status": status,
            "error_reason": error_reason,
        })

    async def record_failure(self, order_id, attempt_number, reason, error_code, metadata=None):
        if self.fail_on_record_failure:
            raise RuntimeError("database unavailable")
        self.failures.append({
            "order_id": order_id,
            "attempt_number": attempt_number,
            "reason": reason,
            "error_code": error_code,
            "metadata": metadata,
        })


class FakeBroadcaster:
    def __init__(self, log):
        self.log = log
        self.updates = []

    async def broadcast(self, update):
        self.log.append(("broadcast", update.status.value))
        self.updates.append(update)
        return 0


class FakeRouter:
    def __init__(self, error=None):
        self.error = error

    async def route(self, token_in, token_out, amount_in):
        if self.error:
            raise self.error
        quotes = {
            venue: Quote(
                venue=venue,
                input_amount=amount_in,
                output_amount=Decimal(output),
                price_impact=0.3,
                min_received=Decimal(output),
                execution_time_ms=0,
            )
            for venue, output in (("raydium", "100"), ("meteora", "98"))
        }
        return RoutingDecision(selected_venue="raydium", quotes=quotes, reason="Raydium offers 2.04% better rate")


class FakeSimulator:
    def __init__(self, error=None):
        self.error = error

    async def execute(self, order, quote):
        if self.error:
            raise self.error
        return ExecutionResult(receipt_id="ab" * 32, executed_amount=Decimal("99.5"))


class FakeCache:
    def __init__(self):
        self.cached = []

    async def cache_order(self, order):
        self.cached.append(order)


def _machine(order, router=None, simulator=None, metrics=None):
    log = []
    repository = FakeRepository(order, log)
    broadcaster = FakeBroadcaster(log)
    cache = FakeCache()
    machine = OrderStateMachine(
        settings=Settings(mock=MockSettings(delay_ms=0, build_delay_ms=0)),
        router=router or FakeRouter(),
        simulator=simulator or FakeSimulator(),
        repository=repository,
        broadcaster=broadcaster,
        cache=cache,
        metrics=metrics,
    )
    return machine, repository, broadcaster, cache, log


@pytest.mark.asyncio
async def test_successful_order_walks_every_stage_in_order(order_factory):
    order = order_factory()
    machine, repository, broadcaster, cache, log = _machine(order)

    result = await machine.process(order)

    assert [u.status.value for u in broadcaster.updates] == [
        "pending", "routing", "building", "submitted", "confirmed",
    ]
    assert result.status is OrderStatus.CONFIRMED
    assert result.tx_hash == "ab" * 32
    assert result.executed_price == Decimal("99.5")
    assert result.dex_selected == "raydium"
    assert result.completed_at is not None
    assert repository.executions == [{
        "order_id": order.id,
        "dex": "raydium",
        "output_amount": Decimal("99.5"),
        "tx_hash": "ab" * 32,
        "status": "completed",
        "error_reason": None,
    }]
    assert cache.cached == [result]


@pytest.mark.asyncio
async def test_each_broadcast_follows_its_persisted_state(order_factory):
    order = order_factory()
    machine, _, _, _, log = _machine(order)

    await machine.process(order)

    assert log == [
        ("persist", "pending"), ("broadcast", "pending"),
        ("persist", "routing"), ("broadcast", "routing"),
        ("persist", "routing"),
        ("persist", "building"), ("broadcast", "building"),
        ("persist", "submitted"), ("broadcast", "submitted"),
        ("persist", "confirmed"), ("broadcast", "confirmed"),
    ]


@pytest.mark.asyncio
async def test_event_payloads_carry_venue_price_and_receipt(order_factory):
    order = order_factory()
    machine, _, broadcaster, _, _ = _machine(order)

    await machine.process(order)

    messages = {u.status.value: u.to_message()["data"] for u in broadcaster.updates}
    assert messages["pending"] == {}
    assert messages["building"] == {"dex": "raydium"}
    assert messages["submitted"] == {"dex": "raydium", "price": "100"}
    assert messages["confirmed"] == {"dex": "raydium", "price": "99.5", "txHash": "ab" * 32}


@pytest.mark.asyncio
async def test_routing_failure_is_recorded_persisted_broadcast_and_raised(order_factory):
    order = order_factory()
    router = FakeRouter(error=OrderExecutionError.routing("Routing failed: meteora quote unavailable"))
    machine, repository, broadcaster, cache, log = _machine(order, router=router)

    with pytest.raises(OrderExecutionError) as exc_info:
        await machine.process(order)

    assert exc_info.value.kind is ErrorKind.ROUTING_ERROR
    assert repository.failures == [{
        "order_id": order.id,
        "attempt_number": 1,
        "reason": "Routing failed: meteora quote unavailable",
        "error_code": "ROUTING_ERROR",
        "metadata": {"tokenIn": order.token_in, "tokenOut": order.token_out, "amountIn": "1"},
    }]
    stored = repository.orders[order.id]
    assert stored.status is OrderStatus.FAILED
    assert stored.error_reason == "Routing failed: meteora quote unavailable"
    assert stored.completed_at is not None
    assert log[-2:] == [("persist", "failed"), ("broadcast", "failed")]
    assert broadcaster.updates[-1].to_message()["data"] == {"error": "Routing failed: meteora quote unavailable"}
    assert repository.executions == []
    assert cache.cached == []


@pytest.mark.asyncio
async def test_execution_failure_writes_failed_execution_row(order_factory):
    order = order_factory()
    simulator = FakeSimulator(error=OrderExecutionError.execution("Live execution is not available"))
    machine, repository, broadcaster, _, _ = _machine(order, simulator=simulator)

    with pytest.raises(OrderExecutionError):
        await machine.process(order, attempt=2)

    assert repository.executions[0]["status"] == "failed"
    assert repository.executions[0]["error_reason"] == "Live execution is not available"
    assert repository.executions[0]["tx_hash"] is None
    assert repository.failures[0]["attempt_number"] == 2
    assert repository.failures[0]["error_code"] == "EXECUTION_ERROR"
    # submitted was announced before execution was attempted
    assert [u.status.value for u in broadcaster.updates][-2:] == ["submitted", "failed"]


@pytest.mark.asyncio
async def test_unexpected_errors_are_tagged_unknown_and_reraised(order_factory):
    order = order_factory()
    machine, repository, _, _, _ = _machine(order, simulator=FakeSimulator(error=RuntimeError("boom")))

    with pytest.raises(RuntimeError):
        await machine.process(order)

    assert repository.failures[0]["error_code"] == "UNKNOWN_ERROR"
    assert repository.failures[0]["reason"] == "boom"


@pytest.mark.asyncio
async def test_bookkeeping_errors_do_not_mask_original_failure(order_factory):
    order = order_factory()
    router = FakeRouter(error=OrderExecutionError.routing("no route"))
    machine, repository, broadcaster, _, _ = _machine(order, router=router)
    repository.fail_on_record_failure = True

    with pytest.raises(OrderExecutionError) as exc_info:
        await machine.process(order)

    assert exc_info.value.message == "no route"
    assert repository.orders[order.id].status is OrderStatus.FAILED
    assert broadcaster.updates[-1].status is OrderStatus.FAILED


@pytest.mark.asyncio
async def test_announce_pending_resets_previous_failure(order_factory):
    failed = order_factory(status=OrderStatus.FAILED, error_reason="no route", dex_selected="meteora")
    machine, repository, broadcaster, _, _ = _machine(failed)

    order = await machine.announce_pending(failed)

    assert order.status is OrderStatus.PENDING
    assert order.error_reason is None
    assert order.dex_selected is None
    assert order.completed_at is None
    assert broadcaster.updates[-1].status is OrderStatus.PENDING


@pytest.mark.asyncio
async def test_each_stage_hands_back_the_persisted_order(order_factory):
    order = order_factory()
    machine, repository, _, _, _ = _machine(order)

    order = await machine.announce_pending(order)
    order, decision = await machine.start_routing(order)
    assert order.status is OrderStatus.ROUTING

    order, quote = await machine.build_transaction(order, decision)
    assert order.status is OrderStatus.BUILDING
    assert quote.venue == "raydium"

    order = await machine.submit(order, quote)
    assert order.status is OrderStatus.SUBMITTED

    order = await machine.confirm(order, quote)
    assert order.status is OrderStatus.CONFIRMED
    assert repository.orders[order.id] == order


@pytest.mark.asyncio
async def test_stage_cannot_be_skipped(order_factory):
    order = order_factory()
    machine, _, _, _, _ = _machine(order)
    decision = await FakeRouter().route(order.token_in, order.token_out, order.amount_in)

    with pytest.raises(OrderExecutionError):
        await machine.submit(order, decision.selected_quote)


@pytest.mark.asyncio
async def test_terminal_metrics_are_recorded(order_factory):
    metrics = get_metrics_for_testing()
    order = order_factory()
    machine, _, _, _, _ = _machine(order, metrics=metrics)
    await machine.process(order)

    failing_order = order_factory()
    failing, _, _, _, _ = _machine(failing_order, router=FakeRouter(error=RuntimeError("x")), metrics=metrics)
    with pytest.raises(RuntimeError):
        await failing.process(failing_order)

    assert metrics.registry.get_sample_value(
        "swap_orders_processed_total", {"status": "confirmed", "venue": "raydium"}
    ) == 1.0
    assert metrics.registry.get_sample_value(
        "swap_orders_processed_total", {"status": "failed", "venue": "none"}
    ) == 1.0
    assert metrics.registry.get_sample_value(
        "swap_errors_total", {"component": "order_processor", "error_code": "UNKNOWN_ERROR"}
    ) == 1.0
