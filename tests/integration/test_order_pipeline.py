"""
Real state machine, repository, router and simulator wired together on
sqlite and an in-memory Redis, driven directly and through the dispatcher.
"""
from decimal import Decimal

import pytest
from starlette.websockets import WebSocketState

from core.schemas.orders import OrderRequest, OrderStatus
from core.utils.exceptions import OrderExecutionError
from services.dispatcher import JobDispatcher, RedisJobStore
from services.execution import ExecutionSimulator, receipt_id_for
from services.notifications import NotificationBroadcaster
from services.order_processor import OrderCache, OrderRepository, OrderStateMachine
from services.routing import VenueRouter, create_venue_clients
from tests.factories import TOKEN_IN, TOKEN_OUT

# 1.5 * 0.95 * 1.005 on raydium, less 0.5% slippage
EXPECTED_EXECUTED = Decimal("1.424964375")


class FlakyRouter:
    """Fails the first `failures` routing calls, then delegates."""

    def __init__(self, router, failures=0):
        self.router = router
        self.failures = failures
        self.calls = 0

    async def route(self, token_in, token_out, amount_in):
        self.calls += 1
        if self.calls <= self.failures:
            raise OrderExecutionError.routing("Routing failed: meteora quote unavailable")
        return await self.router.route(token_in, token_out, amount_in)


class RecordingWebSocket:
    def __init__(self):
        self.sent = []
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_json(self, data):
        self.sent.append(data)


@pytest.fixture
def repository(db_manager):
    return OrderRepository(db_manager)


@pytest.fixture
def broadcaster():
    return NotificationBroadcaster()


@pytest.fixture
def make_state_machine(test_settings, repository, broadcaster, redis_client):
    def _make(failures=0):
        router = FlakyRouter(VenueRouter(create_venue_clients(test_settings)), failures=failures)
        return OrderStateMachine(
            settings=test_settings,
            router=router,
            simulator=ExecutionSimulator(test_settings),
            repository=repository,
            broadcaster=broadcaster,
            cache=OrderCache(test_settings, redis_client=redis_client),
        )
    return _make


async def _create_order(repository):
    return await repository.create_order(OrderRequest(
        userId="user-1",
        tokenIn=TOKEN_IN,
        tokenOut=TOKEN_OUT,
        amountIn="1.5",
        minAmountOut="1.4",
    ))


@pytest.mark.asyncio
async def test_order_is_confirmed_end_to_end(make_state_machine, repository, test_settings, redis_client):
    machine = make_state_machine()
    order = await _create_order(repository)

    confirmed = await machine.process(order)

    assert confirmed.status is OrderStatus.CONFIRMED
    assert confirmed.dex_selected == "raydium"
    assert confirmed.tx_hash == receipt_id_for(order.id)
    assert confirmed.executed_price == EXPECTED_EXECUTED
    assert confirmed.completed_at is not None

    stored = await repository.get_order(order.id)
    assert stored.status is OrderStatus.CONFIRMED
    assert abs(stored.executed_price - EXPECTED_EXECUTED) < Decimal("1e-9")

    executions = await repository.get_executions_by_order(order.id)
    assert [e["status"] for e in executions] == ["completed"]
    assert await repository.get_failures_by_order(order.id) == []

    cached = await OrderCache(test_settings, redis_client=redis_client).get_order(order.id)
    assert cached.status is OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_retried_order_recovers_and_confirms(
    make_state_machine, repository, broadcaster, test_settings, redis_client, eventually
):
    machine = make_state_machine(failures=1)
    store = RedisJobStore(redis_client, queue_name="pipeline")
    dispatcher = JobDispatcher(test_settings, store, machine)
    order = await _create_order(repository)
    subscriber = RecordingWebSocket()
    await broadcaster.subscribe(order.id, subscriber)

    await dispatcher.enqueue(order)
    await dispatcher.start()
    try:
        async def confirmed():
            current = await repository.get_order(order.id)
            return current.status is OrderStatus.CONFIRMED

        await eventually(confirmed)

        async def completed():
            return (await store.counts())["completedCount"] == 1

        await eventually(completed)
    finally:
        await dispatcher.stop()

    final = await repository.get_order(order.id)
    assert final.error_reason is None
    assert final.completed_at is not None
    assert final.dex_selected == "raydium"
    assert final.tx_hash == receipt_id_for(order.id)

    failures = await repository.get_failures_by_order(order.id)
    assert [(f["attempt_number"], f["error_code"]) for f in failures] == [(1, "ROUTING_ERROR")]

    assert [m["status"] for m in subscriber.sent] == [
        "pending", "routing", "failed",
        "pending", "routing", "building", "submitted", "confirmed",
    ]
    assert subscriber.sent[2]["data"] == {"error": "Routing failed: meteora quote unavailable"}
    assert (await store.counts())["failedCount"] == 0
