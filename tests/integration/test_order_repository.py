"""
Order store against a real SQLAlchemy engine (sqlite via aiosqlite).
"""
import asyncio
from decimal import Decimal

import pytest

from core.schemas.orders import OrderRequest, OrderStatus
from core.utils.exceptions import ErrorKind, OrderExecutionError
from services.order_processor import OrderRepository
from tests.factories import TOKEN_IN, TOKEN_OUT


def _request(user_id="user-1", amount_in="1.5"):
    return OrderRequest(
        userId=user_id,
        tokenIn=TOKEN_IN,
        tokenOut=TOKEN_OUT,
        amountIn=amount_in,
        minAmountOut="1.25",
    )


@pytest.fixture
def repository(db_manager):
    return OrderRepository(db_manager)


@pytest.mark.asyncio
async def test_create_order_starts_pending(repository):
    order = await repository.create_order(_request())

    assert order.status is OrderStatus.PENDING
    assert order.amount_in == Decimal("1.5")
    assert order.min_amount_out == Decimal("1.25")
    assert order.slippage_tolerance == Decimal("0.5")
    assert order.dex_selected is None
    assert order.created_at == order.updated_at

    loaded = await repository.get_order(order.id)
    assert loaded.id == order.id
    assert loaded.user_id == "user-1"
    assert loaded.token_in == TOKEN_IN


@pytest.mark.asyncio
async def test_every_order_gets_a_distinct_id(repository):
    first = await repository.create_order(_request())
    second = await repository.create_order(_request())

    assert first.id != second.id


@pytest.mark.asyncio
async def test_get_missing_order_returns_none(repository):
    assert await repository.get_order("does-not-exist") is None


@pytest.mark.asyncio
async def test_update_status_sets_fields_and_bumps_updated_at(repository):
    order = await repository.create_order(_request())
    await asyncio.sleep(0.01)

    updated = await repository.update_order_status(
        order.id, OrderStatus.CONFIRMED,
        dex_selected="raydium",
        tx_hash="ab" * 32,
        executed_price=Decimal("1.25"),
    )

    assert updated.status is OrderStatus.CONFIRMED
    assert updated.dex_selected == "raydium"
    assert updated.tx_hash == "ab" * 32
    assert updated.executed_price == Decimal("1.25")
    assert updated.updated_at > order.updated_at

    loaded = await repository.get_order(order.id)
    assert loaded.status is OrderStatus.CONFIRMED
    assert loaded.executed_price == Decimal("1.25")


@pytest.mark.asyncio
async def test_update_can_clear_fields(repository):
    order = await repository.create_order(_request())
    await repository.update_order_status(order.id, OrderStatus.FAILED, error_reason="no route")

    reset = await repository.update_order_status(order.id, OrderStatus.PENDING, error_reason=None)

    assert reset.status is OrderStatus.PENDING
    assert reset.error_reason is None


@pytest.mark.asyncio
async def test_update_missing_order_raises_not_found(repository):
    with pytest.raises(OrderExecutionError) as exc_info:
        await repository.update_order_status("missing", OrderStatus.ROUTING)

    assert exc_info.value.kind is ErrorKind.ORDER_NOT_FOUND


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(repository):
    order = await repository.create_order(_request())

    with pytest.raises(ValueError):
        await repository.update_order_status(order.id, OrderStatus.ROUTING, user_id="someone-else")


@pytest.mark.asyncio
async def test_orders_by_user_newest_first_with_paging(repository):
    created = []
    for amount in ("1", "2", "3"):
        created.append(await repository.create_order(_request(amount_in=amount)))
        await asyncio.sleep(0.01)
    await repository.create_order(_request(user_id="user-2"))

    orders = await repository.get_orders_by_user("user-1")
    assert [o.id for o in orders] == [o.id for o in reversed(created)]

    page = await repository.get_orders_by_user("user-1", limit=1, offset=1)
    assert [o.id for o in page] == [created[1].id]

    assert await repository.count_orders_by_user("user-1") == 3
    assert await repository.count_orders_by_user("nobody") == 0
    assert await repository.get_orders_by_user("nobody") == []


@pytest.mark.asyncio
async def test_orders_by_status(repository):
    pending = await repository.create_order(_request())
    failed = await repository.create_order(_request())
    await repository.update_order_status(failed.id, OrderStatus.FAILED, error_reason="x")

    assert [o.id for o in await repository.get_orders_by_status(OrderStatus.FAILED)] == [failed.id]
    assert [o.id for o in await repository.get_orders_by_status(OrderStatus.PENDING)] == [pending.id]


@pytest.mark.asyncio
async def test_execution_rows_are_appended(repository):
    order = await repository.create_order(_request())

    await repository.record_execution(order.id, "meteora", Decimal("1.5"), None, None, "failed",
                                      "Live execution is not available")
    await asyncio.sleep(0.01)
    await repository.record_execution(order.id, "raydium", Decimal("1.5"), Decimal("1.25"),
                                      "ab" * 32, "completed")

    executions = await repository.get_executions_by_order(order.id)
    assert [e["status"] for e in executions] == ["failed", "completed"]
    assert executions[0]["output_amount"] is None
    assert executions[0]["error_reason"] == "Live execution is not available"
    assert executions[1]["dex"] == "raydium"
    assert executions[1]["output_amount"] == Decimal("1.25")
    assert executions[1]["tx_hash"] == "ab" * 32


@pytest.mark.asyncio
async def test_failure_rows_keep_attempt_and_metadata(repository):
    order = await repository.create_order(_request())

    await repository.record_failure(order.id, 1, "no route", "ROUTING_ERROR", {"tokenIn": TOKEN_IN})
    await asyncio.sleep(0.01)
    await repository.record_failure(order.id, 2, "boom", "UNKNOWN_ERROR")

    failures = await repository.get_failures_by_order(order.id)
    assert [f["attempt_number"] for f in failures] == [1, 2]
    assert failures[0]["error_code"] == "ROUTING_ERROR"
    assert failures[0]["metadata"] == {"tokenIn": TOKEN_IN}
    assert failures[1]["metadata"] == {}
    assert await repository.get_failures_by_order("other") == []
