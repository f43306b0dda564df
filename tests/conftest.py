"""
Pytest configuration and shared fixtures for the swap router tests.
"""
import asyncio
import uuid
from decimal import Decimal

import fakeredis
import pytest

from core.config.settings import (
    Settings,
    MockSettings,
    QueueSettings,
)
from core.database.connection import DatabaseManager
from core.schemas.orders import Order, OrderStatus
from tests.factories import TOKEN_IN, TOKEN_OUT


@pytest.fixture
def test_settings():
    """Test settings: no simulated latency, small fast-polling worker pool."""
    return Settings(
        environment="testing",
        mock=MockSettings(enabled=True, delay_ms=0, build_delay_ms=0),
        queue=QueueSettings(
            max_concurrent=2,
            orders_per_minute=0,
            retry_max_attempts=3,
            backoff_base_ms=10,
            backoff_max_ms=40,
            poll_interval_ms=5,
        ),
    )


@pytest.fixture
def order_factory():
    """Build pending orders with sensible defaults."""
    def _make(**overrides) -> Order:
        fields = dict(
            id=str(uuid.uuid4()),
            user_id="user-1",
            token_in=TOKEN_IN,
            token_out=TOKEN_OUT,
            amount_in=Decimal("1"),
            min_amount_out=Decimal("0.9"),
            slippage_tolerance=Decimal("0.5"),
            status=OrderStatus.PENDING,
        )
        fields.update(overrides)
        return Order(**fields)
    return _make


@pytest.fixture
def order_request_payload():
    return {
        "userId": "user-1",
        "tokenIn": TOKEN_IN,
        "tokenOut": TOKEN_OUT,
        "amountIn": "1.5",
        "minAmountOut": "1.4",
        "slippageTolerance": 0.5,
    }


@pytest.fixture
async def redis_client():
    """Isolated in-process Redis per test."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
async def db_manager(tmp_path):
    """File-backed sqlite database with the order tables created."""
    manager = DatabaseManager(
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        environment="testing",
    )
    await manager.init()
    yield manager
    await manager.shutdown()


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01):
    """Poll an (optionally async) predicate until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return result
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def eventually():
    return wait_until
