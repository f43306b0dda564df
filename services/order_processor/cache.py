import redis.asyncio as redis
from typing import Optional

from core.config.settings import Settings
from core.schemas.orders import Order


class OrderCache:
    """
    Read-through copy of orders in Redis, keyed by order id with a TTL.
    """
    def __init__(self, settings: Settings, redis_client=None):
        self.settings = settings
        self.redis_client = redis_client
        self.ttl_seconds = settings.redis.order_cache_ttl_seconds

    async def initialize(self):
        """Initialize Redis client connection"""
        if not self.redis_client:
            self.redis_client = redis.from_url(self.settings.redis.url, decode_responses=True)

    @staticmethod
    def _get_key(order_id: str) -> str:
        return f"order:{order_id}"

    async def get_order(self, order_id: str) -> Optional[Order]:
        """
        Retrieves an order from the cache.

        Returns:
            An Order if found, otherwise None.
        """
        if not self.redis_client:
            await self.initialize()

        data = await self.redis_client.get(self._get_key(order_id))
        if data:
            return Order.model_validate_json(data)
        return None

    async def cache_order(self, order: Order):
        if not self.redis_client:
            await self.initialize()

        await self.redis_client.set(
            self._get_key(order.id), order.model_dump_json(), ex=self.ttl_seconds
        )

    async def delete_order(self, order_id: str):
        if not self.redis_client:
            await self.initialize()

        await self.redis_client.delete(self._get_key(order_id))

    async def close(self):
        """Closes the Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
