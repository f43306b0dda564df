import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List

from core.config.settings import Settings
from core.logging import get_trading_logger_safe
from core.schemas.orders import Quote, to_decimal
from core.utils.exceptions import OrderExecutionError

logger = get_trading_logger_safe("venue_client")

BASE_RATE = Decimal("0.95")
MIN_RECEIVED_FACTOR = Decimal("0.995")

# venue -> (rate multiplier, price impact %)
MOCK_VENUE_PROFILES: Dict[str, tuple] = {
    "raydium": (Decimal("1.005"), 0.3),
    "meteora": (Decimal("0.98"), 0.8),
}
DEFAULT_PROFILE = (Decimal("1.0"), 0.5)


class VenueClient(ABC):
    """Abstract base class for venue quote integrations."""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def get_quote(self, token_in: str, token_out: str, amount_in: Decimal) -> Quote:
        """Return the venue's terms for swapping amount_in of token_in."""
        pass


class MockVenueClient(VenueClient):
    """
    Simulated venue that quotes a fixed rate after a configured delay.

    With simulation disabled there is no live integration to fall back to,
    so every quote fails.
    """

    def __init__(self, name: str, enabled: bool = True, delay_ms: int = 2000):
        super().__init__(name)
        self.enabled = enabled
        self.delay_ms = delay_ms
        self.rate_multiplier, self.price_impact = MOCK_VENUE_PROFILES.get(name, DEFAULT_PROFILE)

    async def get_quote(self, token_in: str, token_out: str, amount_in: Decimal) -> Quote:
        if not self.enabled:
            raise OrderExecutionError.quote(
                f"Live quotes are not available for {self.name}", venue=self.name
            )

        await asyncio.sleep(self.delay_ms / 1000)

        amount = to_decimal(amount_in)
        output_amount = amount * BASE_RATE * self.rate_multiplier
        quote = Quote(
            venue=self.name,
            input_amount=amount,
            output_amount=output_amount,
            price_impact=self.price_impact,
            min_received=output_amount * MIN_RECEIVED_FACTOR,
            execution_time_ms=self.delay_ms,
        )
        logger.debug("Generated mock quote",
                     venue=self.name,
                     token_in=token_in,
                     token_out=token_out,
                     amount_in=str(amount),
                     output_amount=str(output_amount),
                     price_impact=self.price_impact)
        return quote


def create_venue_clients(settings: Settings) -> List[VenueClient]:
    """Build one client per configured venue, preserving configured order."""
    return [
        MockVenueClient(venue, enabled=settings.mock.enabled, delay_ms=settings.mock.delay_ms)
        for venue in settings.routing.venues
    ]
