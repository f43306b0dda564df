import asyncio
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Sequence

from core.logging import get_trading_logger_safe
from core.schemas.orders import Quote, RoutingDecision, to_decimal
from core.utils.exceptions import OrderExecutionError, ErrorKind
from .venue_client import VenueClient

logger = get_trading_logger_safe("venue_router")


class VenueRouter:
    """
    Quotes every configured venue concurrently and picks the best output.

    Venue order is significant: a venue only displaces the current best on a
    strictly larger output, so ties resolve to the venue listed first.
    """

    def __init__(self, clients: Sequence[VenueClient]):
        if not clients:
            raise ValueError("VenueRouter requires at least one venue client")
        self._clients: Dict[str, VenueClient] = {client.name: client for client in clients}

    @property
    def venues(self) -> List[str]:
        return list(self._clients)

    async def quote(self, venue: str, token_in: str, token_out: str, amount_in) -> Quote:
        """Single venue quote; any failure surfaces as QUOTE_ERROR."""
        client = self._clients.get(venue)
        if client is None:
            raise OrderExecutionError.quote(f"Unknown venue: {venue}", venue=venue)

        try:
            return await client.get_quote(token_in, token_out, to_decimal(amount_in))
        except OrderExecutionError as e:
            if e.kind is ErrorKind.QUOTE_ERROR:
                raise
            raise OrderExecutionError.quote(e.message, venue=venue) from e
        except Exception as e:
            raise OrderExecutionError.quote(f"{venue} quote failed: {e}", venue=venue) from e

    async def route(self, token_in: str, token_out: str, amount_in) -> RoutingDecision:
        logger.info("Starting venue routing",
                    token_in=token_in,
                    token_out=token_out,
                    amount_in=str(amount_in),
                    venues=self.venues)

        # Wait for every venue before judging; one failure voids the attempt
        results = await asyncio.gather(
            *(self.quote(venue, token_in, token_out, amount_in) for venue in self.venues),
            return_exceptions=True,
        )

        quotes: Dict[str, Quote] = {}
        for venue, result in zip(self.venues, results):
            if isinstance(result, BaseException):
                logger.warning("Venue quote failed", venue=venue, error=str(result))
                raise OrderExecutionError.routing(
                    f"Routing failed: {venue} quote unavailable ({result})",
                    venue=venue,
                ) from result
            quotes[venue] = result

        ranked = self._rank(quotes)
        best = ranked[0]
        reason = self._explain(best, ranked[1] if len(ranked) > 1 else None)

        logger.info("Venue routing decision",
                    selected_venue=best.venue,
                    reason=reason,
                    outputs={venue: str(q.output_amount) for venue, q in quotes.items()})

        return RoutingDecision(selected_venue=best.venue, quotes=quotes, reason=reason)

    @staticmethod
    def _rank(quotes: Dict[str, Quote]) -> List[Quote]:
        """Best first; a later venue must beat an earlier one strictly."""
        ranked: List[Quote] = []
        for quote in quotes.values():
            position = len(ranked)
            for i, existing in enumerate(ranked):
                if quote.output_amount > existing.output_amount:
                    position = i
                    break
            ranked.insert(position, quote)
        return ranked

    @staticmethod
    def _explain(best: Quote, runner_up) -> str:
        name = best.venue.capitalize()
        if runner_up is None:
            return f"{name} is the only configured venue"
        if runner_up.output_amount == 0:
            return f"{name} is the only venue with a non-zero quote"

        advantage = (best.output_amount - runner_up.output_amount) / runner_up.output_amount * 100
        return f"{name} offers {advantage.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}% better rate"
