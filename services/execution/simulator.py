import asyncio

from core.config.settings import Settings
from core.logging import get_trading_logger_safe
from core.schemas.orders import ExecutionResult, Order, Quote, format_amount, to_decimal
from core.utils.exceptions import OrderExecutionError

RECEIPT_ID_LENGTH = 64


def receipt_id_for(order_id: str) -> str:
    """Stable stand-in for a settlement reference: hex of the order id."""
    return order_id.encode("utf-8").hex()[:RECEIPT_ID_LENGTH]


class ExecutionSimulator:
    """
    Simulated swap settlement.

    The executed amount is the quoted output less the order's declared
    slippage tolerance; the venue's price impact plays no part. A live
    implementation would submit and poll for confirmation behind the same
    `execute` call.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.logger = get_trading_logger_safe("execution_simulator")

    async def execute(self, order: Order, quote: Quote) -> ExecutionResult:
        if not self.settings.mock.enabled:
            raise OrderExecutionError.execution(
                "Live execution is not available", order_id=order.id, venue=quote.venue
            )

        await asyncio.sleep(self.settings.mock.delay_ms / 1000)

        quoted_output = to_decimal(quote.output_amount)
        slippage_amount = quoted_output * to_decimal(order.slippage_tolerance) / 100
        executed_amount = quoted_output - slippage_amount
        receipt_id = receipt_id_for(order.id)

        self.logger.info("Swap executed on simulated venue",
                         order_id=order.id,
                         venue=quote.venue,
                         input_amount=format_amount(order.amount_in),
                         quoted_output=format_amount(quoted_output),
                         executed_amount=format_amount(executed_amount),
                         receipt_id=receipt_id)

        return ExecutionResult(receipt_id=receipt_id, executed_amount=executed_amount)
