# Order, quote and status-update schemas shared by the pipeline and the API

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Dict, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator


TOKEN_ADDRESS_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
AMOUNT_PATTERN = re.compile(r"^\d+(\.\d+)?$")

# Matches the Numeric(38, 18) amount columns
AMOUNT_INTEGER_DIGITS = 20
AMOUNT_FRACTION_DIGITS = 18


def to_decimal(value: Any) -> Decimal:
    """Exact decimal from str/int/Decimal; floats go through their repr."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def format_amount(value: Any) -> str:
    """Plain decimal string without exponent or trailing zeros ("99.500" -> "99.5")."""
    text = format(to_decimal(value), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def fits_amount_precision(amount: str) -> bool:
    """True when a decimal string fits the stored amount precision."""
    integer, _, fraction = amount.partition(".")
    return (
        len(integer.lstrip("0")) <= AMOUNT_INTEGER_DIGITS
        and len(fraction.rstrip("0")) <= AMOUNT_FRACTION_DIGITS
    )


def validate_token_address(address: str) -> bool:
    return bool(TOKEN_ADDRESS_PATTERN.match(address or ""))


def validate_amount(amount: str) -> bool:
    if not AMOUNT_PATTERN.match(amount or ""):
        return False
    if not fits_amount_precision(amount):
        return False
    try:
        return Decimal(amount) > 0
    except InvalidOperation:
        return False


Amount = Annotated[Decimal, PlainSerializer(format_amount, return_type=str, when_used="json")]
Percentage = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class OrderStatus(str, Enum):
    PENDING = "pending"
    ROUTING = "routing"
    BUILDING = "building"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.CONFIRMED, OrderStatus.FAILED)

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Forward-only along the lifecycle; `failed` from any non-terminal state."""
        if self.is_terminal:
            return False
        if target is OrderStatus.FAILED:
            return True
        return _LIFECYCLE.index(target) == _LIFECYCLE.index(self) + 1


_LIFECYCLE = [
    OrderStatus.PENDING,
    OrderStatus.ROUTING,
    OrderStatus.BUILDING,
    OrderStatus.SUBMITTED,
    OrderStatus.CONFIRMED,
]


class OrderRequest(BaseModel):
    """Inbound order submission; camelCase on the wire."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    token_in: str = Field(..., alias="tokenIn")
    token_out: str = Field(..., alias="tokenOut")
    amount_in: str = Field(..., alias="amountIn")
    min_amount_out: str = Field(..., alias="minAmountOut")
    slippage_tolerance: float = Field(default=0.5, alias="slippageTolerance", ge=0.1, le=50)

    @field_validator("token_in", "token_out")
    @classmethod
    def check_token_address(cls, v: str) -> str:
        if not validate_token_address(v):
            raise ValueError("Invalid token address")
        return v

    @field_validator("amount_in", "min_amount_out")
    @classmethod
    def check_amount(cls, v: str) -> str:
        if not AMOUNT_PATTERN.match(v):
            raise ValueError("Invalid amount format")
        if not fits_amount_precision(v):
            raise ValueError(
                f"Amount exceeds {AMOUNT_INTEGER_DIGITS} integer or {AMOUNT_FRACTION_DIGITS} fractional digits"
            )
        return v

    @field_validator("amount_in")
    @classmethod
    def check_positive_amount(cls, v: str) -> str:
        if Decimal(v) <= 0:
            raise ValueError("Amount must be greater than zero")
        return v


class Order(BaseModel):
    """Working copy of a persisted order."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    token_in: str
    token_out: str
    amount_in: Amount
    min_amount_out: Amount
    slippage_tolerance: Percentage
    status: OrderStatus = OrderStatus.PENDING
    dex_selected: Optional[str] = None
    tx_hash: Optional[str] = None
    executed_price: Optional[Amount] = None
    error_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None


class Quote(BaseModel):
    venue: str
    input_amount: Amount
    output_amount: Amount
    price_impact: float  # percentage
    min_received: Amount
    execution_time_ms: int


class RoutingDecision(BaseModel):
    selected_venue: str
    quotes: Dict[str, Quote]  # keyed by venue, in evaluation order
    reason: str

    @property
    def selected_quote(self) -> Quote:
        return self.quotes[self.selected_venue]


class ExecutionResult(BaseModel):
    receipt_id: str
    executed_amount: Amount


class StatusData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dex: Optional[str] = None
    price: Optional[str] = None
    tx_hash: Optional[str] = Field(default=None, alias="txHash")
    error: Optional[str] = None


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class StatusUpdate(BaseModel):
    """Lifecycle event pushed to subscribers of an order."""
    model_config = ConfigDict(populate_by_name=True)

    event: Literal["status_update"] = "status_update"
    order_id: str = Field(..., alias="orderId")
    status: OrderStatus
    data: StatusData = Field(default_factory=StatusData)
    timestamp: int = Field(default_factory=_now_ms)

    def to_message(self) -> Dict[str, Any]:
        """Wire shape: {event, orderId, status, data:{dex?, price?, txHash?, error?}, timestamp}."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class OrderJob(BaseModel):
    """Dispatcher bookkeeping for one order."""
    job_id: str
    order_id: str
    order: Order
    attempts_made: int = 0
    max_attempts: int
