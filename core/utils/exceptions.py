# Tagged error type for the order execution pipeline

from enum import Enum
from typing import Dict, Any, Optional
from datetime import datetime, timezone


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    ROUTING_ERROR = "ROUTING_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    QUOTE_ERROR = "QUOTE_ERROR"
    QUEUE_ERROR = "QUEUE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_STATUS_CODES: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.ORDER_NOT_FOUND: 404,
    ErrorKind.ROUTING_ERROR: 500,
    ErrorKind.EXECUTION_ERROR: 500,
    ErrorKind.QUOTE_ERROR: 500,
    ErrorKind.QUEUE_ERROR: 500,
    ErrorKind.UNKNOWN_ERROR: 500,
}


class OrderExecutionError(Exception):
    """Single error type for the pipeline; callers switch on `kind`."""

    def __init__(self, kind: ErrorKind, message: str,
                 metadata: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.kind = ErrorKind(kind)
        self.message = message
        self.metadata = metadata or {}
        self.timestamp = datetime.now(timezone.utc)

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        """API error body."""
        return {"error": self.message, "code": self.code}

    def __repr__(self) -> str:
        return f"OrderExecutionError(kind={self.kind.value}, message={self.message!r})"

    # Constructors for the common kinds

    @classmethod
    def validation(cls, message: str, **metadata) -> "OrderExecutionError":
        return cls(ErrorKind.VALIDATION_ERROR, message, metadata)

    @classmethod
    def order_not_found(cls, order_id: str) -> "OrderExecutionError":
        return cls(ErrorKind.ORDER_NOT_FOUND, f"Order {order_id} not found", {"order_id": order_id})

    @classmethod
    def routing(cls, message: str, **metadata) -> "OrderExecutionError":
        return cls(ErrorKind.ROUTING_ERROR, message, metadata)

    @classmethod
    def execution(cls, message: str, **metadata) -> "OrderExecutionError":
        return cls(ErrorKind.EXECUTION_ERROR, message, metadata)

    @classmethod
    def quote(cls, message: str, **metadata) -> "OrderExecutionError":
        return cls(ErrorKind.QUOTE_ERROR, message, metadata)

    @classmethod
    def queue(cls, message: str, **metadata) -> "OrderExecutionError":
        return cls(ErrorKind.QUEUE_ERROR, message, metadata)


def error_code_for(exc: BaseException) -> str:
    """Machine error code for any exception surfaced from processing."""
    if isinstance(exc, OrderExecutionError):
        return exc.code
    return ErrorKind.UNKNOWN_ERROR.value


def error_message_for(exc: BaseException) -> str:
    if isinstance(exc, OrderExecutionError):
        return exc.message
    return str(exc) or "Unknown error"
