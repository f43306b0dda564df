# Database models for order state and audit trails
from sqlalchemy import Column, Integer, String, Numeric, JSON, DateTime, Text, ForeignKey, Index
from sqlalchemy.sql import func
from core.schemas.orders import AMOUNT_FRACTION_DIGITS, AMOUNT_INTEGER_DIGITS
from .connection import Base

AMOUNT = Numeric(AMOUNT_INTEGER_DIGITS + AMOUNT_FRACTION_DIGITS, AMOUNT_FRACTION_DIGITS)


class Order(Base):
    """Swap order; owned by the store, mutated stage by stage by the pipeline"""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    token_in = Column(String(64), nullable=False)
    token_out = Column(String(64), nullable=False)
    amount_in = Column(AMOUNT, nullable=False)
    min_amount_out = Column(AMOUNT, nullable=False)
    slippage_tolerance = Column(Numeric(5, 2), nullable=False)
    status = Column(String(16), nullable=False, index=True)
    dex_selected = Column(String(32))
    tx_hash = Column(String(128))
    executed_price = Column(AMOUNT)
    error_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_orders_user_created', 'user_id', 'created_at'),
        Index('idx_orders_status_created', 'status', 'created_at'),
    )


class OrderExecution(Base):
    """Append-only row per attempted swap"""
    __tablename__ = "order_executions"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    dex = Column(String(32), nullable=False)
    input_amount = Column(AMOUNT, nullable=False)
    output_amount = Column(AMOUNT)
    tx_hash = Column(String(128))
    status = Column(String(16), nullable=False)
    error_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class OrderFailure(Base):
    """Append-only row per caught processing error, retried or not"""
    __tablename__ = "order_failures"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)
    error_code = Column(String(32), nullable=False)
    # `metadata` is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
