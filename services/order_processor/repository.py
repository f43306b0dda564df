import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func

from core.database.connection import DatabaseManager
from core.database.models import Order as OrderRow, OrderExecution, OrderFailure
from core.logging import get_database_logger_safe
from core.schemas.orders import Order, OrderRequest, OrderStatus, to_decimal
from core.utils.exceptions import OrderExecutionError

UPDATABLE_FIELDS = {"dex_selected", "tx_hash", "executed_price", "error_reason", "completed_at"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderRepository:
    """Order, execution and failure persistence on top of DatabaseManager."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.logger = get_database_logger_safe("order_repository")

    async def create_order(self, request: OrderRequest) -> Order:
        now = _utcnow()
        row = OrderRow(
            id=str(uuid.uuid4()),
            user_id=request.user_id,
            token_in=request.token_in,
            token_out=request.token_out,
            amount_in=to_decimal(request.amount_in),
            min_amount_out=to_decimal(request.min_amount_out),
            slippage_tolerance=to_decimal(request.slippage_tolerance),
            status=OrderStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        async with self.db_manager.get_session() as session:
            session.add(row)
            await session.commit()
            order = Order.model_validate(row)

        self.logger.info("Order created", order_id=order.id, user_id=order.user_id)
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self.db_manager.get_session() as session:
            row = await session.get(OrderRow, order_id)
            return Order.model_validate(row) if row else None

    async def update_order_status(self, order_id: str, status: OrderStatus, **fields: Any) -> Order:
        """Set status plus any of the stage fields; always bumps updated_at."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update order fields: {sorted(unknown)}")

        async with self.db_manager.get_session() as session:
            row = await session.get(OrderRow, order_id)
            if row is None:
                raise OrderExecutionError.order_not_found(order_id)

            row.status = OrderStatus(status).value
            for name, value in fields.items():
                if name == "executed_price" and value is not None:
                    value = to_decimal(value)
                setattr(row, name, value)
            row.updated_at = _utcnow()

            await session.commit()
            order = Order.model_validate(row)

        self.logger.debug("Order status updated", order_id=order_id, status=order.status.value)
        return order

    async def get_orders_by_user(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        async with self.db_manager.get_session() as session:
            stmt = (
                select(OrderRow)
                .where(OrderRow.user_id == user_id)
                .order_by(OrderRow.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            result = await session.execute(stmt)
            return [Order.model_validate(row) for row in result.scalars().all()]

    async def count_orders_by_user(self, user_id: str) -> int:
        async with self.db_manager.get_session() as session:
            stmt = select(func.count()).select_from(OrderRow).where(OrderRow.user_id == user_id)
            return (await session.execute(stmt)).scalar_one()

    async def get_orders_by_status(self, status: OrderStatus, limit: int = 50) -> List[Order]:
        async with self.db_manager.get_session() as session:
            stmt = (
                select(OrderRow)
                .where(OrderRow.status == OrderStatus(status).value)
                .order_by(OrderRow.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [Order.model_validate(row) for row in result.scalars().all()]

    async def record_execution(self, order_id: str, dex: str, input_amount, output_amount,
                               tx_hash: Optional[str], status: str,
                               error_reason: Optional[str] = None) -> None:
        async with self.db_manager.get_session() as session:
            session.add(OrderExecution(
                id=str(uuid.uuid4()),
                order_id=order_id,
                dex=dex,
                input_amount=to_decimal(input_amount),
                output_amount=to_decimal(output_amount) if output_amount is not None else None,
                tx_hash=tx_hash,
                status=status,
                error_reason=error_reason,
                created_at=_utcnow(),
            ))
            await session.commit()

    async def record_failure(self, order_id: str, attempt_number: int, reason: str,
                             error_code: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        async with self.db_manager.get_session() as session:
            session.add(OrderFailure(
                id=str(uuid.uuid4()),
                order_id=order_id,
                attempt_number=attempt_number,
                reason=reason,
                error_code=error_code,
                metadata_=metadata or {},
                created_at=_utcnow(),
            ))
            await session.commit()

        self.logger.info("Order failure recorded",
                         order_id=order_id,
                         attempt_number=attempt_number,
                         error_code=error_code)

    async def get_executions_by_order(self, order_id: str) -> List[Dict[str, Any]]:
        async with self.db_manager.get_session() as session:
            stmt = (
                select(OrderExecution)
                .where(OrderExecution.order_id == order_id)
                .order_by(OrderExecution.created_at.asc())
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [
                {
                    "id": row.id,
                    "order_id": row.order_id,
                    "dex": row.dex,
                    "input_amount": row.input_amount,
                    "output_amount": row.output_amount,
                    "tx_hash": row.tx_hash,
                    "status": row.status,
                    "error_reason": row.error_reason,
                    "created_at": row.created_at,
                }
                for row in rows
            ]

    async def get_failures_by_order(self, order_id: str) -> List[Dict[str, Any]]:
        async with self.db_manager.get_session() as session:
            stmt = (
                select(OrderFailure)
                .where(OrderFailure.order_id == order_id)
                .order_by(OrderFailure.created_at.asc())
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [
                {
                    "id": row.id,
                    "order_id": row.order_id,
                    "attempt_number": row.attempt_number,
                    "reason": row.reason,
                    "error_code": row.error_code,
                    "metadata": row.metadata_,
                    "created_at": row.created_at,
                }
                for row in rows
            ]
