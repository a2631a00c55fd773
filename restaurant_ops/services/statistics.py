"""
Statistics Service

Read-only aggregates over one restaurant's orders and payments. Every
query is joined through Table so it can only ever see the caller's
restaurant.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from restaurant_ops.core.exceptions import (
    InvalidPermissionSpec,
    OperationResult,
    RestaurantOpsError,
    ValidationFailed,
)
from restaurant_ops.models import Order, OrderItem, OrderStatus, Payment, Table, utcnow
from restaurant_ops.permissions.evaluator import AuthorizationEvaluator, Principal
from restaurant_ops.permissions.model import parse_permissions

logger = logging.getLogger(__name__)

READ_STATISTICS = parse_permissions(["statistics.read"])

DEFAULT_PERIOD = timedelta(days=30)


@dataclass
class StatisticsSummary:
    restaurant_id: int
    start: datetime
    end: datetime
    orders_by_status: dict[str, int] = field(default_factory=dict)
    revenue: Decimal = Decimal("0")
    payment_count: int = 0
    paid_order_count: int = 0
    average_order_value: Decimal = Decimal("0")
    top_dishes: list[dict[str, Any]] = field(default_factory=list)

    @property
    def order_count(self) -> int:
        return sum(self.orders_by_status.values())


class StatisticsService:
    """Revenue, order counts and best sellers for a period."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        evaluator: AuthorizationEvaluator,
        top_dish_limit: int = 5,
    ):
        self.session_factory = session_factory
        self.evaluator = evaluator
        self.top_dish_limit = top_dish_limit

    async def summary(
        self,
        principal: Optional[Principal],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> OperationResult[StatisticsSummary]:
        try:
            self.evaluator.require(principal, READ_STATISTICS)
            end = _as_utc(end) if end else utcnow()
            start = _as_utc(start) if start else end - DEFAULT_PERIOD
            if start > end:
                raise ValidationFailed("Period start must be before its end")

            async with self.session_factory() as session:
                summary = await self._collect(session, principal.restaurant_id, start, end)
        except InvalidPermissionSpec:
            raise
        except RestaurantOpsError as e:
            return OperationResult.fail(e)
        return OperationResult.ok(summary)

    async def _collect(
        self,
        session: AsyncSession,
        restaurant_id: int,
        start: datetime,
        end: datetime,
    ) -> StatisticsSummary:
        summary = StatisticsSummary(restaurant_id=restaurant_id, start=start, end=end)

        in_period = (
            Table.restaurant_id == restaurant_id,
            Order.created_at >= start,
            Order.created_at <= end,
        )

        # Orders by status
        rows = await session.execute(
            select(Order.status, func.count(Order.id))
            .join(Table, Order.table_id == Table.id)
            .where(*in_period)
            .group_by(Order.status)
        )
        summary.orders_by_status = {status.value: count for status, count in rows.all()}

        # Revenue: payments recorded in the period
        revenue_row = await session.execute(
            select(func.coalesce(func.sum(Payment.amount), 0), func.count(Payment.id))
            .join(Order, Payment.order_id == Order.id)
            .join(Table, Order.table_id == Table.id)
            .where(
                Table.restaurant_id == restaurant_id,
                Payment.created_at >= start,
                Payment.created_at <= end,
            )
        )
        revenue, payment_count = revenue_row.one()
        summary.revenue = Decimal(str(revenue))
        summary.payment_count = payment_count

        # Average value of paid orders
        line_total = OrderItem.unit_price * OrderItem.quantity
        paid_totals = (
            select(Order.id.label("order_id"), func.sum(line_total).label("total"))
            .join(Table, Order.table_id == Table.id)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .where(*in_period, Order.status == OrderStatus.PAID)
            .group_by(Order.id)
            .subquery()
        )
        avg_row = await session.execute(
            select(func.count(paid_totals.c.order_id), func.coalesce(func.avg(paid_totals.c.total), 0))
        )
        paid_count, average = avg_row.one()
        summary.paid_order_count = paid_count
        summary.average_order_value = Decimal(str(average)).quantize(Decimal("0.01"))

        # Best sellers, cancelled orders excluded
        dish_rows = await session.execute(
            select(
                OrderItem.dish_id,
                OrderItem.dish_name,
                func.sum(OrderItem.quantity).label("quantity"),
                func.sum(line_total).label("revenue"),
            )
            .join(Order, OrderItem.order_id == Order.id)
            .join(Table, Order.table_id == Table.id)
            .where(*in_period, Order.status != OrderStatus.CANCELLED)
            .group_by(OrderItem.dish_id, OrderItem.dish_name)
            .order_by(func.sum(OrderItem.quantity).desc(), OrderItem.dish_id)
            .limit(self.top_dish_limit)
        )
        summary.top_dishes = [
            {
                "dish_id": dish_id,
                "name": name,
                "quantity": int(quantity),
                "revenue": Decimal(str(dish_revenue)),
            }
            for dish_id, name, quantity, dish_revenue in dish_rows.all()
        ]

        logger.debug(
            f"Statistics for restaurant #{restaurant_id}: "
            f"{summary.order_count} orders, revenue {summary.revenue}"
        )
        return summary


def _as_utc(value: datetime) -> datetime:
    # Naive bounds are taken as UTC, like every timestamp stored by the models
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
