"""
Payment Reconciliation

Records payments against SERVED orders and settles them.

Recording a payment is a unit of work on the order aggregate, serialized
with every other change to the same order. Inside it the payment is
appended, the total paid recomputed and, once it covers the order total,
the order moves SERVED -> PAID. That last step is an internal transition:
the caller already holds ``payments.create`` and passed the tenant guard
for this same unit, so no second permission gate applies.

Usage:
    reconciler = PaymentReconciler(order_service)
    result = await reconciler.record_payment(principal, order_id, Decimal("2500"))
    if result.success and result.value.settled:
        ...
"""

import logging
from decimal import Decimal, DecimalException
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from restaurant_ops.core.exceptions import (
    InvalidPermissionSpec,
    OperationResult,
    OrderClosed,
    OrderNotReady,
    RestaurantOpsError,
    ValidationFailed,
)
from restaurant_ops.models import Order, OrderStatus, Payment, PaymentMethod, utcnow
from restaurant_ops.permissions.evaluator import Principal
from restaurant_ops.permissions.model import parse_permissions
from restaurant_ops.services.orders.service import OrderService, UnitOutcome
from restaurant_ops.services.payment.base import PaymentReceipt

logger = logging.getLogger(__name__)

RECORD_PAYMENT = parse_permissions(["payments.create"])
READ_PAYMENTS = parse_permissions(["payments.read"])

NOT_READY_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY})
CLOSED_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.CANCELLED})

CENT = Decimal("0.01")
# Numeric(12, 2) column
MAX_AMOUNT = Decimal("9999999999.99")


class PaymentReconciler:
    """Appends payments to orders and triggers settlement."""

    def __init__(self, orders: OrderService):
        self.orders = orders

    @staticmethod
    def _parse_amount(amount: Union[Decimal, int, float, str]) -> Decimal:
        """
        Validate a payment amount: a positive number of whole cents that
        fits the payments column.
        """
        try:
            value = Decimal(str(amount))
            if not value.is_finite():
                raise ValidationFailed(f"Invalid payment amount {amount!r}")
            if value <= 0:
                raise ValidationFailed("Payment amount must be greater than 0", amount=str(amount))
            if value > MAX_AMOUNT:
                raise ValidationFailed(f"Payment amount cannot exceed {MAX_AMOUNT}", amount=str(amount))
            cents = value.quantize(CENT)
        except (DecimalException, ValueError):
            raise ValidationFailed(f"Invalid payment amount {amount!r}")
        if cents != value:
            raise ValidationFailed("Payment amount cannot have fractions of a cent", amount=str(amount))
        return cents

    async def record_payment(
        self,
        principal: Optional[Principal],
        order_id: int,
        amount: Union[Decimal, int, float, str],
        method: PaymentMethod = PaymentMethod.CASH,
    ) -> OperationResult[PaymentReceipt]:
        """
        Record a payment on a SERVED order.

        Fails with OrderNotReady before SERVED and OrderClosed once PAID or
        CANCELLED. Over-payment is accepted and reported as surplus.
        """
        try:
            value = self._parse_amount(amount)
            method = PaymentMethod(method)
        except ValueError:
            return OperationResult.fail(ValidationFailed(f"Unsupported payment method {method!r}"))
        except ValidationFailed as e:
            return OperationResult.fail(e)

        async def handler(session: AsyncSession, order: Order, restaurant_id: int) -> UnitOutcome:
            self.orders.evaluator.require(principal, RECORD_PAYMENT)
            self._ensure_payable(order)

            payment = Payment(
                amount=value,
                method=method,
                recorded_by_id=principal.user_id,
            )
            order.payments.append(payment)
            order.updated_at = utcnow()
            await session.flush()

            events = []
            settled = order.is_settled
            if settled:
                transition = self.orders.state_machine.transition_for(
                    order.status, OrderStatus.PAID, internal=True
                )
                events.append(
                    await self.orders.apply_transition(session, order, transition, restaurant_id, principal)
                )
                if order.surplus > 0:
                    logger.warning(f"Order #{order.id} overpaid by {order.surplus}")

            logger.info(
                f"Payment #{payment.id} of {value} {method.value} on order #{order.id} "
                f"(paid {order.amount_paid}/{order.total})"
            )
            return UnitOutcome(PaymentReceipt.build(payment, order, settled), events)

        return await self.orders.run_order_unit(principal, order_id, handler, "record_payment")

    @staticmethod
    def _ensure_payable(order: Order) -> None:
        if order.status in NOT_READY_STATUSES:
            raise OrderNotReady(
                f"Order is {order.status.value}; payments are accepted once it is SERVED",
                current_status=order.status.value,
            )
        if order.status in CLOSED_STATUSES:
            raise OrderClosed(
                f"Order is {order.status.value}; no further payments are accepted",
                current_status=order.status.value,
            )

    async def list_payments(
        self,
        principal: Optional[Principal],
        order_id: int,
    ) -> OperationResult[list[Payment]]:
        try:
            async with self.orders.session_factory() as session:
                order, _ = await self.orders.load_guarded(session, principal, order_id)
                self.orders.evaluator.require(principal, READ_PAYMENTS)
        except InvalidPermissionSpec:
            raise
        except RestaurantOpsError as e:
            return OperationResult.fail(e)
        return OperationResult.ok(list(order.payments))
