"""
Payment result types.

PaymentReceipt is what a caller gets back after recording a payment: the
immutable ledger entry plus a snapshot of the order's balance at that
moment.
"""

from dataclasses import dataclass
from decimal import Decimal

from restaurant_ops.models import Order, OrderStatus, Payment


@dataclass
class PaymentReceipt:
    """
    Standardized result of recording a payment.

    Attributes:
        payment: The appended ledger entry
        order: The order after the payment was applied
        order_total: Sum of the order's snapshotted line totals
        total_paid: Sum of all payments on the order, this one included
        balance_due: Amount still owed (0 once settled)
        surplus: Amount paid beyond the order total (no automatic refund)
        settled: True if this payment moved the order to PAID
    """
    payment: Payment
    order: Order
    order_total: Decimal
    total_paid: Decimal
    balance_due: Decimal
    surplus: Decimal
    settled: bool

    @classmethod
    def build(cls, payment: Payment, order: Order, settled: bool) -> "PaymentReceipt":
        return cls(
            payment=payment,
            order=order,
            order_total=order.total,
            total_paid=order.amount_paid,
            balance_due=order.balance_due,
            surplus=order.surplus,
            settled=settled,
        )

    @property
    def order_status(self) -> OrderStatus:
        return self.order.status

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization and ledger export."""
        return {
            "payment_id": self.payment.id,
            "order_id": self.order.id,
            "amount": str(self.payment.amount),
            "method": self.payment.method.value,
            "order_status": self.order.status.value,
            "order_total": str(self.order_total),
            "total_paid": str(self.total_paid),
            "balance_due": str(self.balance_due),
            "surplus": str(self.surplus),
            "settled": self.settled,
        }
