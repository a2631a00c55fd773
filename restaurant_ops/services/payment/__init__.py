"""
Payment ledger and settlement.

Usage:
    from restaurant_ops.services.payment import PaymentReconciler

    reconciler = PaymentReconciler(order_service)
    result = await reconciler.record_payment(principal, order_id, amount)
"""

from restaurant_ops.services.payment.base import PaymentReceipt
from restaurant_ops.services.payment.reconciliation import PaymentReconciler

__all__ = [
    "PaymentReceipt",
    "PaymentReconciler",
]
