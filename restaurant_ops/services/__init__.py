"""
                        Services Module

Business logic behind the HTTP layer. Every public service method takes
the acting Principal, runs the tenant guard and permission check, and
returns an OperationResult.

Services:
    - orders: order placement, item edits and the status state machine
    - payment: payment ledger and settlement
    - directory: roles, tables and dishes
    - statistics: per-restaurant aggregates
    - notifications: order event publishing (WebSocket or mock)
    - excel_manager: file-locked Excel ledger of settled orders
"""

from restaurant_ops.services.directory import DirectoryService
from restaurant_ops.services.excel_manager import ExcelManager
from restaurant_ops.services.orders import OrderService
from restaurant_ops.services.payment import PaymentReconciler
from restaurant_ops.services.statistics import StatisticsService

__all__ = [
    "DirectoryService",
    "ExcelManager",
    "OrderService",
    "PaymentReconciler",
    "StatisticsService",
]
