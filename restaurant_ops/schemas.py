"""
Pydantic Schemas for Request/Response Validation

Request bodies are validated here before they reach the services; the
permission grid is the exception, it is validated by PermissionGrid so
the error names the offending resource/action.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from restaurant_ops.crud import Page
from restaurant_ops.models import OrderStatus, PaymentMethod, TableStatus

T = TypeVar("T")


# =============================================================================
# PAGINATION
# =============================================================================

class PaginationMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class PaginatedResponse(BaseModel, Generic[T]):
    """List endpoint envelope: current page plus pagination metadata."""
    data: List[T]
    meta: PaginationMeta

    @classmethod
    def from_page(cls, page: Page, item_schema: type[BaseModel]) -> "PaginatedResponse":
        return cls(
            data=[item_schema.model_validate(item) for item in page.items],
            meta=PaginationMeta(**page.meta()),
        )


# =============================================================================
# ORDER REQUESTS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single line in an order."""
    dish_id: int = Field(..., ge=1, examples=[1])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    notes: Optional[str] = Field(None, max_length=200, examples=["No chili"])


class OrderCreate(BaseModel):
    """Request schema for placing a new order."""
    table_id: int = Field(..., ge=1, examples=[1])
    items: List[OrderItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=500)


class OrderTransitionRequest(BaseModel):
    status: OrderStatus = Field(..., examples=["PREPARING"])


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, examples=["2500.00"])
    method: PaymentMethod = Field(default=PaymentMethod.CASH)


# =============================================================================
# ORDER RESPONSES
# =============================================================================

class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    dish_id: int
    dish_name: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    amount: Decimal
    method: PaymentMethod
    recorded_by_id: Optional[int] = None
    created_at: datetime


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    table_id: int
    status: OrderStatus
    notes: Optional[str] = None
    created_by_id: Optional[int] = None
    version: int
    items: List[OrderItemResponse]
    total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    surplus: Decimal
    created_at: datetime
    updated_at: Optional[datetime] = None
    status_changed_at: datetime
    closed_at: Optional[datetime] = None


class PaymentReceiptResponse(BaseModel):
    """Response after recording a payment."""
    model_config = ConfigDict(from_attributes=True)

    payment: PaymentResponse
    order_status: OrderStatus
    order_total: Decimal
    total_paid: Decimal
    balance_due: Decimal
    surplus: Decimal
    settled: bool


# =============================================================================
# ROLES
# =============================================================================

class RoleCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100, examples=["Bartender"])
    description: Optional[str] = Field(None, max_length=500)
    permissions: dict[str, Any] = Field(
        ...,
        examples=[{"orders": {"create": True, "read": True, "update": False, "delete": False}}],
    )


class RolePermissionsUpdate(BaseModel):
    permissions: dict[str, Any]


class RoleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    restaurant_id: int
    name: str
    description: Optional[str] = None
    is_default: bool
    permissions: dict[str, Any]


# =============================================================================
# TABLES & DISHES
# =============================================================================

class TableResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    restaurant_id: int
    number: str
    capacity: int
    status: TableStatus


class TableStatusUpdate(BaseModel):
    status: TableStatus


class DishResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    menu_id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    category: Optional[str] = None
    is_available: bool


class DishUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    category: Optional[str] = Field(None, max_length=100)
    is_available: Optional[bool] = None


# =============================================================================
# STATISTICS
# =============================================================================

class TopDish(BaseModel):
    dish_id: int
    name: str
    quantity: int
    revenue: Decimal


class StatisticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    restaurant_id: int
    start: datetime
    end: datetime
    order_count: int
    orders_by_status: dict[str, int]
    revenue: Decimal
    payment_count: int
    paid_order_count: int
    average_order_value: Decimal
    top_dishes: List[TopDish]


# =============================================================================
# GENERIC
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    notification_service: str
    timestamp: datetime
