"""
SQLAlchemy Database Models

Multi-tenant restaurant schema:
- Organization owns Restaurants
- Restaurant is the tenant boundary for Roles, Users, Tables and Menus
- Orders hang off a Table; OrderItems and Payments hang off an Order

Payments are append-only. Orders carry a version counter so two writers
can never both commit a change to the same aggregate.
"""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import relationship

from restaurant_ops.database import Base

MONEY = Numeric(12, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TableStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    RESERVED = "RESERVED"


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"


# =============================================================================
# TENANCY
# =============================================================================

class Organization(Base):
    """Top-level tenant grouping."""
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    restaurants = relationship("Restaurant", back_populates="organization")

    def __repr__(self):
        return f"<Organization #{self.id} - {self.name}>"


class Restaurant(Base):
    """Tenant boundary for all operational data."""
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    address = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    email = Column(String(255), nullable=True)
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    organization = relationship("Organization", back_populates="restaurants")

    def __repr__(self):
        return f"<Restaurant #{self.id} - {self.name}>"


# =============================================================================
# STAFF
# =============================================================================

class Role(Base):
    """
    Restaurant role with its permission grid.

    ``permissions`` holds the JSON form of a PermissionGrid; it is only
    written through the role create/update operations, which validate it.
    """
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)
    permissions = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Role #{self.id} - {self.name}>"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(30), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    role = relationship("Role", lazy="joined")

    def __repr__(self):
        return f"<User #{self.id} - {self.email}>"


# =============================================================================
# FLOOR & MENU
# =============================================================================

class Table(Base):
    __tablename__ = "tables"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    number = Column(String(20), nullable=False)
    capacity = Column(Integer, nullable=False)
    status = Column(Enum(TableStatus), default=TableStatus.AVAILABLE, nullable=False)

    def __repr__(self):
        return f"<Table {self.number} - {getattr(self.status, 'value', self.status)}>"


class Menu(Base):
    __tablename__ = "menus"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    dishes = relationship("Dish", back_populates="menu")


class Dish(Base):
    __tablename__ = "dishes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    menu_id = Column(Integer, ForeignKey("menus.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(MONEY, nullable=False)
    category = Column(String(100), nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)

    menu = relationship("Menu", back_populates="dishes", lazy="joined")

    def __repr__(self):
        return f"<Dish #{self.id} - {self.name} - {self.price}>"


# =============================================================================
# ORDERS
# =============================================================================

class Order(Base):
    """
    Order aggregate root.

    Items and payments are always loaded with the order; the owning table
    is joined so the tenant can be resolved without extra queries.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    status_changed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    table = relationship("Table", lazy="joined")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy="selectin",
    )
    payments = relationship(
        "Payment",
        back_populates="order",
        cascade="save-update, merge",
        order_by="Payment.id",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def total(self) -> Decimal:
        return sum((item.subtotal for item in self.items), Decimal("0"))

    @property
    def amount_paid(self) -> Decimal:
        return sum((Decimal(p.amount) for p in self.payments), Decimal("0"))

    @property
    def balance_due(self) -> Decimal:
        return max(self.total - self.amount_paid, Decimal("0"))

    @property
    def surplus(self) -> Decimal:
        return max(self.amount_paid - self.total, Decimal("0"))

    @property
    def is_settled(self) -> bool:
        return self.amount_paid >= self.total

    def __repr__(self):
        return f"<Order #{self.id} - table {self.table_id} - {getattr(self.status, 'value', self.status)}>"


class OrderItem(Base):
    """Line item with the dish name and price captured at order time."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    dish_id = Column(Integer, ForeignKey("dishes.id"), nullable=False, index=True)
    dish_name = Column(String(150), nullable=False)
    unit_price = Column(MONEY, nullable=False)
    quantity = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    order = relationship("Order", back_populates="items")

    @property
    def subtotal(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity


class Payment(Base):
    """Append-only payment ledger entry."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    recorded_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    amount = Column(MONEY, nullable=False)
    method = Column(Enum(PaymentMethod), default=PaymentMethod.CASH, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    order = relationship("Order", back_populates="payments")

    def __repr__(self):
        return f"<Payment #{self.id} - order {self.order_id} - {self.amount}>"


@event.listens_for(Payment, "before_update")
def _reject_payment_update(mapper, connection, target):
    raise ValueError(f"Payment #{target.id} is append-only and cannot be modified")


@event.listens_for(Payment, "before_delete")
def _reject_payment_delete(mapper, connection, target):
    raise ValueError(f"Payment #{target.id} is append-only and cannot be deleted")
