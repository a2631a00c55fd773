"""
Order Service

Entry point for everything that reads or changes an order. Each mutating
call is one unit of work over the order aggregate (order, items,
payments):

    1. take the per-order lock
    2. open a transaction and load the aggregate (row-locked where the
       database supports it)
    3. run the tenant guard, then the permission check
    4. apply the change and commit (the version counter rejects a
       concurrent writer from another process)
    5. publish order events, outside the lock, ignoring failures

Any error raised before the commit rolls the transaction back, so a
denied or invalid request leaves no trace except its log line.

Public methods never raise domain errors; they return OperationResult.
InvalidPermissionSpec is the exception, it signals a programming error.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterable, Mapping, Optional, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from restaurant_ops import crud
from restaurant_ops.core.exceptions import (
    ConcurrentModification,
    InvalidPermissionSpec,
    NotFound,
    OperationResult,
    RestaurantOpsError,
    ValidationFailed,
)
from restaurant_ops.models import (
    Order,
    OrderItem,
    OrderStatus,
    Table,
    TableStatus,
    utcnow,
)
from restaurant_ops.permissions.evaluator import AuthorizationEvaluator, Principal
from restaurant_ops.permissions.model import parse_permissions
from restaurant_ops.services.notifications.base import BaseNotificationService, OrderEvent
from restaurant_ops.services.orders.locks import OrderLockRegistry
from restaurant_ops.services.orders.state_machine import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    OrderStateMachine,
    Transition,
)
from restaurant_ops.tenancy import TenantIsolationGuard

logger = logging.getLogger(__name__)

T = TypeVar("T")

PLACE_ORDER = parse_permissions(["orders.create"])
READ_ORDERS = parse_permissions(["orders.read"])
EDIT_ITEMS = parse_permissions(["orders.update"])


@dataclass
class UnitOutcome(Generic[T]):
    """Value produced inside a unit of work plus the events to publish after commit."""
    value: T
    events: list[OrderEvent] = field(default_factory=list)


OrderHandler = Callable[[AsyncSession, Order, int], Awaitable[UnitOutcome]]


class OrderService:
    """
    Places orders and drives them through the state machine.

    Args:
        session_factory: Async session factory bound to the database
        evaluator: Permission checks
        guard: Tenant checks
        notifier: Order event publisher (optional)
        state_machine: Transition rules
        locks: Per-order lock registry
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        evaluator: AuthorizationEvaluator,
        guard: TenantIsolationGuard,
        notifier: Optional[BaseNotificationService] = None,
        state_machine: Optional[OrderStateMachine] = None,
        locks: Optional[OrderLockRegistry] = None,
        max_page_size: int = crud.MAX_LIMIT,
    ):
        self.session_factory = session_factory
        self.evaluator = evaluator
        self.guard = guard
        self.notifier = notifier
        self.state_machine = state_machine or OrderStateMachine()
        self.locks = locks or OrderLockRegistry()
        self.max_page_size = max_page_size

    # =========================================================================
    # UNIT OF WORK
    # =========================================================================

    async def load_order(self, session: AsyncSession, order_id: int, for_update: bool = False) -> Optional[Order]:
        statement = select(Order).where(Order.id == order_id)
        if for_update:
            statement = statement.with_for_update(of=Order)
        result = await session.execute(statement)
        return result.unique().scalar_one_or_none()

    async def load_guarded(
        self,
        session: AsyncSession,
        principal: Optional[Principal],
        order_id: int,
        for_update: bool = False,
    ) -> tuple[Order, int]:
        """Load an order and run the tenant guard; a missing id is refused like a foreign one."""
        order = await self.load_order(session, order_id, for_update=for_update)
        restaurant_id = self.guard.ensure_found(principal, order, "Order", order_id)
        return order, restaurant_id

    async def run_order_unit(
        self,
        principal: Optional[Principal],
        order_id: int,
        handler: OrderHandler,
        operation: str,
    ) -> OperationResult:
        """
        Run ``handler`` as one serialized unit of work on an order.

        The tenant guard runs before the handler; the handler performs its
        own permission check since the requirement can depend on state.
        """
        try:
            async with self.locks.hold(order_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        order, restaurant_id = await self.load_guarded(
                            session, principal, order_id, for_update=True
                        )
                        outcome = await handler(session, order, restaurant_id)
        except StaleDataError:
            logger.warning(f"{operation}: order #{order_id} changed concurrently")
            return OperationResult.fail(ConcurrentModification(
                f"Order #{order_id} was modified concurrently, retry the request",
                order_id=order_id,
            ))
        except InvalidPermissionSpec:
            raise
        except RestaurantOpsError as e:
            logger.info(f"{operation} rejected for order #{order_id}: {e.code.value} - {e.message}")
            return OperationResult.fail(e)

        await self._publish(outcome.events)
        return OperationResult.ok(outcome.value)

    async def _publish(self, events: Iterable[OrderEvent]) -> None:
        if self.notifier is None:
            return
        for event in events:
            try:
                result = await self.notifier.publish_order_event(event)
                if not result.success:
                    logger.warning(
                        f"Order event for #{event.order_id} not fully delivered: {result.error_message}"
                    )
            except Exception:
                logger.exception(f"Failed to publish event for order #{event.order_id}")

    # =========================================================================
    # STATE TRANSITIONS
    # =========================================================================

    async def transition_order(
        self,
        principal: Optional[Principal],
        order_id: int,
        target_status: OrderStatus,
    ) -> OperationResult[Order]:
        """Move an order to ``target_status`` if the edge exists and is permitted."""
        try:
            target_status = _status(target_status)
        except ValidationFailed as e:
            return OperationResult.fail(e)

        async def handler(session: AsyncSession, order: Order, restaurant_id: int) -> UnitOutcome:
            transition = self.state_machine.transition_for(order.status, target_status)
            self.evaluator.require(principal, [transition.permission])
            event = await self.apply_transition(session, order, transition, restaurant_id, principal)
            return UnitOutcome(order, [event])

        return await self.run_order_unit(principal, order_id, handler, "transition")

    async def apply_transition(
        self,
        session: AsyncSession,
        order: Order,
        transition: Transition,
        restaurant_id: int,
        principal: Optional[Principal],
    ) -> OrderEvent:
        """Write a validated transition inside the current unit of work."""
        previous = self.state_machine.apply(order, transition)
        if transition.target in TERMINAL_STATUSES:
            await self._release_table(session, order)

        logger.info(
            f"Order #{order.id}: {previous.value} -> {order.status.value} "
            f"(user={principal.user_id if principal else None})"
        )
        return OrderEvent.from_order(
            order,
            restaurant_id=restaurant_id,
            previous_status=previous,
            triggered_by=principal.user_id if principal else None,
        )

    async def _release_table(self, session: AsyncSession, order: Order) -> None:
        table = order.table
        if table is None or table.status != TableStatus.OCCUPIED:
            return

        result = await session.execute(
            select(func.count(Order.id)).where(
                Order.table_id == table.id,
                Order.id != order.id,
                Order.status.in_(list(OPEN_STATUSES)),
            )
        )
        if not result.scalar():
            table.status = TableStatus.AVAILABLE
            logger.debug(f"Table {table.number} released")

    # =========================================================================
    # PLACEMENT & ITEMS
    # =========================================================================

    async def place_order(
        self,
        principal: Optional[Principal],
        table_id: int,
        items: Sequence[Any],
        notes: Optional[str] = None,
    ) -> OperationResult[Order]:
        """
        Open a new PENDING order on a table.

        ``items`` is a sequence of objects (or mappings) with ``dish_id``,
        ``quantity`` and optional ``notes``.
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    table = await session.get(Table, table_id)
                    restaurant_id = self.guard.ensure_found(principal, table, "Table", table_id)
                    self.evaluator.require(principal, PLACE_ORDER)

                    lines = [_line(item) for item in items or ()]
                    if not lines:
                        raise ValidationFailed("An order needs at least one item")

                    order = Order(
                        table=table,
                        created_by_id=principal.user_id,
                        status=OrderStatus.PENDING,
                        notes=notes,
                        items=[],
                        payments=[],
                    )
                    dishes = await crud.get_dishes(session, [dish_id for dish_id, _, _ in lines])
                    for dish_id, quantity, line_notes in lines:
                        order.items.append(
                            self._snapshot_item(principal, dishes, dish_id, quantity, line_notes)
                        )

                    session.add(order)
                    table.status = TableStatus.OCCUPIED
                    await session.flush()
        except InvalidPermissionSpec:
            raise
        except RestaurantOpsError as e:
            logger.info(f"place_order rejected on table #{table_id}: {e.code.value} - {e.message}")
            return OperationResult.fail(e)

        logger.info(f"Order #{order.id} placed on table {table.number} (total={order.total})")
        await self._publish([
            OrderEvent.from_order(order, restaurant_id, None, principal.user_id)
        ])
        return OperationResult.ok(order)

    def _snapshot_item(
        self,
        principal: Principal,
        dishes: dict,
        dish_id: int,
        quantity: int,
        notes: Optional[str],
    ) -> OrderItem:
        if quantity < 1:
            raise ValidationFailed("Quantity must be a positive integer", dish_id=dish_id, quantity=quantity)

        self.guard.ensure_found(principal, dishes.get(dish_id), "Dish", dish_id)
        dish = dishes[dish_id]
        if not dish.is_available:
            raise ValidationFailed(f"{dish.name} is not available", dish_id=dish_id)

        return OrderItem(
            dish_id=dish.id,
            dish_name=dish.name,
            unit_price=dish.price,
            quantity=quantity,
            notes=notes,
        )

    async def add_item(
        self,
        principal: Optional[Principal],
        order_id: int,
        dish_id: int,
        quantity: int,
        notes: Optional[str] = None,
    ) -> OperationResult[Order]:
        """Append a line to an order that is still PENDING or PREPARING."""

        async def handler(session: AsyncSession, order: Order, restaurant_id: int) -> UnitOutcome:
            self.evaluator.require(principal, EDIT_ITEMS)
            self.state_machine.ensure_items_editable(order)

            line_dish_id, line_quantity, line_notes = _line(
                {"dish_id": dish_id, "quantity": quantity, "notes": notes}
            )
            dishes = await crud.get_dishes(session, [line_dish_id])
            order.items.append(
                self._snapshot_item(principal, dishes, line_dish_id, line_quantity, line_notes)
            )
            order.updated_at = utcnow()
            return UnitOutcome(order)

        return await self.run_order_unit(principal, order_id, handler, "add_item")

    async def remove_item(
        self,
        principal: Optional[Principal],
        order_id: int,
        item_id: int,
    ) -> OperationResult[Order]:
        """Drop a line from an order that is still PENDING or PREPARING."""

        async def handler(session: AsyncSession, order: Order, restaurant_id: int) -> UnitOutcome:
            self.evaluator.require(principal, EDIT_ITEMS)
            self.state_machine.ensure_items_editable(order)

            item = next((i for i in order.items if i.id == item_id), None)
            if item is None:
                raise NotFound(f"Item #{item_id} not found on order #{order_id}", item_id=item_id)
            order.items.remove(item)
            order.updated_at = utcnow()
            return UnitOutcome(order)

        return await self.run_order_unit(principal, order_id, handler, "remove_item")

    # =========================================================================
    # READS
    # =========================================================================

    async def get_order(self, principal: Optional[Principal], order_id: int) -> OperationResult[Order]:
        try:
            async with self.session_factory() as session:
                order, _ = await self.load_guarded(session, principal, order_id)
                self.evaluator.require(principal, READ_ORDERS)
        except InvalidPermissionSpec:
            raise
        except RestaurantOpsError as e:
            return OperationResult.fail(e)
        return OperationResult.ok(order)

    async def list_orders(
        self,
        principal: Optional[Principal],
        page: Optional[int] = None,
        limit: Optional[int] = None,
        status: Optional[OrderStatus] = None,
    ) -> OperationResult[crud.Page[Order]]:
        """Newest-first listing of the principal's restaurant orders."""
        try:
            self.evaluator.require(principal, READ_ORDERS)
            statement = self.guard.scope_orders(select(Order), principal).order_by(
                Order.created_at.desc(), Order.id.desc()
            )
            if status is not None:
                statement = statement.where(Order.status == _status(status))

            async with self.session_factory() as session:
                result = await crud.paginate(session, statement, page, limit, max_limit=self.max_page_size)
        except InvalidPermissionSpec:
            raise
        except RestaurantOpsError as e:
            return OperationResult.fail(e)
        return OperationResult.ok(result)


def _status(value: Any) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationFailed(
            f"Unknown order status {value!r}",
            allowed=[s.value for s in OrderStatus],
        )


def _line(item: Any) -> tuple[int, int, Optional[str]]:
    try:
        if isinstance(item, Mapping):
            return int(item["dish_id"]), int(item["quantity"]), item.get("notes")
        return int(item.dish_id), int(item.quantity), getattr(item, "notes", None)
    except (KeyError, AttributeError, TypeError, ValueError):
        raise ValidationFailed(f"Invalid order item {item!r}, expected dish_id and quantity")
