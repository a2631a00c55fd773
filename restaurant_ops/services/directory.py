"""
Directory Service

Configuration entities of a restaurant: roles and their permission grids,
tables and dishes. Same contract as the order service: tenant guard and
permission check before anything is touched, one transaction per call,
OperationResult out.

Roles have no resource of their own in the permission vocabulary; managing
them is governed by the ``users`` resource.
"""

import logging
from decimal import Decimal, DecimalException
from typing import Any, Awaitable, Callable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from restaurant_ops import crud
from restaurant_ops.core.exceptions import (
    InvalidPermissionSpec,
    OperationResult,
    RestaurantOpsError,
    ValidationFailed,
)
from restaurant_ops.models import Dish, Menu, Role, Table, TableStatus
from restaurant_ops.permissions.evaluator import AuthorizationEvaluator, Principal
from restaurant_ops.permissions.model import parse_permissions
from restaurant_ops.tenancy import TenantIsolationGuard

logger = logging.getLogger(__name__)

READ_ROLES = parse_permissions(["users.read"])
CREATE_ROLES = parse_permissions(["users.create"])
UPDATE_ROLES = parse_permissions(["users.update"])
READ_TABLES = parse_permissions(["tables.read"])
UPDATE_TABLES = parse_permissions(["tables.update"])
READ_MENU = parse_permissions(["menu.read"])
UPDATE_MENU = parse_permissions(["menu.update"])

DISH_FIELDS = ("name", "description", "price", "category", "is_available")
REQUIRED_DISH_FIELDS = ("name", "price", "is_available")


class DirectoryService:
    """Tenant-scoped access to roles, tables and dishes."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        evaluator: AuthorizationEvaluator,
        guard: TenantIsolationGuard,
        max_page_size: int = crud.MAX_LIMIT,
    ):
        self.session_factory = session_factory
        self.evaluator = evaluator
        self.guard = guard
        self.max_page_size = max_page_size

    async def _run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[Any]],
    ) -> OperationResult:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    value = await work(session)
        except InvalidPermissionSpec:
            raise
        except RestaurantOpsError as e:
            logger.info(f"{operation} rejected: {e.code.value} - {e.message}")
            return OperationResult.fail(e)
        return OperationResult.ok(value)

    # =========================================================================
    # ROLES
    # =========================================================================

    async def list_roles(
        self,
        principal: Optional[Principal],
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> OperationResult[crud.Page[Role]]:
        async def work(session: AsyncSession):
            self.evaluator.require(principal, READ_ROLES)
            statement = self.guard.scope(select(Role), Role, principal).order_by(Role.id)
            return await crud.paginate(session, statement, page, limit, max_limit=self.max_page_size)

        return await self._run("list_roles", work)

    async def create_role(
        self,
        principal: Optional[Principal],
        name: str,
        permissions: Mapping[str, Any],
        description: Optional[str] = None,
    ) -> OperationResult[Role]:
        async def work(session: AsyncSession):
            self.evaluator.require(principal, CREATE_ROLES)
            role = await crud.create_role(
                session,
                restaurant_id=principal.restaurant_id,
                name=name,
                permissions=permissions,
                description=description,
            )
            logger.info(f"Role #{role.id} '{name}' created by user #{principal.user_id}")
            return role

        return await self._run("create_role", work)

    async def update_role_permissions(
        self,
        principal: Optional[Principal],
        role_id: int,
        permissions: Mapping[str, Any],
    ) -> OperationResult[Role]:
        async def work(session: AsyncSession):
            role = await session.get(Role, role_id)
            self.guard.ensure_found(principal, role, "Role", role_id)
            self.evaluator.require(principal, UPDATE_ROLES)
            grid = crud.set_role_permissions(role, permissions)
            await session.flush()
            logger.info(
                f"Role #{role.id} permissions replaced by user #{principal.user_id}: {grid.granted()}"
            )
            return role

        return await self._run("update_role_permissions", work)

    # =========================================================================
    # TABLES
    # =========================================================================

    async def list_tables(
        self,
        principal: Optional[Principal],
        page: Optional[int] = None,
        limit: Optional[int] = None,
        status: Optional[TableStatus] = None,
    ) -> OperationResult[crud.Page[Table]]:
        async def work(session: AsyncSession):
            self.evaluator.require(principal, READ_TABLES)
            statement = self.guard.scope(select(Table), Table, principal).order_by(Table.id)
            if status is not None:
                statement = statement.where(Table.status == TableStatus(status))
            return await crud.paginate(session, statement, page, limit, max_limit=self.max_page_size)

        return await self._run("list_tables", work)

    async def set_table_status(
        self,
        principal: Optional[Principal],
        table_id: int,
        status: TableStatus,
    ) -> OperationResult[Table]:
        async def work(session: AsyncSession):
            table = await session.get(Table, table_id)
            self.guard.ensure_found(principal, table, "Table", table_id)
            self.evaluator.require(principal, UPDATE_TABLES)
            table.status = TableStatus(status)
            await session.flush()
            return table

        return await self._run("set_table_status", work)

    # =========================================================================
    # DISHES
    # =========================================================================

    async def list_dishes(
        self,
        principal: Optional[Principal],
        page: Optional[int] = None,
        limit: Optional[int] = None,
        available_only: bool = False,
    ) -> OperationResult[crud.Page[Dish]]:
        async def work(session: AsyncSession):
            self.evaluator.require(principal, READ_MENU)
            statement = (
                select(Dish)
                .join(Menu, Dish.menu_id == Menu.id)
                .where(Menu.restaurant_id == principal.restaurant_id)
                .order_by(Dish.category, Dish.name, Dish.id)
            )
            if available_only:
                statement = statement.where(Dish.is_available.is_(True))
            return await crud.paginate(session, statement, page, limit, max_limit=self.max_page_size)

        return await self._run("list_dishes", work)

    async def update_dish(
        self,
        principal: Optional[Principal],
        dish_id: int,
        changes: Mapping[str, Any],
    ) -> OperationResult[Dish]:
        """
        Update dish fields. Existing order lines keep the price they were
        placed with.
        """
        async def work(session: AsyncSession):
            dish = await session.get(Dish, dish_id)
            self.guard.ensure_found(principal, dish, "Dish", dish_id)
            self.evaluator.require(principal, UPDATE_MENU)

            updates = _dish_updates(changes)
            for key, value in updates.items():
                setattr(dish, key, value)
            await session.flush()
            return dish

        return await self._run("update_dish", work)


def _dish_updates(changes: Mapping[str, Any]) -> dict[str, Any]:
    updates = dict(changes)

    unknown = set(updates) - set(DISH_FIELDS)
    if unknown:
        raise ValidationFailed(f"Unknown dish fields: {sorted(unknown)}")

    cleared = [key for key in REQUIRED_DISH_FIELDS if key in updates and updates[key] is None]
    if cleared:
        raise ValidationFailed(f"Dish fields cannot be null: {cleared}")

    if "price" in updates:
        try:
            price = Decimal(str(updates["price"]))
        except DecimalException:
            raise ValidationFailed(f"Invalid dish price {updates['price']!r}")
        if not price.is_finite() or price < 0:
            raise ValidationFailed("Dish price cannot be negative")
        updates["price"] = price

    return updates
