from dataclasses import dataclass, field
from decimal import Decimal

import pytest
from sqlalchemy import select

from restaurant_ops import crud
from restaurant_ops.core.config import Settings
from restaurant_ops.database import create_engine_from_settings, create_session_factory, init_db
from restaurant_ops.models import OrderStatus, Role
from restaurant_ops.permissions import AuthorizationEvaluator, PermissionGrid, Principal
from restaurant_ops.services.directory import DirectoryService
from restaurant_ops.services.notifications import MockNotificationService
from restaurant_ops.services.orders import OrderService
from restaurant_ops.services.payment import PaymentReconciler
from restaurant_ops.services.statistics import StatisticsService
from restaurant_ops.tenancy import TenantIsolationGuard

HOST_PERMISSIONS = {
    "tables": {"create": False, "read": True, "update": True, "delete": False},
}


@dataclass
class World:
    """Two restaurants of one organization, seeded for a test."""
    restaurant_id: int
    other_restaurant_id: int
    principals: dict[str, Principal] = field(default_factory=dict)
    user_ids: dict[str, int] = field(default_factory=dict)
    role_ids: dict[str, int] = field(default_factory=dict)
    tables: list[int] = field(default_factory=list)
    dishes: dict[str, int] = field(default_factory=dict)
    other_table: int = 0
    other_dish: int = 0
    other_role: int = 0

    @property
    def admin(self) -> Principal:
        return self.principals["admin"]

    @property
    def server(self) -> Principal:
        return self.principals["server"]

    @property
    def cook(self) -> Principal:
        return self.principals["cook"]

    @property
    def host(self) -> Principal:
        return self.principals["host"]

    @property
    def other_admin(self) -> Principal:
        return self.principals["other_admin"]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'restaurant_ops.db'}",
        realtime_notifications=False,
        ledger_export_enabled=False,
        data_directory=str(tmp_path / "data"),
    )


@pytest.fixture
async def engine(settings):
    engine = create_engine_from_settings(settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


async def _add_user(session, world: World, key: str, restaurant_id: int, role_id: int) -> None:
    user = await crud.create_user(
        session,
        restaurant_id=restaurant_id,
        role_id=role_id,
        email=f"{key}@example.com",
        password_hash="not-a-real-hash",
        first_name=key.title(),
        last_name="User",
    )
    role = await session.get(Role, role_id)
    world.user_ids[key] = user.id
    world.principals[key] = Principal(
        user_id=user.id,
        restaurant_id=restaurant_id,
        grid=PermissionGrid.from_storage(role.permissions),
        role_id=role_id,
    )


@pytest.fixture
async def world(session_factory) -> World:
    async with session_factory() as session:
        async with session.begin():
            organization = await crud.create_organization(session, "Restaurant Group Demo")
            restaurant = await crud.create_restaurant(session, organization.id, "Le Gourmet")
            other = await crud.create_restaurant(session, organization.id, "Chez Autre")
            world = World(restaurant_id=restaurant.id, other_restaurant_id=other.id)

            roles = (await session.execute(select(Role).order_by(Role.id))).scalars().all()
            for role in roles:
                if role.restaurant_id == restaurant.id:
                    world.role_ids[role.name] = role.id
                elif role.name == "Super Admin":
                    world.other_role = role.id
            host_role = await crud.create_role(session, restaurant.id, "Host", HOST_PERMISSIONS)
            world.role_ids["Host"] = host_role.id

            await _add_user(session, world, "admin", restaurant.id, world.role_ids["Super Admin"])
            await _add_user(session, world, "server", restaurant.id, world.role_ids["Server"])
            await _add_user(session, world, "cook", restaurant.id, world.role_ids["Cook"])
            await _add_user(session, world, "host", restaurant.id, host_role.id)
            await _add_user(session, world, "other_admin", other.id, world.other_role)

            for number, capacity in [("1", 2), ("2", 4), ("3", 6)]:
                table = await crud.create_table(session, restaurant.id, number, capacity)
                world.tables.append(table.id)
            world.other_table = (await crud.create_table(session, other.id, "1", 4)).id

            menu = await crud.create_menu(session, restaurant.id, "Menu Principal")
            for name, price, available in [
                ("Poulet Braisé", "2500", True),
                ("Poisson Grillé", "3000", True),
                ("Riz Sauce Tomate", "1500", True),
                ("Alloco", "500", True),
                ("Jus de Bissap", "500", False),
            ]:
                dish = await crud.create_dish(
                    session, menu.id, name, Decimal(price), category="Plats", is_available=available
                )
                world.dishes[name] = dish.id

            other_menu = await crud.create_menu(session, other.id, "Carte")
            world.other_dish = (await crud.create_dish(session, other_menu.id, "Burger", Decimal("4000"))).id
    return world


@pytest.fixture
def notifier() -> MockNotificationService:
    return MockNotificationService()


@pytest.fixture
def evaluator() -> AuthorizationEvaluator:
    return AuthorizationEvaluator()


@pytest.fixture
def guard() -> TenantIsolationGuard:
    return TenantIsolationGuard()


@pytest.fixture
def order_service(session_factory, evaluator, guard, notifier) -> OrderService:
    return OrderService(session_factory, evaluator, guard, notifier=notifier)


@pytest.fixture
def reconciler(order_service) -> PaymentReconciler:
    return PaymentReconciler(order_service)


@pytest.fixture
def directory(session_factory, evaluator, guard) -> DirectoryService:
    return DirectoryService(session_factory, evaluator, guard)


@pytest.fixture
def statistics_service(session_factory, evaluator) -> StatisticsService:
    return StatisticsService(session_factory, evaluator)


@pytest.fixture
def served_order(order_service, world):
    """Factory placing an order and walking it to SERVED. Returns the order id."""

    async def factory(items=None, table_index: int = 0) -> int:
        items = items or [{"dish_id": world.dishes["Poisson Grillé"], "quantity": 1}]
        order = (await order_service.place_order(world.server, world.tables[table_index], items)).unwrap()
        (await order_service.transition_order(world.cook, order.id, OrderStatus.PREPARING)).unwrap()
        (await order_service.transition_order(world.cook, order.id, OrderStatus.READY)).unwrap()
        (await order_service.transition_order(world.server, order.id, OrderStatus.SERVED)).unwrap()
        return order.id

    return factory

