"""
Database helpers

Plain functions over an AsyncSession: lookups, pagination and the
configuration-entity writes (organizations, restaurants, roles, staff,
floor and menu). Authorization is not checked here; callers go through
the services, which run the tenant guard and evaluator first.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Generic, Mapping, Optional, Sequence, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from restaurant_ops.core.exceptions import NotFound, ValidationFailed
from restaurant_ops.models import (
    Dish,
    Menu,
    Organization,
    Restaurant,
    Role,
    Table,
    TableStatus,
    User,
)
from restaurant_ops.permissions.model import DEFAULT_ROLES, PermissionGrid

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


# =============================================================================
# PAGINATION
# =============================================================================

@dataclass
class Page(Generic[T]):
    """One page of a tenant-scoped listing."""
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.page > 1

    def meta(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
            "has_next_page": self.has_next_page,
            "has_previous_page": self.has_previous_page,
        }


def normalize_pagination(
    page: Optional[int],
    limit: Optional[int],
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> tuple[int, int]:
    """Clamp page to >= 1 and limit to [1, max_limit]."""
    page = max(page or DEFAULT_PAGE, 1)
    limit = min(max(limit or default_limit, 1), max_limit)
    return page, limit


async def paginate(
    session: AsyncSession,
    statement: Select,
    page: Optional[int] = None,
    limit: Optional[int] = None,
    max_limit: int = MAX_LIMIT,
) -> Page:
    """Run ``statement`` with offset/limit and a matching count query."""
    page, limit = normalize_pagination(page, limit, max_limit=max_limit)

    count_statement = select(func.count()).select_from(statement.order_by(None).subquery())
    total = (await session.execute(count_statement)).scalar() or 0

    result = await session.execute(statement.offset((page - 1) * limit).limit(limit))
    items = list(result.scalars().unique().all())
    return Page(items=items, total=total, page=page, limit=limit)


# =============================================================================
# LOOKUPS
# =============================================================================

async def get_or_404(session: AsyncSession, model: type, entity_id: int, label: Optional[str] = None):
    entity = await session.get(model, entity_id)
    if entity is None:
        raise NotFound(f"{label or model.__name__} #{entity_id} not found")
    return entity


async def get_user_with_role(session: AsyncSession, user_id: int) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_dishes(session: AsyncSession, dish_ids: Sequence[int]) -> dict[int, Dish]:
    if not dish_ids:
        return {}
    result = await session.execute(select(Dish).where(Dish.id.in_(set(dish_ids))))
    return {dish.id: dish for dish in result.scalars().unique().all()}


# =============================================================================
# ORGANIZATIONS & RESTAURANTS
# =============================================================================

async def create_organization(session: AsyncSession, name: str, description: Optional[str] = None) -> Organization:
    organization = Organization(name=name, description=description)
    session.add(organization)
    await session.flush()
    return organization


async def create_restaurant(
    session: AsyncSession,
    organization_id: int,
    name: str,
    address: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    settings: Optional[Mapping[str, Any]] = None,
    with_default_roles: bool = True,
) -> Restaurant:
    """Create a restaurant, provisioning the default roles unless told otherwise."""
    await get_or_404(session, Organization, organization_id)

    restaurant = Restaurant(
        organization_id=organization_id,
        name=name,
        address=address,
        phone=phone,
        email=email,
        settings=dict(settings or {}),
    )
    session.add(restaurant)
    await session.flush()

    if with_default_roles:
        for role_name, definition in DEFAULT_ROLES.items():
            await create_role(
                session,
                restaurant_id=restaurant.id,
                name=role_name,
                permissions=definition["permissions"],
                description=definition["description"],
                is_default=True,
            )
    logger.info(f"Restaurant #{restaurant.id} '{name}' created")
    return restaurant


# =============================================================================
# ROLES & USERS
# =============================================================================

async def create_role(
    session: AsyncSession,
    restaurant_id: int,
    name: str,
    permissions: Mapping[str, Any],
    description: Optional[str] = None,
    is_default: bool = False,
) -> Role:
    """
    Create a role after validating its permission grid.

    Raises:
        InvalidPermissionGrid: the grid names unknown resources/actions
    """
    grid = PermissionGrid.from_mapping(permissions)
    role = Role(
        restaurant_id=restaurant_id,
        name=name,
        description=description,
        is_default=is_default,
        permissions=grid.to_storage(),
    )
    session.add(role)
    await session.flush()
    return role


def set_role_permissions(role: Role, permissions: Mapping[str, Any]) -> PermissionGrid:
    """Replace a role's grid. The only way a stored grid changes."""
    grid = PermissionGrid.from_mapping(permissions)
    role.permissions = grid.to_storage()
    return grid


async def create_user(
    session: AsyncSession,
    restaurant_id: int,
    role_id: int,
    email: str,
    password_hash: str,
    first_name: str,
    last_name: str,
    phone: Optional[str] = None,
) -> User:
    role = await get_or_404(session, Role, role_id)
    if role.restaurant_id != restaurant_id:
        raise ValidationFailed("Role belongs to another restaurant", role_id=role_id)

    user = User(
        restaurant_id=restaurant_id,
        role_id=role_id,
        email=email,
        password_hash=password_hash,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
    )
    session.add(user)
    await session.flush()
    return user


# =============================================================================
# FLOOR & MENU
# =============================================================================

async def create_table(
    session: AsyncSession,
    restaurant_id: int,
    number: str,
    capacity: int,
    status: TableStatus = TableStatus.AVAILABLE,
) -> Table:
    if capacity < 1:
        raise ValidationFailed("Table capacity must be a positive integer", capacity=capacity)
    table = Table(restaurant_id=restaurant_id, number=number, capacity=capacity, status=status)
    session.add(table)
    await session.flush()
    return table


async def create_menu(
    session: AsyncSession,
    restaurant_id: int,
    name: str,
    description: Optional[str] = None,
    is_active: bool = True,
) -> Menu:
    menu = Menu(restaurant_id=restaurant_id, name=name, description=description, is_active=is_active)
    session.add(menu)
    await session.flush()
    return menu


async def create_dish(
    session: AsyncSession,
    menu_id: int,
    name: str,
    price: Decimal,
    category: Optional[str] = None,
    description: Optional[str] = None,
    is_available: bool = True,
) -> Dish:
    if Decimal(price) < 0:
        raise ValidationFailed("Dish price cannot be negative", price=str(price))
    dish = Dish(
        menu_id=menu_id,
        name=name,
        price=Decimal(price),
        category=category,
        description=description,
        is_available=is_available,
    )
    session.add(dish)
    await session.flush()
    # Load the menu relationship so the tenant of the new dish resolves without IO
    await session.refresh(dish, attribute_names=["menu"])
    return dish
