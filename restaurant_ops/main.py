"""
FastAPI Application Entry Point

Restaurant Management API - multi-tenant order lifecycle backend.

The caller is identified by the ``X-User-Id`` header, set by the
authentication gateway in front of this service. Every route resolves it
to a Principal (user, restaurant, role grid) and hands it to a service;
services return OperationResult and domain errors are rendered by the
exception handlers at the bottom of this module.

Endpoints:
    - POST /api/orders: Place an order
    - GET /api/orders: List orders
    - POST /api/orders/{id}/transitions: Change order status
    - POST /api/orders/{id}/payments: Record a payment
    - GET/POST/PUT /api/roles: Role and permission grid management
    - GET/PATCH /api/tables, /api/dishes: Floor and menu
    - GET /api/statistics: Revenue and order aggregates
    - WS /ws/orders: Realtime order events
    - GET /health: System health check

Version: 1.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from restaurant_ops import crud
from restaurant_ops.core.config import Settings, get_settings, setup_logging
from restaurant_ops.core.exceptions import (
    ErrorCode,
    Forbidden,
    OperationResult,
    RestaurantOpsError,
)
from restaurant_ops.database import create_engine_from_settings, create_session_factory, init_db
from restaurant_ops.models import OrderStatus, TableStatus
from restaurant_ops.permissions import AuthorizationEvaluator, PermissionGrid, Principal
from restaurant_ops.schemas import (
    DishResponse,
    DishUpdate,
    ErrorResponse,
    HealthResponse,
    OrderCreate,
    OrderItemCreate,
    OrderResponse,
    OrderTransitionRequest,
    PaginatedResponse,
    PaymentCreate,
    PaymentReceiptResponse,
    PaymentResponse,
    RoleCreate,
    RolePermissionsUpdate,
    RoleResponse,
    StatisticsResponse,
    TableResponse,
    TableStatusUpdate,
)
from restaurant_ops.services.directory import DirectoryService
from restaurant_ops.services.excel_manager import ExcelManager
from restaurant_ops.services.notifications import (
    BaseNotificationService,
    WebSocketNotificationService,
    build_notification_service,
)
from restaurant_ops.services.orders import OrderService
from restaurant_ops.services.orders.service import READ_ORDERS
from restaurant_ops.services.payment import PaymentReceipt, PaymentReconciler
from restaurant_ops.services.statistics import StatisticsService
from restaurant_ops.tasks import export_settled_order
from restaurant_ops.tenancy import TenantIsolationGuard

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


# =============================================================================
# SERVICE CONTAINER
# =============================================================================

@dataclass
class ServiceContainer:
    """Everything a request needs, built once per application."""
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    evaluator: AuthorizationEvaluator
    guard: TenantIsolationGuard
    notifier: BaseNotificationService
    orders: OrderService
    payments: PaymentReconciler
    directory: DirectoryService
    statistics: StatisticsService

    @classmethod
    def build(cls, settings: Settings) -> "ServiceContainer":
        engine = create_engine_from_settings(settings)
        session_factory = create_session_factory(engine)
        evaluator = AuthorizationEvaluator()
        guard = TenantIsolationGuard()
        notifier = build_notification_service(settings)
        orders = OrderService(
            session_factory,
            evaluator,
            guard,
            notifier=notifier,
            max_page_size=settings.max_page_size,
        )
        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            evaluator=evaluator,
            guard=guard,
            notifier=notifier,
            orders=orders,
            payments=PaymentReconciler(orders),
            directory=DirectoryService(
                session_factory, evaluator, guard, max_page_size=settings.max_page_size
            ),
            statistics=StatisticsService(session_factory, evaluator),
        )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


async def load_principal(container: ServiceContainer, user_id: int) -> Optional[Principal]:
    """Resolve a user id to a Principal carrying its role grid."""
    async with container.session_factory() as session:
        user = await crud.get_user_with_role(session, user_id)

    if user is None or not user.is_active:
        return None

    grid = PermissionGrid.from_storage(user.role.permissions) if user.role else None
    return Principal(
        user_id=user.id,
        restaurant_id=user.restaurant_id,
        grid=grid,
        role_id=user.role_id,
    )


async def get_principal(
    container: ServiceContainer = Depends(get_container),
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
) -> Principal:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")

    principal = await load_principal(container, x_user_id)
    if principal is None:
        raise HTTPException(status_code=401, detail="Unknown or inactive user")
    return principal


def unwrap(result: OperationResult) -> Any:
    """Return the value of a successful result; raise its error otherwise."""
    return result.unwrap()


def export_to_ledger(settings: Settings, receipt: PaymentReceipt) -> None:
    """Queue a settled order for the Excel ledger worker."""
    if not (settings.ledger_export_enabled and receipt.settled):
        return

    try:
        export_settled_order.delay(ExcelManager.order_row(receipt.order))
        logger.info(f"Order #{receipt.order.id} queued for ledger export")
    except Exception as e:
        logger.error(f"Could not queue ledger export for order #{receipt.order.id}: {e}")


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application for ``settings`` (cached settings by default)."""
    settings = settings or get_settings()
    setup_logging(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application startup and shutdown events.
        """
        # Startup
        logger.info("=" * 60)
        logger.info(f"Starting {settings.app_name}")
        logger.info(f"   Version: {settings.app_version}")
        logger.info(f"   Environment: {settings.env_mode.value}")
        logger.info(f"   Debug: {settings.debug}")
        logger.info("=" * 60)

        problems = settings.validate_production_config()
        if problems:
            logger.warning(f"Production config problems: {problems}")

        container = ServiceContainer.build(settings)
        if settings.auto_create_schema:
            await init_db(container.engine)
            logger.info("Database initialized")

        logger.info(f"Notification Service: {container.notifier.provider_name}")
        logger.info(f"Ledger export: {'enabled' if settings.ledger_export_enabled else 'disabled'}")
        app.state.container = container

        logger.info("Application ready")

        yield  # Application runs

        # Shutdown
        logger.info("Shutting down...")
        await container.engine.dispose()
        logger.info("Cleanup complete")

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Multi-tenant restaurant backend: role-based permissions, tenant "
            "isolation and a concurrency-safe order and payment lifecycle."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app, settings)
    register_error_handlers(app, settings)
    return app


# =============================================================================
# ROUTES
# =============================================================================

def register_routes(app: FastAPI, settings: Settings) -> None:

    # -------------------------------------------------------------------------
    # Root & health
    # -------------------------------------------------------------------------

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """API root with navigation links."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "environment": settings.env_mode.value,
            "documentation": "/docs",
            "health": "/health",
        }

    async def check_database(container: ServiceContainer) -> str:
        try:
            async with container.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return "healthy"
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return f"unhealthy: {e}"

    def check_redis() -> str:
        try:
            r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
            r.ping()
            r.close()
            return "healthy"
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return f"unhealthy: {e}"

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="System Health Check",
    )
    async def health_check(container: ServiceContainer = Depends(get_container)) -> HealthResponse:
        """Verify all system components are operational."""
        db_status = await check_database(container)
        redis_status = check_redis() if settings.ledger_export_enabled else "disabled"
        notifier_status = "healthy" if await container.notifier.health_check() else "unhealthy"

        overall = "operational" if all(
            s in ("healthy", "disabled") for s in [db_status, redis_status, notifier_status]
        ) else "degraded"

        return HealthResponse(
            status=overall,
            database=db_status,
            redis=redis_status,
            notification_service=notifier_status,
            timestamp=datetime.now(),
        )

    @app.get("/health/database", tags=["Health"])
    async def database_health(container: ServiceContainer = Depends(get_container)) -> JSONResponse:
        db_status = await check_database(container)
        return JSONResponse(
            status_code=200 if db_status == "healthy" else 503,
            content={"database": db_status},
        )

    @app.get("/health/info", tags=["Health"])
    async def health_info() -> dict[str, Any]:
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.env_mode.value,
            "realtime_notifications": settings.realtime_notifications,
            "ledger_export_enabled": settings.ledger_export_enabled,
        }

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    @app.post(
        "/api/orders",
        response_model=OrderResponse,
        status_code=201,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
        summary="Place Order",
    )
    async def place_order(
        order_data: OrderCreate,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> OrderResponse:
        """Open a PENDING order on a table with its first items."""
        order = unwrap(await container.orders.place_order(
            principal,
            table_id=order_data.table_id,
            items=order_data.items,
            notes=order_data.notes,
        ))
        return OrderResponse.model_validate(order)

    @app.get(
        "/api/orders",
        response_model=PaginatedResponse[OrderResponse],
        responses=ERROR_RESPONSES,
        tags=["Orders"],
        summary="List Orders",
    )
    async def list_orders(
        page: int = Query(1, ge=1),
        limit: Optional[int] = Query(None, ge=1),
        status: Optional[OrderStatus] = Query(None),
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> PaginatedResponse[OrderResponse]:
        """Retrieve paginated list of orders, newest first."""
        result = unwrap(await container.orders.list_orders(
            principal, page=page, limit=limit or settings.default_page_size, status=status
        ))
        return PaginatedResponse[OrderResponse].from_page(result, OrderResponse)

    @app.get(
        "/api/orders/{order_id}",
        response_model=OrderResponse,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
    )
    async def get_order(
        order_id: int,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> OrderResponse:
        """Get a specific order by ID."""
        order = unwrap(await container.orders.get_order(principal, order_id))
        return OrderResponse.model_validate(order)

    @app.post(
        "/api/orders/{order_id}/transitions",
        response_model=OrderResponse,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
        summary="Change Order Status",
    )
    async def transition_order(
        order_id: int,
        body: OrderTransitionRequest,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> OrderResponse:
        order = unwrap(await container.orders.transition_order(principal, order_id, body.status))
        return OrderResponse.model_validate(order)

    @app.post(
        "/api/orders/{order_id}/items",
        response_model=OrderResponse,
        status_code=201,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
    )
    async def add_order_item(
        order_id: int,
        item: OrderItemCreate,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> OrderResponse:
        order = unwrap(await container.orders.add_item(
            principal, order_id, item.dish_id, item.quantity, item.notes
        ))
        return OrderResponse.model_validate(order)

    @app.delete(
        "/api/orders/{order_id}/items/{item_id}",
        response_model=OrderResponse,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
    )
    async def remove_order_item(
        order_id: int,
        item_id: int,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> OrderResponse:
        order = unwrap(await container.orders.remove_item(principal, order_id, item_id))
        return OrderResponse.model_validate(order)

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    @app.post(
        "/api/orders/{order_id}/payments",
        response_model=PaymentReceiptResponse,
        status_code=201,
        responses=ERROR_RESPONSES,
        tags=["Payments"],
        summary="Record Payment",
    )
    async def record_payment(
        order_id: int,
        body: PaymentCreate,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> PaymentReceiptResponse:
        """
        Record a cash payment on a SERVED order.

        The order moves to PAID as soon as the payments cover its total.
        """
        receipt = unwrap(await container.payments.record_payment(
            principal, order_id, body.amount, body.method
        ))
        export_to_ledger(settings, receipt)
        return PaymentReceiptResponse.model_validate(receipt)

    @app.get(
        "/api/orders/{order_id}/payments",
        response_model=list[PaymentResponse],
        responses=ERROR_RESPONSES,
        tags=["Payments"],
    )
    async def list_payments(
        order_id: int,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> list[PaymentResponse]:
        payments = unwrap(await container.payments.list_payments(principal, order_id))
        return [PaymentResponse.model_validate(p) for p in payments]

    # -------------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------------

    @app.get(
        "/api/roles",
        response_model=PaginatedResponse[RoleResponse],
        responses=ERROR_RESPONSES,
        tags=["Roles"],
    )
    async def list_roles(
        page: int = Query(1, ge=1),
        limit: Optional[int] = Query(None, ge=1),
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> PaginatedResponse[RoleResponse]:
        result = unwrap(await container.directory.list_roles(
            principal, page=page, limit=limit or settings.default_page_size
        ))
        return PaginatedResponse[RoleResponse].from_page(result, RoleResponse)

    @app.post(
        "/api/roles",
        response_model=RoleResponse,
        status_code=201,
        responses=ERROR_RESPONSES,
        tags=["Roles"],
    )
    async def create_role(
        body: RoleCreate,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> RoleResponse:
        role = unwrap(await container.directory.create_role(
            principal, name=body.name, permissions=body.permissions, description=body.description
        ))
        return RoleResponse.model_validate(role)

    @app.put(
        "/api/roles/{role_id}/permissions",
        response_model=RoleResponse,
        responses=ERROR_RESPONSES,
        tags=["Roles"],
        summary="Replace Role Permission Grid",
    )
    async def update_role_permissions(
        role_id: int,
        body: RolePermissionsUpdate,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> RoleResponse:
        role = unwrap(await container.directory.update_role_permissions(
            principal, role_id, body.permissions
        ))
        return RoleResponse.model_validate(role)

    # -------------------------------------------------------------------------
    # Tables & dishes
    # -------------------------------------------------------------------------

    @app.get(
        "/api/tables",
        response_model=PaginatedResponse[TableResponse],
        responses=ERROR_RESPONSES,
        tags=["Tables"],
    )
    async def list_tables(
        page: int = Query(1, ge=1),
        limit: Optional[int] = Query(None, ge=1),
        status: Optional[TableStatus] = Query(None),
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> PaginatedResponse[TableResponse]:
        result = unwrap(await container.directory.list_tables(
            principal, page=page, limit=limit or settings.default_page_size, status=status
        ))
        return PaginatedResponse[TableResponse].from_page(result, TableResponse)

    @app.patch(
        "/api/tables/{table_id}/status",
        response_model=TableResponse,
        responses=ERROR_RESPONSES,
        tags=["Tables"],
    )
    async def set_table_status(
        table_id: int,
        body: TableStatusUpdate,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> TableResponse:
        table = unwrap(await container.directory.set_table_status(principal, table_id, body.status))
        return TableResponse.model_validate(table)

    @app.get(
        "/api/dishes",
        response_model=PaginatedResponse[DishResponse],
        responses=ERROR_RESPONSES,
        tags=["Menu"],
    )
    async def list_dishes(
        page: int = Query(1, ge=1),
        limit: Optional[int] = Query(None, ge=1),
        available_only: bool = Query(False),
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> PaginatedResponse[DishResponse]:
        result = unwrap(await container.directory.list_dishes(
            principal, page=page, limit=limit or settings.default_page_size, available_only=available_only
        ))
        return PaginatedResponse[DishResponse].from_page(result, DishResponse)

    @app.patch(
        "/api/dishes/{dish_id}",
        response_model=DishResponse,
        responses=ERROR_RESPONSES,
        tags=["Menu"],
    )
    async def update_dish(
        dish_id: int,
        body: DishUpdate,
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> DishResponse:
        dish = unwrap(await container.directory.update_dish(
            principal, dish_id, body.model_dump(exclude_unset=True)
        ))
        return DishResponse.model_validate(dish)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    @app.get(
        "/api/statistics",
        response_model=StatisticsResponse,
        responses=ERROR_RESPONSES,
        tags=["Statistics"],
    )
    async def statistics(
        start: Optional[datetime] = Query(None),
        end: Optional[datetime] = Query(None),
        principal: Principal = Depends(get_principal),
        container: ServiceContainer = Depends(get_container),
    ) -> StatisticsResponse:
        """Aggregated orders, revenue and best sellers (last 30 days by default)."""
        summary = unwrap(await container.statistics.summary(principal, start, end))
        return StatisticsResponse.model_validate(summary)

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    @app.websocket("/ws/orders")
    async def order_events(websocket: WebSocket, user_id: int = Query(...)) -> None:
        """Stream order events of the caller's restaurant."""
        container: ServiceContainer = websocket.app.state.container
        notifier = container.notifier
        if not isinstance(notifier, WebSocketNotificationService):
            await websocket.close(code=1013, reason="Realtime notifications are disabled")
            return

        principal = await load_principal(container, user_id)
        if not container.evaluator.authorize(principal, READ_ORDERS).allowed:
            logger.warning(f"WebSocket refused for user #{user_id}")
            await websocket.close(code=1008, reason="Forbidden")
            return

        await notifier.connect(principal.restaurant_id, websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await notifier.disconnect(principal.restaurant_id, websocket)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def register_error_handlers(app: FastAPI, settings: Settings) -> None:

    @app.exception_handler(RestaurantOpsError)
    async def domain_error_handler(request: Request, exc: RestaurantOpsError) -> JSONResponse:
        """Render a domain error with its status code."""
        if isinstance(exc, Forbidden):
            logger.info(f"{request.method} {request.url.path} forbidden ({exc.reason}): {exc.context}")
        elif exc.code == ErrorCode.INVALID_PERMISSION_SPEC:
            logger.error(f"Invalid permission requirement on {request.url.path}: {exc.message}")

        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": "unauthorized" if exc.status_code == 401 else "http_error",
                "detail": exc.detail,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": ErrorCode.VALIDATION_ERROR.value,
                "detail": "Request validation failed",
                "errors": errors,
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler."""
        logger.exception(f"Unhandled exception: {exc}")

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "Internal Server Error",
                "detail": str(exc) if settings.debug else "An unexpected error occurred",
            },
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "restaurant_ops.main:app",
        host=get_settings().api_host,
        port=get_settings().api_port,
        reload=get_settings().is_development,
    )
