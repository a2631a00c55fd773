import asyncio
from decimal import Decimal

import pytest

from restaurant_ops.core.exceptions import (
    CrossTenantAccess,
    ErrorCode,
    InvalidPermissionSpec,
    PermissionDenied,
    UnknownTarget,
)
from restaurant_ops.models import Dish, Order, OrderStatus, Table, TableStatus
from restaurant_ops.services.notifications import MockNotificationService
from restaurant_ops.services.orders import OrderLockRegistry, OrderService, UnitOutcome


async def get_table(session_factory, table_id: int) -> Table:
    async with session_factory() as session:
        return await session.get(Table, table_id)


class TestPlaceOrder:

    async def test_snapshots_dish_name_and_price(self, order_service, session_factory, world):
        result = await order_service.place_order(
            world.server,
            world.tables[0],
            [
                {"dish_id": world.dishes["Poulet Braisé"], "quantity": 2, "notes": "Extra sauce"},
                {"dish_id": world.dishes["Alloco"], "quantity": 1},
            ],
            notes="Birthday",
        )

        assert result.success
        order = result.value
        assert order.status == OrderStatus.PENDING
        assert order.total == Decimal("5500")
        assert [(i.dish_name, i.quantity) for i in order.items] == [("Poulet Braisé", 2), ("Alloco", 1)]

        # Changing the menu price later does not touch the order
        async with session_factory() as session:
            async with session.begin():
                dish = await session.get(Dish, world.dishes["Poulet Braisé"])
                dish.price = Decimal("9999")
        reloaded = (await order_service.get_order(world.server, order.id)).unwrap()
        assert reloaded.total == Decimal("5500")

        table = await get_table(session_factory, world.tables[0])
        assert table.status == TableStatus.OCCUPIED

    async def test_publishes_created_event(self, order_service, notifier, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        assert len(notifier.published) == 1
        event = notifier.published[0]
        assert event.event_type == "order.created"
        assert event.order_id == order.id
        assert event.restaurant_id == world.restaurant_id

    async def test_requires_orders_create(self, order_service, world):
        result = await order_service.place_order(
            world.cook, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )
        assert not result.success
        assert isinstance(result.error, PermissionDenied)

    async def test_rejects_other_restaurant_table(self, order_service, world):
        result = await order_service.place_order(
            world.server, world.other_table, [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )
        assert isinstance(result.error, CrossTenantAccess)

    async def test_rejects_other_restaurant_dish(self, order_service, session_factory, world):
        result = await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.other_dish, "quantity": 1}]
        )
        assert isinstance(result.error, CrossTenantAccess)

        # Nothing was written
        table = await get_table(session_factory, world.tables[0])
        assert table.status == TableStatus.AVAILABLE

    @pytest.mark.parametrize("items,code", [
        ([], ErrorCode.VALIDATION_ERROR),
        ([{"dish_id": 999999, "quantity": 1}], ErrorCode.FORBIDDEN),
        ([{"quantity": 1}], ErrorCode.VALIDATION_ERROR),
        ([{"dish_id": "abc", "quantity": 1}], ErrorCode.VALIDATION_ERROR),
        ([None], ErrorCode.VALIDATION_ERROR),
    ])
    async def test_invalid_items(self, order_service, world, items, code):
        result = await order_service.place_order(world.server, world.tables[0], items)
        assert result.error_code == code

    async def test_rejects_zero_quantity(self, order_service, world):
        result = await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 0}]
        )
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    async def test_rejects_unavailable_dish(self, order_service, world):
        result = await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Jus de Bissap"], "quantity": 1}]
        )
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    async def test_unknown_table_looks_like_foreign_table(self, order_service, world):
        items = [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        missing = await order_service.place_order(world.server, 424242, items)
        foreign = await order_service.place_order(world.server, world.other_table, items)

        assert isinstance(missing.error, UnknownTarget)
        assert missing.error.to_dict() == foreign.error.to_dict()


class TestTransitions:

    async def test_full_kitchen_flow(self, order_service, notifier, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        for principal, status in [
            (world.cook, OrderStatus.PREPARING),
            (world.cook, OrderStatus.READY),
            (world.server, OrderStatus.SERVED),
        ]:
            result = await order_service.transition_order(principal, order.id, status)
            assert result.success, result.error
            assert result.value.status == status

        changes = [(e.previous_status, e.status) for e in notifier.published[1:]]
        assert changes == [
            (OrderStatus.PENDING, OrderStatus.PREPARING),
            (OrderStatus.PREPARING, OrderStatus.READY),
            (OrderStatus.READY, OrderStatus.SERVED),
        ]

    async def test_skipping_states_is_rejected(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        result = await order_service.transition_order(world.admin, order.id, OrderStatus.SERVED)
        assert result.error_code == ErrorCode.INVALID_TRANSITION

        reloaded = (await order_service.get_order(world.admin, order.id)).unwrap()
        assert reloaded.status == OrderStatus.PENDING

    async def test_paid_cannot_be_requested(self, order_service, served_order, world):
        order_id = await served_order()
        result = await order_service.transition_order(world.admin, order_id, OrderStatus.PAID)
        assert result.error_code == ErrorCode.INVALID_TRANSITION

    async def test_cancel_requires_orders_delete(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        denied = await order_service.transition_order(world.server, order.id, OrderStatus.CANCELLED)
        assert isinstance(denied.error, PermissionDenied)

        allowed = await order_service.transition_order(world.admin, order.id, OrderStatus.CANCELLED)
        assert allowed.value.status == OrderStatus.CANCELLED
        assert allowed.value.closed_at is not None

    async def test_cancel_releases_table(self, order_service, session_factory, world):
        order = (await order_service.place_order(
            world.server, world.tables[1], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()
        (await order_service.transition_order(world.admin, order.id, OrderStatus.CANCELLED)).unwrap()

        table = await get_table(session_factory, world.tables[1])
        assert table.status == TableStatus.AVAILABLE

    async def test_table_stays_occupied_while_another_order_is_open(self, order_service, session_factory, world):
        items = [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        first = (await order_service.place_order(world.server, world.tables[1], items)).unwrap()
        (await order_service.place_order(world.server, world.tables[1], items)).unwrap()
        (await order_service.transition_order(world.admin, first.id, OrderStatus.CANCELLED)).unwrap()

        table = await get_table(session_factory, world.tables[1])
        assert table.status == TableStatus.OCCUPIED

    async def test_cross_tenant_transition_is_forbidden(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        result = await order_service.transition_order(world.other_admin, order.id, OrderStatus.PREPARING)
        assert isinstance(result.error, CrossTenantAccess)

    async def test_unknown_order_looks_like_foreign_order(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        missing = await order_service.transition_order(world.other_admin, 424242, OrderStatus.PREPARING)
        foreign = await order_service.transition_order(world.other_admin, order.id, OrderStatus.PREPARING)

        assert missing.error_code == foreign.error_code == ErrorCode.FORBIDDEN
        assert missing.error.to_dict() == foreign.error.to_dict()

        missing_read = await order_service.get_order(world.other_admin, 424242)
        foreign_read = await order_service.get_order(world.other_admin, order.id)
        assert missing_read.error.to_dict() == foreign_read.error.to_dict()

    @pytest.mark.parametrize("target", ["BOGUS", None, 7])
    async def test_unknown_target_status(self, order_service, world, target):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        result = await order_service.transition_order(world.cook, order.id, target)

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        current = (await order_service.get_order(world.server, order.id)).unwrap()
        assert current.status == OrderStatus.PENDING

    async def test_version_increments_on_change(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()
        moved = (await order_service.transition_order(world.cook, order.id, OrderStatus.PREPARING)).unwrap()
        assert moved.version == order.version + 1

    async def test_failing_notifier_does_not_fail_the_operation(self, session_factory, evaluator, guard, world):
        service = OrderService(session_factory, evaluator, guard, notifier=MockNotificationService(failure_rate=1.0))
        order = (await service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        result = await service.transition_order(world.cook, order.id, OrderStatus.PREPARING)
        assert result.success


class TestItems:

    async def test_add_and_remove_while_editable(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        added = (await order_service.add_item(world.server, order.id, world.dishes["Poulet Braisé"], 2)).unwrap()
        assert added.total == Decimal("5500")

        item_id = added.items[0].id
        removed = (await order_service.remove_item(world.server, order.id, item_id)).unwrap()
        assert [i.dish_name for i in removed.items] == ["Poulet Braisé"]
        assert removed.total == Decimal("5000")
        assert removed.version > order.version

    async def test_items_lock_once_ready(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()
        (await order_service.transition_order(world.cook, order.id, OrderStatus.PREPARING)).unwrap()
        (await order_service.transition_order(world.cook, order.id, OrderStatus.READY)).unwrap()

        result = await order_service.add_item(world.server, order.id, world.dishes["Alloco"], 1)
        assert result.error_code == ErrorCode.ORDER_LOCKED

        result = await order_service.remove_item(world.server, order.id, order.items[0].id)
        assert result.error_code == ErrorCode.ORDER_LOCKED

    async def test_remove_unknown_item(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()
        result = await order_service.remove_item(world.server, order.id, 424242)
        assert result.error_code == ErrorCode.NOT_FOUND

    async def test_host_cannot_edit_items(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()
        result = await order_service.add_item(world.host, order.id, world.dishes["Alloco"], 1)
        assert isinstance(result.error, PermissionDenied)

    async def test_denied_edit_leaves_items_untouched(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        added = await order_service.add_item(world.host, order.id, world.dishes["Poulet Braisé"], 1)
        removed = await order_service.remove_item(world.host, order.id, order.items[0].id)

        assert isinstance(added.error, PermissionDenied)
        assert isinstance(removed.error, PermissionDenied)
        current = (await order_service.get_order(world.server, order.id)).unwrap()
        assert [(i.id, i.dish_name) for i in current.items] == [(order.items[0].id, "Alloco")]
        assert current.version == order.version

    async def test_other_restaurant_cannot_edit_items(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        added = await order_service.add_item(world.other_admin, order.id, world.other_dish, 1)
        removed = await order_service.remove_item(world.other_admin, order.id, order.items[0].id)

        assert isinstance(added.error, CrossTenantAccess)
        assert isinstance(removed.error, CrossTenantAccess)
        current = (await order_service.get_order(world.server, order.id)).unwrap()
        assert len(current.items) == 1
        assert current.total == Decimal("500")

    @pytest.mark.parametrize("quantity", [0, "two", None])
    async def test_add_item_rejects_bad_quantity(self, order_service, world, quantity):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()
        result = await order_service.add_item(world.server, order.id, world.dishes["Alloco"], quantity)
        assert result.error_code == ErrorCode.VALIDATION_ERROR


class TestReads:

    async def test_list_orders_is_scoped_and_paginated(self, order_service, world):
        items = [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        for _ in range(3):
            (await order_service.place_order(world.server, world.tables[0], items)).unwrap()
        (await order_service.place_order(
            world.other_admin, world.other_table, [{"dish_id": world.other_dish, "quantity": 1}]
        )).unwrap()

        page = (await order_service.list_orders(world.server, page=1, limit=2)).unwrap()
        assert page.total == 3
        assert len(page.items) == 2
        assert page.has_next_page
        assert page.total_pages == 2

        second = (await order_service.list_orders(world.server, page=2, limit=2)).unwrap()
        assert len(second.items) == 1
        assert not second.has_next_page

    async def test_list_orders_filters_by_status(self, order_service, world):
        items = [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        first = (await order_service.place_order(world.server, world.tables[0], items)).unwrap()
        (await order_service.place_order(world.server, world.tables[0], items)).unwrap()
        (await order_service.transition_order(world.cook, first.id, OrderStatus.PREPARING)).unwrap()

        page = (await order_service.list_orders(world.cook, status=OrderStatus.PREPARING)).unwrap()
        assert [o.id for o in page.items] == [first.id]

    async def test_list_orders_rejects_unknown_status(self, order_service, world):
        result = await order_service.list_orders(world.cook, status="BOGUS")
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    async def test_list_orders_requires_read(self, order_service, world):
        result = await order_service.list_orders(world.host)
        assert isinstance(result.error, PermissionDenied)

    async def test_get_order_cross_tenant(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()
        result = await order_service.get_order(world.other_admin, order.id)
        assert isinstance(result.error, CrossTenantAccess)


class TestUnitOfWork:

    async def test_concurrent_writer_is_reported(self, order_service, session_factory, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        async def handler(session, loaded: Order, restaurant_id: int) -> UnitOutcome:
            # Another process commits a change to the same order first
            async with session_factory() as other:
                async with other.begin():
                    stale = await order_service.load_order(other, loaded.id)
                    stale.notes = "changed elsewhere"
            loaded.notes = "changed here"
            return UnitOutcome(loaded)

        result = await order_service.run_order_unit(world.server, order.id, handler, "test")
        assert result.error_code == ErrorCode.CONCURRENT_MODIFICATION

        reloaded = (await order_service.get_order(world.server, order.id)).unwrap()
        assert reloaded.notes == "changed elsewhere"

    async def test_invalid_permission_spec_is_raised(self, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()

        async def handler(session, loaded: Order, restaurant_id: int) -> UnitOutcome:
            order_service.evaluator.require(world.server, ["orders.approve"])
            return UnitOutcome(loaded)

        with pytest.raises(InvalidPermissionSpec):
            await order_service.run_order_unit(world.server, order.id, handler, "test")


class TestLockRegistry:

    async def test_same_order_shares_a_lock(self):
        locks = OrderLockRegistry()
        assert locks.lock_for(1) is locks.lock_for(1)
        assert locks.lock_for(1) is not locks.lock_for(2)

    async def test_hold_serializes_callers(self):
        locks = OrderLockRegistry()
        active = 0
        peak = 0

        async def worker():
            nonlocal active, peak
            async with locks.hold(7):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*[worker() for _ in range(5)])
        assert peak == 1

    async def test_unused_locks_are_dropped(self):
        locks = OrderLockRegistry()
        async with locks.hold(3):
            assert len(locks) == 1
        assert len(locks) == 0
