import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select

from restaurant_ops.core.exceptions import CrossTenantAccess, ErrorCode, PermissionDenied
from restaurant_ops.models import OrderStatus, Payment, Table, TableStatus


class TestRecordPayment:

    async def test_single_payment_settles(self, reconciler, order_service, notifier, served_order, world):
        order_id = await served_order()

        result = await reconciler.record_payment(world.server, order_id, Decimal("3000"))

        assert result.success, result.error
        receipt = result.value
        assert receipt.settled
        assert receipt.order_status == OrderStatus.PAID
        assert receipt.total_paid == Decimal("3000")
        assert receipt.balance_due == Decimal("0")
        assert receipt.surplus == Decimal("0")
        assert receipt.order.closed_at is not None

        last_event = notifier.published[-1]
        assert (last_event.previous_status, last_event.status) == (OrderStatus.SERVED, OrderStatus.PAID)

    async def test_partial_payment_keeps_order_served(self, reconciler, served_order, world):
        order_id = await served_order()

        receipt = (await reconciler.record_payment(world.server, order_id, "1000")).unwrap()

        assert not receipt.settled
        assert receipt.order_status == OrderStatus.SERVED
        assert receipt.balance_due == Decimal("2000")

    async def test_split_payments_settle_on_the_last_one(self, reconciler, served_order, world):
        order_id = await served_order()

        first = (await reconciler.record_payment(world.server, order_id, 1500)).unwrap()
        second = (await reconciler.record_payment(world.server, order_id, 1500)).unwrap()

        assert not first.settled
        assert second.settled
        assert second.order_status == OrderStatus.PAID

    async def test_overpayment_is_kept_as_surplus(self, reconciler, served_order, world):
        order_id = await served_order()

        receipt = (await reconciler.record_payment(world.server, order_id, "3500.50")).unwrap()

        assert receipt.settled
        assert receipt.surplus == Decimal("500.50")
        assert receipt.payment.amount == Decimal("3500.50")

    async def test_settlement_releases_the_table(self, reconciler, served_order, session_factory, world):
        order_id = await served_order(table_index=2)
        (await reconciler.record_payment(world.server, order_id, 3000)).unwrap()

        async with session_factory() as session:
            table = await session.get(Table, world.tables[2])
        assert table.status == TableStatus.AVAILABLE

    @pytest.mark.parametrize("amount", [
        0, -10, "abc", "NaN", "Infinity", None,
        "0.001", "1500.005", "1e30", "10000000000",
    ])
    async def test_invalid_amount(self, reconciler, served_order, session_factory, world, amount):
        order_id = await served_order()
        result = await reconciler.record_payment(world.server, order_id, amount)
        assert result.error_code == ErrorCode.VALIDATION_ERROR

        async with session_factory() as session:
            assert (await session.execute(select(Payment))).scalars().all() == []

    @pytest.mark.parametrize("amount,stored", [
        ("1500.50", Decimal("1500.50")),
        ("1500.500", Decimal("1500.50")),
        (Decimal("1e3"), Decimal("1000.00")),
        (250, Decimal("250.00")),
    ])
    async def test_amount_kept_in_cents(self, reconciler, served_order, world, amount, stored):
        order_id = await served_order()
        receipt = (await reconciler.record_payment(world.server, order_id, amount)).unwrap()
        assert receipt.payment.amount == stored

    async def test_unsupported_method(self, reconciler, served_order, world):
        order_id = await served_order()
        result = await reconciler.record_payment(world.server, order_id, 100, method="CARD")
        assert result.error_code == ErrorCode.VALIDATION_ERROR


class TestPaymentPreconditions:

    @pytest.mark.parametrize("steps", [
        [],
        [OrderStatus.PREPARING],
        [OrderStatus.PREPARING, OrderStatus.READY],
    ])
    async def test_not_ready_before_served(self, reconciler, order_service, world, steps):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()
        for status in steps:
            (await order_service.transition_order(world.cook, order.id, status)).unwrap()

        result = await reconciler.record_payment(world.server, order.id, 500)
        assert result.error_code == ErrorCode.ORDER_NOT_READY

    async def test_closed_after_paid(self, reconciler, served_order, world):
        order_id = await served_order()
        (await reconciler.record_payment(world.server, order_id, 3000)).unwrap()

        result = await reconciler.record_payment(world.server, order_id, 100)
        assert result.error_code == ErrorCode.ORDER_CLOSED

    async def test_closed_after_cancel(self, reconciler, order_service, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()
        (await order_service.transition_order(world.admin, order.id, OrderStatus.CANCELLED)).unwrap()

        result = await reconciler.record_payment(world.admin, order.id, 500)
        assert result.error_code == ErrorCode.ORDER_CLOSED

    async def test_requires_payments_create(self, reconciler, served_order, world):
        order_id = await served_order()
        result = await reconciler.record_payment(world.cook, order_id, 3000)
        assert isinstance(result.error, PermissionDenied)

    async def test_cross_tenant_payment(self, reconciler, served_order, world):
        order_id = await served_order()
        result = await reconciler.record_payment(world.other_admin, order_id, 3000)
        assert isinstance(result.error, CrossTenantAccess)

    async def test_rejected_payment_leaves_no_row(self, reconciler, order_service, session_factory, world):
        order = (await order_service.place_order(
            world.server, world.tables[0], [{"dish_id": world.dishes["Alloco"], "quantity": 1}]
        )).unwrap()
        await reconciler.record_payment(world.server, order.id, 500)

        async with session_factory() as session:
            payments = (await session.execute(select(Payment))).scalars().all()
        assert payments == []


class TestConcurrentSettlement:

    async def test_two_halves_settle_exactly_once(self, reconciler, notifier, served_order, world):
        order_id = await served_order()

        results = await asyncio.gather(
            reconciler.record_payment(world.server, order_id, 1500),
            reconciler.record_payment(world.server, order_id, 1500),
        )

        assert all(r.success for r in results)
        assert sorted(r.value.settled for r in results) == [False, True]
        paid_events = [e for e in notifier.published if e.status == OrderStatus.PAID]
        assert len(paid_events) == 1

    async def test_late_payment_sees_closed_order(self, reconciler, served_order, world):
        order_id = await served_order()

        results = await asyncio.gather(
            reconciler.record_payment(world.server, order_id, 3000),
            reconciler.record_payment(world.server, order_id, 2500),
        )

        # Whichever runs first wins; the other observes the outcome
        full, partial = results
        if full.success and full.value.settled:
            assert partial.error_code == ErrorCode.ORDER_CLOSED
        else:
            assert partial.success and not partial.value.settled
            assert full.value.settled and full.value.surplus == Decimal("2500")

    async def test_total_paid_matches_ledger(self, reconciler, served_order, session_factory, world):
        order_id = await served_order()

        await asyncio.gather(*[
            reconciler.record_payment(world.server, order_id, 1000) for _ in range(5)
        ])

        payments = (await reconciler.list_payments(world.server, order_id)).unwrap()
        assert len(payments) == 3
        assert sum(p.amount for p in payments) == Decimal("3000")


class TestPaymentLedger:

    async def test_list_payments_requires_read(self, reconciler, served_order, world):
        order_id = await served_order()
        (await reconciler.record_payment(world.server, order_id, 3000)).unwrap()

        assert len((await reconciler.list_payments(world.admin, order_id)).unwrap()) == 1
        result = await reconciler.list_payments(world.cook, order_id)
        assert isinstance(result.error, PermissionDenied)

    async def test_list_payments_of_other_restaurant(self, reconciler, served_order, world):
        order_id = await served_order()
        (await reconciler.record_payment(world.server, order_id, 3000)).unwrap()

        foreign = await reconciler.list_payments(world.other_admin, order_id)
        missing = await reconciler.list_payments(world.other_admin, 424242)

        assert isinstance(foreign.error, CrossTenantAccess)
        assert missing.error_code == ErrorCode.FORBIDDEN
        assert foreign.error.to_dict() == missing.error.to_dict()

    async def test_payments_are_append_only(self, reconciler, served_order, session_factory, world):
        order_id = await served_order()
        (await reconciler.record_payment(world.server, order_id, 3000)).unwrap()

        async with session_factory() as session:
            payment = (await session.execute(select(Payment))).scalars().one()
            payment.amount = Decimal("1")
            with pytest.raises(ValueError):
                await session.flush()
            await session.rollback()

        async with session_factory() as session:
            payment = (await session.execute(select(Payment))).scalars().one()
            await session.delete(payment)
            with pytest.raises(ValueError):
                await session.flush()
            await session.rollback()
