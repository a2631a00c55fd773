import pytest

from restaurant_ops.core.exceptions import InvalidTransition, OrderLocked
from restaurant_ops.models import Order, OrderStatus
from restaurant_ops.services.orders import OrderStateMachine, TRANSITIONS

S = OrderStatus


def order_in(status: OrderStatus) -> Order:
    return Order(status=status)


class TestTransitionTable:

    def setup_method(self):
        self.machine = OrderStateMachine()

    @pytest.mark.parametrize("source,target,permission", [
        (S.PENDING, S.PREPARING, "orders.update"),
        (S.PREPARING, S.READY, "orders.update"),
        (S.READY, S.SERVED, "orders.update"),
        (S.PENDING, S.CANCELLED, "orders.delete"),
        (S.PREPARING, S.CANCELLED, "orders.delete"),
    ])
    def test_client_edges(self, source, target, permission):
        transition = self.machine.transition_for(source, target)
        assert str(transition.permission) == permission
        assert not transition.internal

    def test_settlement_edge_is_internal(self):
        with pytest.raises(InvalidTransition):
            self.machine.transition_for(S.SERVED, S.PAID)
        transition = self.machine.transition_for(S.SERVED, S.PAID, internal=True)
        assert str(transition.permission) == "payments.create"

    @pytest.mark.parametrize("source,target", [
        (S.PENDING, S.READY),
        (S.PENDING, S.SERVED),
        (S.READY, S.PREPARING),
        (S.SERVED, S.READY),
        (S.READY, S.CANCELLED),
        (S.SERVED, S.CANCELLED),
        (S.PAID, S.PENDING),
        (S.CANCELLED, S.PENDING),
    ])
    def test_rejected_edges(self, source, target):
        with pytest.raises(InvalidTransition):
            self.machine.transition_for(source, target)

    @pytest.mark.parametrize("status", list(OrderStatus))
    def test_same_status_is_rejected(self, status):
        with pytest.raises(InvalidTransition) as exc_info:
            self.machine.transition_for(status, status, internal=True)
        assert exc_info.value.context["current_status"] == status.value

    def test_terminal_states_have_no_outgoing_edges(self):
        assert not [key for key in TRANSITIONS if key[0] in (S.PAID, S.CANCELLED)]
        assert self.machine.allowed_targets(S.PAID) == []

    def test_allowed_targets_hide_internal_edges(self):
        assert self.machine.allowed_targets(S.SERVED) == []
        assert set(self.machine.allowed_targets(S.PENDING)) == {S.PREPARING, S.CANCELLED}


class TestApply:

    def setup_method(self):
        self.machine = OrderStateMachine()

    def test_apply_updates_status_and_timestamps(self):
        order = order_in(S.PENDING)
        previous = self.machine.apply(order, self.machine.transition_for(S.PENDING, S.PREPARING))
        assert previous == S.PENDING
        assert order.status == S.PREPARING
        assert order.status_changed_at is not None
        assert order.closed_at is None

    def test_terminal_transition_sets_closed_at(self):
        order = order_in(S.PENDING)
        self.machine.apply(order, self.machine.transition_for(S.PENDING, S.CANCELLED))
        assert order.closed_at is not None

    def test_apply_checks_the_source(self):
        order = order_in(S.READY)
        with pytest.raises(InvalidTransition):
            self.machine.apply(order, self.machine.transition_for(S.PENDING, S.PREPARING))


class TestItemLock:

    def setup_method(self):
        self.machine = OrderStateMachine()

    @pytest.mark.parametrize("status", [S.PENDING, S.PREPARING])
    def test_editable(self, status):
        self.machine.ensure_items_editable(order_in(status))

    @pytest.mark.parametrize("status", [S.READY, S.SERVED, S.PAID, S.CANCELLED])
    def test_locked(self, status):
        with pytest.raises(OrderLocked):
            self.machine.ensure_items_editable(order_in(status))
