"""
Tests for the order aggregate and its status machine.
"""
from decimal import Decimal
from itertools import product

import pytest
from pydantic import ValidationError

from orderdesk.domain.exceptions import InvalidOrderStateError, ValidationFailureError
from orderdesk.domain.order import Order, OrderItem, OrderStatus

EDGES = {
    (OrderStatus.PENDING, OrderStatus.PROCESSING),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
    (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
}


def item(quantity=1, unit_price="10.00", discount="0", tax="0") -> OrderItem:
    return OrderItem(
        product_id="PROD-1",
        product_name="Widget",
        quantity=quantity,
        unit_price=Decimal(unit_price),
        discount_amount=Decimal(discount),
        tax_amount=Decimal(tax),
    )


class TestOrderStatus:
    """Tests for the status graph."""

    @pytest.mark.parametrize("current,requested", list(product(OrderStatus, OrderStatus)))
    def test_transition_matches_graph(self, current, requested):
        assert current.can_transition_to(requested) == ((current, requested) in EDGES)

    def test_terminal_statuses(self):
        assert OrderStatus.DELIVERED.is_terminal
        assert OrderStatus.CANCELLED.is_terminal
        assert not OrderStatus.PENDING.is_terminal

    def test_from_string_is_case_insensitive(self):
        assert OrderStatus.from_string(" shipped ") is OrderStatus.SHIPPED

    def test_from_string_rejects_unknown(self):
        with pytest.raises(ValidationFailureError, match="Invalid order status: LOST"):
            OrderStatus.from_string("LOST")

    def test_display_name(self):
        assert OrderStatus.PROCESSING.display_name == "Processing"


class TestOrderItem:
    """Tests for line item arithmetic."""

    def test_subtotal(self):
        line = item(quantity=3, unit_price="10.00", discount="5.00", tax="1.50")
        assert line.subtotal == Decimal("26.50")

    def test_subtotal_follows_quantity(self):
        line = item(quantity=1, unit_price="4.25")
        line.update_quantity(4)
        assert line.subtotal == Decimal("17.00")

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_update_quantity_rejects_non_positive(self, quantity):
        line = item()
        with pytest.raises(ValidationFailureError):
            line.update_quantity(quantity)
        assert line.quantity == 1

    def test_negative_subtotal_rejected(self):
        with pytest.raises(ValidationError):
            item(quantity=1, unit_price="5.00", discount="6.00")


class TestOrderTotals:
    """Tests for total_amount bookkeeping."""

    def test_total_follows_items(self):
        order = Order(customer_id="CUST-001")
        first = item(quantity=2, unit_price="99.99")
        second = item(quantity=1, unit_price="0.02")

        order.add_item(first)
        assert order.total_amount == Decimal("199.98")

        order.add_item(second)
        assert order.total_amount == Decimal("200.00")

        order.remove_item(first)
        assert order.total_amount == Decimal("0.02")

    def test_remove_foreign_item_fails(self):
        order = Order(customer_id="CUST-001")
        order.add_item(item())

        with pytest.raises(ValidationFailureError):
            order.remove_item(item())
        assert len(order.items) == 1

    def test_total_follows_item_quantity_change(self):
        order = Order(customer_id="CUST-001")
        line = item(quantity=1, unit_price="10.00")
        order.add_item(line)

        line.update_quantity(5)

        assert order.total_amount == Decimal("50.00")
        assert order.total_amount == sum(i.subtotal for i in order.items)

    def test_total_of_order_built_with_items(self):
        order = Order(customer_id="CUST-001", items=[item(quantity=2, unit_price="99.99")])

        assert order.total_amount == Decimal("199.98")

    def test_supplied_total_is_ignored(self):
        order = Order(
            customer_id="CUST-001",
            items=[item(quantity=1, unit_price="5.00")],
            total_amount=Decimal("999"),
        )

        assert order.total_amount == Decimal("5.00")

    def test_recalculate_is_idempotent(self):
        order = Order(customer_id="CUST-001")
        order.add_item(item(quantity=3, unit_price="1.10"))

        assert order.recalculate_total() == order.recalculate_total() == Decimal("3.30")


class TestOrderLifecycle:
    """Tests for status changes and cancellation."""

    @pytest.mark.parametrize("current,requested", sorted(EDGES))
    def test_update_status_applies_edges(self, current, requested):
        order = Order(customer_id="CUST-001", status=current)
        order.update_status(requested)
        assert order.status is requested

    @pytest.mark.parametrize(
        "current,requested",
        [pair for pair in product(OrderStatus, OrderStatus) if pair not in EDGES],
    )
    def test_update_status_rejects_non_edges(self, current, requested):
        order = Order(customer_id="CUST-001", status=current)
        before = order.model_dump()

        with pytest.raises(InvalidOrderStateError) as exc_info:
            order.update_status(requested)

        assert exc_info.value.current is current
        assert exc_info.value.requested is requested
        assert order.model_dump() == before

    def test_update_status_stamps_timestamps(self):
        order = Order(customer_id="CUST-001")

        order.update_status(OrderStatus.PROCESSING)
        assert order.processed_at is not None

        order.update_status(OrderStatus.SHIPPED, tracking_number="TRK-123")
        assert order.shipped_at is not None
        assert order.tracking_number == "TRK-123"

        order.update_status(OrderStatus.DELIVERED)
        assert order.delivered_at is not None

    def test_update_status_to_cancelled_stamps_cancellation(self):
        order = Order(customer_id="CUST-001", status=OrderStatus.PROCESSING)

        order.update_status(OrderStatus.CANCELLED, reason="Out of stock", actor="ADMIN-1")

        assert order.status is OrderStatus.CANCELLED
        assert order.cancelled_reason == "Out of stock"
        assert order.cancelled_by == "ADMIN-1"
        assert order.cancelled_at is not None

    @pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.PROCESSING])
    def test_cancel_refused_for_early_orders(self, status):
        order = Order(customer_id="CUST-001", status=status)

        assert not order.can_be_cancelled()
        with pytest.raises(InvalidOrderStateError):
            order.cancel("Changed my mind", "CUST-001")
        assert order.status is status
        assert order.cancelled_at is None

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED],
    )
    def test_cancel_allowed_for_late_orders(self, status):
        order = Order(customer_id="CUST-001", status=status)

        order.cancel("Damaged", "CUST-001")

        assert order.status is OrderStatus.CANCELLED
        assert order.cancelled_reason == "Damaged"
        assert order.cancelled_by == "CUST-001"
        assert order.cancelled_at is not None

    def test_cancel_twice_restamps(self):
        order = Order(customer_id="CUST-001", status=OrderStatus.SHIPPED)
        order.cancel("first", "A")
        order.cancel("second", "B")

        assert order.cancelled_reason == "second"
        assert order.cancelled_by == "B"

    def test_belongs_to(self):
        order = Order(customer_id="CUST-001")
        assert order.belongs_to("CUST-001")
        assert not order.belongs_to("CUST-002")
