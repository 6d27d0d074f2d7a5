"""
Tests for OrderLifecycle.

Covers:
- Creation checks (lines, prices, stock, amounts)
- Legal and illegal transitions
- Stock committed once on payment and released once on cancellation
- Revision checks against stale callers
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from commerce_kernel.domain.dtos import LineRequest
from commerce_kernel.domain.values import ClaimStatus, OrderStatus, PaymentMethod
from commerce_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    OrderNotFoundError,
    RelationNotFoundError,
    TerminalStateError,
    ValidationError,
)


def _pay(orders, order, actor):
    return orders.transition(
        order.id, OrderStatus.PAID, actor, payment_method=PaymentMethod.CASH,
    )


class TestCreate:

    def test_pending_unclaimed_at_revision_one(self, make_product, make_order, stock_ledger):
        product = make_product(quantity=5)
        order = make_order(product, quantity=2)

        assert order.status == OrderStatus.PENDING
        assert order.claim_status == ClaimStatus.UNCLAIMED
        assert order.revision == 1
        assert order.total_amount == Decimal("30000.00")
        assert order.final_amount == Decimal("30000.00")
        assert order.stock_committed is False
        assert order.placed_at is not None
        assert stock_ledger.get(product.id).quantity == 5

    def test_lines_snapshot_name_and_price(self, make_product, make_order):
        product = make_product(name="Wax fabric", display_price="8000", floor_price="6000")
        order = make_order(product, quantity=3, unit_price=Decimal("7000"))

        (line,) = order.lines
        assert line.line_no == 1
        assert line.product_name == "Wax fabric"
        assert line.unit_price == Decimal("7000.00")
        assert line.line_total == Decimal("21000.00")

    def test_discount_applied(self, make_product, make_order):
        order = make_order(make_product(), quantity=2, discount="1000")
        assert order.discount_amount == Decimal("1000.00")
        assert order.final_amount == Decimal("29000.00")

    def test_price_below_floor_rejected(self, make_product, make_order):
        product = make_product(display_price="8000", floor_price="6000")
        with pytest.raises(ValidationError) as exc_info:
            make_order(product, unit_price=Decimal("5000"))
        assert exc_info.value.field == "unit_price"

    def test_price_above_display_rejected(self, make_product, make_order):
        with pytest.raises(ValidationError):
            make_order(make_product(display_price="8000"), unit_price=Decimal("9000"))

    def test_more_than_on_hand_rejected(self, make_product, make_order):
        with pytest.raises(ValidationError, match="on hand"):
            make_order(make_product(quantity=2), quantity=3)

    def test_duplicate_lines_summed_against_stock(
        self, orders, make_product, make_relation, test_actor_id,
    ):
        product = make_product(quantity=3)
        relation = make_relation()
        with pytest.raises(ValidationError):
            orders.create(
                relation.id, relation.merchant_ref,
                [LineRequest(product.id, 2), LineRequest(product.id, 2)],
                test_actor_id,
            )

    def test_non_positive_quantity_rejected(self, make_product, make_order):
        with pytest.raises(ValidationError):
            make_order(make_product(), quantity=0)

    def test_discount_wiping_total_rejected(self, make_product, make_order):
        with pytest.raises(ValidationError, match="Final amount"):
            make_order(make_product(display_price="100", floor_price="100"), discount="100")

    def test_no_lines_rejected(self, orders, make_relation, test_actor_id):
        relation = make_relation()
        with pytest.raises(ValidationError):
            orders.create(relation.id, relation.merchant_ref, [], test_actor_id)

    def test_other_merchants_product_rejected(self, make_product, make_order):
        product = make_product(merchant_ref="shop-other")
        with pytest.raises(ValidationError, match="not sold by"):
            make_order(product)

    def test_discontinued_product_rejected(self, make_product, make_order, stock_ledger, test_actor_id):
        product = make_product()
        stock_ledger.discontinue(product.id, test_actor_id)
        with pytest.raises(ValidationError):
            make_order(product)

    def test_unknown_relation(self, orders, make_product, test_actor_id):
        product = make_product()
        with pytest.raises(RelationNotFoundError):
            orders.create(uuid4(), "shop-awa", [LineRequest(product.id, 1)], test_actor_id)


class TestTransitions:

    def test_happy_path(self, orders, make_product, make_order, stock_ledger, test_actor_id):
        product = make_product(quantity=5)
        order = make_order(product, quantity=2)

        paid = _pay(orders, order, test_actor_id)
        assert paid.status == OrderStatus.PAID
        assert paid.stock_committed is True
        assert paid.payment_method == PaymentMethod.CASH
        assert stock_ledger.get(product.id).quantity == 3

        shipped = orders.mark_shipped(order.id, test_actor_id, shipping_address="Akwa, Douala")
        assert shipped.shipping_address == "Akwa, Douala"
        assert shipped.shipped_at is not None

        delivered = orders.mark_delivered(order.id, test_actor_id)
        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.revision == 4

    def test_skip_ahead_rejected(self, orders, make_product, make_order, test_actor_id):
        order = make_order(make_product())
        with pytest.raises(InvalidTransitionError):
            orders.mark_shipped(order.id, test_actor_id)

    def test_delivered_is_terminal(self, orders, make_product, make_order, test_actor_id):
        order = make_order(make_product())
        _pay(orders, order, test_actor_id)
        orders.mark_shipped(order.id, test_actor_id)
        orders.mark_delivered(order.id, test_actor_id)

        with pytest.raises(TerminalStateError):
            orders.cancel(order.id, "changed mind", test_actor_id)
        with pytest.raises(TerminalStateError):
            orders.report_problem(order.id, "late complaint", test_actor_id)

    def test_paid_requires_method(self, orders, make_product, make_order, test_actor_id):
        order = make_order(make_product())
        with pytest.raises(ValidationError):
            orders.transition(order.id, OrderStatus.PAID, test_actor_id)

    def test_unknown_target_rejected(self, orders, make_product, make_order, test_actor_id):
        order = make_order(make_product())
        with pytest.raises(ValidationError) as excinfo:
            orders.transition(order.id, "refunded", test_actor_id)

        assert excinfo.value.field == "target"
        assert orders.get(order.id).status == OrderStatus.PENDING

    def test_unknown_payment_method_moves_no_stock(
        self, orders, make_product, make_order, stock_ledger, test_actor_id,
    ):
        product = make_product(quantity=5)
        order = make_order(product, quantity=2)

        with pytest.raises(ValidationError, match="payment_method"):
            orders.transition(
                order.id, OrderStatus.PAID, test_actor_id, payment_method="paypal",
            )

        assert stock_ledger.get(product.id).quantity == 5
        assert orders.get(order.id).stock_committed is False

    def test_problem_requires_description(self, orders, make_product, make_order, test_actor_id):
        order = make_order(make_product())
        with pytest.raises(ValidationError):
            orders.report_problem(order.id, "   ", test_actor_id)

    def test_problem_records_description(self, orders, make_product, make_order, test_actor_id):
        order = make_order(make_product())
        info = orders.report_problem(
            order.id, "wrong size", test_actor_id, operator_notes="call buyer",
        )
        assert info.status == OrderStatus.PROBLEM
        assert info.problem_description == "wrong size"
        assert info.operator_notes == "call buyer"

    def test_unknown_order(self, orders, test_actor_id):
        with pytest.raises(OrderNotFoundError):
            orders.mark_delivered(uuid4(), test_actor_id)


class TestCancellation:

    def test_cancel_pending_moves_no_stock(
        self, orders, make_product, make_order, stock_ledger, test_actor_id,
    ):
        product = make_product(quantity=5)
        order = make_order(product, quantity=2)
        cancelled = orders.cancel(order.id, "buyer changed mind", test_actor_id)

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.cancellation_reason == "buyer changed mind"
        assert cancelled.stock_released is False
        assert stock_ledger.get(product.id).quantity == 5

    def test_cancel_paid_releases_once(
        self, orders, make_product, make_order, stock_ledger, test_actor_id,
    ):
        product = make_product(quantity=5)
        order = make_order(product, quantity=2)
        _pay(orders, order, test_actor_id)

        cancelled = orders.cancel(order.id, "out of town", test_actor_id)
        assert cancelled.stock_released is True
        assert stock_ledger.get(product.id).quantity == 5
        assert stock_ledger.get(product.id).units_sold == 0

        with pytest.raises(TerminalStateError):
            orders.cancel(order.id, "again", test_actor_id)
        assert stock_ledger.get(product.id).quantity == 5

    def test_cancel_via_generic_transition(self, orders, make_product, make_order, test_actor_id):
        order = make_order(make_product())
        info = orders.transition(order.id, "cancelled", test_actor_id, reason="duplicate")
        assert info.cancellation_reason == "duplicate"

    def test_cancel_problem_after_payment_releases(
        self, orders, make_product, make_order, stock_ledger, test_actor_id,
    ):
        product = make_product(quantity=3)
        order = make_order(product, quantity=1)
        _pay(orders, order, test_actor_id)
        orders.report_problem(order.id, "torn strap", test_actor_id)

        orders.cancel(order.id, "refunded", test_actor_id)
        assert stock_ledger.get(product.id).quantity == 3


class TestRevision:

    def test_stale_revision_rejected(self, orders, make_product, make_order, test_actor_id):
        order = make_order(make_product())
        _pay(orders, order, test_actor_id)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            orders.mark_shipped(order.id, test_actor_id, expected_revision=1)
        assert exc_info.value.expected_revision == 1
        assert exc_info.value.actual_revision == 2

    def test_current_revision_accepted(self, orders, make_product, make_order, test_actor_id):
        order = make_order(make_product())
        info = orders.cancel(order.id, "x", test_actor_id, expected_revision=1)
        assert info.revision == 2
