"""
OrderLifecycle -- the order state machine.

Responsibility:
    Creates orders, applies legal status transitions, and commits or
    releases stock through StockLedger as those transitions require.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Legal transitions
    come from ``ORDER_WORKFLOW`` in ``commerce_kernel.domain.workflows``.

Invariants enforced:
    - Only transitions in ORDER_WORKFLOW are applied; delivered and
      cancelled orders accept no mutation.
    - Every mutation takes the order row lock first and bumps ``revision``.
      A caller holding a stale revision gets ConcurrentModificationError.
    - Stock is committed at most once and released at most once, and only
      after it was committed (``stock_committed`` / ``stock_released``).
    - Products are locked in sorted id order when several move together.
    - Line prices are snapshots; totals are always recomputed here.

Failure modes:
    - ValidationError on create (nothing is written).
    - InvalidTransitionError / TerminalStateError on illegal transitions.
    - InsufficientStockError from commit_stock.  Adjustments already
      applied are NOT undone here; the caller runs commit_stock inside a
      savepoint (see PaymentValidationWorkflow.confirm_payment).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from commerce_kernel.db.types import round_money, to_money
from commerce_kernel.domain.clock import Clock
from commerce_kernel.domain.dtos import LineRequest, OrderInfo
from commerce_kernel.domain.values import (
    ClaimStatus,
    OrderStatus,
    PaymentMethod,
    ProductStatus,
    parse_choice,
)
from commerce_kernel.domain.workflows import ORDER_WORKFLOW
from commerce_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    OrderNotFoundError,
    RelationNotFoundError,
    TerminalStateError,
    ValidationError,
)
from commerce_kernel.logging_config import get_logger
from commerce_kernel.models.order import Order, OrderLine
from commerce_kernel.models.product import Product
from commerce_kernel.models.relation import ClientMerchantRelation
from commerce_kernel.services.base import BaseService
from commerce_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.order_lifecycle")


class OrderLifecycle(BaseService[Order]):
    """
    Order creation and transitions.

    Contract:
        Public mutators return a fresh ``OrderInfo``.  ``lock`` and the
        stock helpers work on the ORM row and are meant for
        PaymentValidationWorkflow, which composes them into one unit.
    """

    model = Order

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        stock_ledger: StockLedger | None = None,
    ):
        super().__init__(session, clock)
        self.stock = stock_ledger or StockLedger(session, self.clock)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        relation_id: UUID,
        merchant_ref: str,
        lines: Sequence[LineRequest],
        actor_id: str,
        conversation_id: UUID | None = None,
        discount: Decimal | int | str = 0,
    ) -> OrderInfo:
        """
        Create a pending, unclaimed order at revision 1.  No stock moves.

        Raises:
            RelationNotFoundError: unknown relation.
            ValidationError: any line or amount check fails.
        """
        relation = self.session.get(ClientMerchantRelation, relation_id)
        if relation is None:
            raise RelationNotFoundError(str(relation_id))
        if relation.merchant_ref != merchant_ref:
            raise ValidationError(
                f"Relation {relation_id} belongs to merchant "
                f"{relation.merchant_ref}, not {merchant_ref}",
                field="merchant_ref",
            )
        if not lines:
            raise ValidationError("An order needs at least one line", field="lines")

        discount_amount = to_money(discount)
        if discount_amount < 0:
            raise ValidationError("Discount must not be negative", field="discount")

        requested: dict[UUID, int] = {}
        priced: list[tuple[Product, int, Decimal]] = []
        for request in lines:
            if not isinstance(request.quantity, int) or request.quantity <= 0:
                raise ValidationError(
                    f"Quantity for product {request.product_id} must be a "
                    f"positive integer, got {request.quantity!r}",
                    field="quantity",
                )
            product = self.session.get(Product, request.product_id)
            if product is None:
                raise ValidationError(
                    f"Unknown product {request.product_id}", field="product_id",
                )
            if product.merchant_ref != merchant_ref:
                raise ValidationError(
                    f"Product {product.id} is not sold by merchant {merchant_ref}",
                    field="product_id",
                )
            if product.status != ProductStatus.AVAILABLE.value:
                raise ValidationError(
                    f"Product {product.name} is {product.status}",
                    field="product_id",
                )
            unit_price = self._unit_price(product, request.unit_price)
            requested[product.id] = requested.get(product.id, 0) + request.quantity
            priced.append((product, request.quantity, unit_price))

        for product_id, quantity in requested.items():
            product = self.session.get(Product, product_id)
            if quantity > product.quantity:
                raise ValidationError(
                    f"Requested {quantity} of {product.name}, only "
                    f"{product.quantity} on hand",
                    field="quantity",
                )

        total = round_money(
            sum((price * qty for _, qty, price in priced), Decimal("0"))
        )
        final = round_money(total - discount_amount)
        if final <= 0:
            raise ValidationError(
                f"Final amount must be positive (total {total}, "
                f"discount {discount_amount})",
                field="discount",
            )

        order = Order(
            relation_id=relation_id,
            merchant_ref=merchant_ref,
            conversation_id=conversation_id,
            status=OrderStatus.PENDING.value,
            claim_status=ClaimStatus.UNCLAIMED.value,
            total_amount=total,
            discount_amount=discount_amount,
            final_amount=final,
            payment_rejected=False,
            rejection_count=0,
            stock_committed=False,
            stock_released=False,
            revision=1,
            placed_at=self.clock.now(),
            created_by=actor_id,
        )
        for line_no, (product, qty, price) in enumerate(priced, start=1):
            order.lines.append(
                OrderLine(
                    line_no=line_no,
                    product_id=product.id,
                    product_name=product.name,
                    unit_price=price,
                    quantity=qty,
                    line_total=round_money(price * qty),
                )
            )
        self.session.add(order)
        self.session.flush()

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "relation_id": str(relation_id),
                "line_count": len(priced),
                "final_amount": str(final),
            },
        )
        return order.to_dto()

    @staticmethod
    def _unit_price(product: Product, negotiated: Decimal | None) -> Decimal:
        if negotiated is None:
            return product.display_price
        price = to_money(negotiated)
        if price < product.floor_price or price > product.display_price:
            raise ValidationError(
                f"Price {price} for {product.name} must lie between "
                f"{product.floor_price} and {product.display_price}",
                field="unit_price",
            )
        return price

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        order_id: UUID,
        target: OrderStatus | str,
        actor_id: str,
        expected_revision: int | None = None,
        **payload: Any,
    ) -> OrderInfo:
        """
        Apply one legal transition.

        Payload by target:
            paid       -- payment_method (required), payment_reference
            shipped    -- shipping_address, expected_delivery_at
            delivered  -- nothing; delivered_at is stamped
            problem    -- description (required), operator_notes
            cancelled  -- reason (routed through ``cancel``)
        """
        target = parse_choice(OrderStatus, target, "target")
        if target == OrderStatus.CANCELLED:
            return self.cancel(
                order_id,
                payload.get("reason"),
                actor_id,
                expected_revision=expected_revision,
            )

        order = self.lock(order_id)
        self.check_revision(order, expected_revision)
        self.apply(order, target, actor_id, **payload)
        return order.to_dto()

    def apply(self, order: Order, target: OrderStatus, actor_id: str, **payload: Any) -> None:
        """Apply a transition to an already-locked order row."""
        current = order.status
        if ORDER_WORKFLOW.is_terminal(current):
            raise TerminalStateError("Order", str(order.id), current)
        transition = ORDER_WORKFLOW.find(current, target)
        if transition is None:
            raise InvalidTransitionError("Order", str(order.id), current, target.value)

        now = self.clock.now()
        if target == OrderStatus.PAID:
            method = payload.get("payment_method")
            if method is None:
                raise ValidationError(
                    "Confirming payment requires a payment method",
                    field="payment_method",
                )
            method = parse_choice(PaymentMethod, method, "payment_method")
            order.payment_method = method.value
            if payload.get("payment_reference"):
                order.payment_reference = payload["payment_reference"]
            order.validated_at = now
            order.validated_by = actor_id
        elif target == OrderStatus.SHIPPED:
            if payload.get("shipping_address"):
                order.shipping_address = payload["shipping_address"]
            expected: datetime | None = payload.get("expected_delivery_at")
            if expected is not None:
                order.expected_delivery_at = expected
            order.shipped_at = now
        elif target == OrderStatus.DELIVERED:
            order.delivered_at = now
        elif target == OrderStatus.PROBLEM:
            description = (payload.get("description") or "").strip()
            if not description:
                raise ValidationError(
                    "A problem report needs a description", field="description",
                )
            order.problem_description = description
            if payload.get("operator_notes"):
                order.operator_notes = payload["operator_notes"]

        if transition.moves_stock:
            if target == OrderStatus.CANCELLED:
                self.release_stock(order, actor_id)
            else:
                self.commit_stock(order, actor_id)
        order.status = target.value
        self._bump(order, actor_id)

        logger.info(
            "order_transitioned",
            extra={
                "order_id": str(order.id),
                "from_state": current,
                "to_state": target.value,
                "revision": order.revision,
            },
        )

    def cancel(
        self,
        order_id: UUID,
        reason: str | None,
        actor_id: str,
        expected_revision: int | None = None,
    ) -> OrderInfo:
        """
        Cancel an order, releasing committed stock exactly once.

        Raises:
            TerminalStateError: the order is delivered or already cancelled.
        """
        order = self.lock(order_id)
        self.check_revision(order, expected_revision)

        current = order.status
        if ORDER_WORKFLOW.is_terminal(current):
            raise TerminalStateError("Order", str(order.id), current)
        transition = ORDER_WORKFLOW.find(current, OrderStatus.CANCELLED)
        if transition is None:
            raise InvalidTransitionError(
                "Order", str(order.id), current, OrderStatus.CANCELLED.value,
            )

        released = transition.moves_stock and self.release_stock(order, actor_id)
        order.status = OrderStatus.CANCELLED.value
        order.cancellation_reason = reason
        self._bump(order, actor_id)

        logger.info(
            "order_cancelled",
            extra={
                "order_id": str(order.id),
                "from_state": current,
                "stock_released": released,
            },
        )
        return order.to_dto()

    def mark_shipped(
        self,
        order_id: UUID,
        actor_id: str,
        shipping_address: str | None = None,
        expected_delivery_at: datetime | None = None,
        expected_revision: int | None = None,
    ) -> OrderInfo:
        return self.transition(
            order_id,
            OrderStatus.SHIPPED,
            actor_id,
            expected_revision=expected_revision,
            shipping_address=shipping_address,
            expected_delivery_at=expected_delivery_at,
        )

    def mark_delivered(
        self, order_id: UUID, actor_id: str, expected_revision: int | None = None,
    ) -> OrderInfo:
        return self.transition(
            order_id, OrderStatus.DELIVERED, actor_id,
            expected_revision=expected_revision,
        )

    def report_problem(
        self,
        order_id: UUID,
        description: str,
        actor_id: str,
        operator_notes: str | None = None,
        expected_revision: int | None = None,
    ) -> OrderInfo:
        return self.transition(
            order_id,
            OrderStatus.PROBLEM,
            actor_id,
            expected_revision=expected_revision,
            description=description,
            operator_notes=operator_notes,
        )

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def commit_stock(self, order: Order, actor_id: str) -> bool:
        """Decrement every line's product.  Returns False if already committed."""
        if order.stock_committed:
            return False
        for product_id, quantity in _sorted_quantities(order):
            self.stock.adjust(product_id, -quantity, actor_id)
        order.stock_committed = True
        return True

    def release_stock(self, order: Order, actor_id: str) -> bool:
        """Restore committed stock.  Returns False if nothing to release."""
        if not order.stock_committed or order.stock_released:
            return False
        for product_id, quantity in _sorted_quantities(order):
            self.stock.adjust(product_id, quantity, actor_id)
        order.stock_released = True
        return True

    # ------------------------------------------------------------------
    # Row access
    # ------------------------------------------------------------------

    def get(self, order_id: UUID) -> OrderInfo:
        order = self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order.to_dto()

    def lock(self, order_id: UUID) -> Order:
        order = self._select_for_update(order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    @staticmethod
    def check_revision(order: Order, expected_revision: int | None) -> None:
        if expected_revision is not None and expected_revision != order.revision:
            raise ConcurrentModificationError(
                "Order", str(order.id), expected_revision, order.revision,
            )

    def touch(self, order: Order, actor_id: str) -> None:
        """Record a non-status mutation (claim, rejection) on a locked order."""
        self._bump(order, actor_id)

    def _bump(self, order: Order, actor_id: str) -> None:
        order.revision += 1
        order.updated_by = actor_id
        self.session.flush()


def _sorted_quantities(order: Order) -> list[tuple[UUID, int]]:
    return sorted(order.quantities_by_product().items(), key=lambda item: str(item[0]))
