"""
PaymentValidationWorkflow -- the buyer-claims / operator-confirms handshake.

Responsibility:
    Records payment claims, and turns an operator's confirmation into one
    atomic unit: order pending -> paid, stock committed for every line,
    relation counters updated, confirmation message appended.

Architecture position:
    Kernel > Services -- composes OrderLifecycle, StockLedger (through
    OrderLifecycle), ClientRelationshipTracker and EscalationEngine within
    the caller's transaction.

Invariants enforced:
    - Confirmation is all-or-nothing.  It runs inside a savepoint; any
      failure rolls every step back.
    - Confirming twice never decrements twice: the second call sees the
      locked, already-paid order and raises AlreadyProcessedError.
    - A rejected claim returns the order to ``unclaimed`` with the rejection
      recorded; stock and order status are untouched.

Failure modes:
    - InsufficientStockError during confirmation is turned into the
      compensating action: the unit is rolled back, the order is moved to
      ``problem``, the conversation is escalated, and StockConflictError is
      raised.  The problem state is left flushed for the caller to commit.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from commerce_kernel.domain.clock import Clock
from commerce_kernel.domain.dtos import ClaimResult, OrderInfo
from commerce_kernel.domain.replies import MessageCatalog, order_ref
from commerce_kernel.domain.values import (
    ClaimStatus,
    EscalationReason,
    OrderStatus,
    PaymentMethod,
    parse_choice,
)
from commerce_kernel.domain.workflows import (
    CLAIM_WORKFLOW,
    ORDER_WORKFLOW,
    STOCK_COMMITTED_STATES,
)
from commerce_kernel.exceptions import (
    AlreadyProcessedError,
    InsufficientStockError,
    InvalidStateError,
    OrderNotFoundError,
    StockConflictError,
    TerminalStateError,
    ValidationError,
)
from commerce_kernel.logging_config import get_logger
from commerce_kernel.models.order import Order
from commerce_kernel.models.product import Product
from commerce_kernel.services.base import BaseService
from commerce_kernel.services.escalation_engine import EscalationEngine
from commerce_kernel.services.order_lifecycle import OrderLifecycle
from commerce_kernel.services.relationship_tracker import ClientRelationshipTracker

logger = get_logger("services.payment_workflow")


class PaymentValidationWorkflow(BaseService[Order]):

    model = Order

    def __init__(
        self,
        session: Session,
        orders: OrderLifecycle,
        escalation: EscalationEngine,
        relations: ClientRelationshipTracker | None = None,
        clock: Clock | None = None,
        messages: MessageCatalog | None = None,
    ):
        super().__init__(session, clock)
        self.orders = orders
        self.escalation = escalation
        self.relations = relations or escalation.relations
        self.messages = messages or MessageCatalog()

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim_payment(
        self,
        order_id: UUID,
        actor_id: str,
        buyer_reference: str | None = None,
        note: str | None = None,
    ) -> ClaimResult:
        """
        Record the buyer's claim that payment was sent.

        The claim is announced in the conversation, the conversation is
        escalated with reason payment_validation, and the agent's reply to
        the buyer is appended and returned.

        Raises:
            TerminalStateError: order delivered or cancelled.
            InvalidStateError: order not pending, or a claim already pending.
        """
        order = self.orders.lock(order_id)
        if ORDER_WORKFLOW.is_terminal(order.status):
            raise TerminalStateError("Order", str(order.id), order.status)
        if order.status != OrderStatus.PENDING.value:
            raise InvalidStateError(
                "Order", str(order.id), order.status,
                "payment can only be claimed on a pending order",
            )
        if CLAIM_WORKFLOW.find(order.claim_status, ClaimStatus.CLAIM_PENDING) is None:
            raise InvalidStateError(
                "Order", str(order.id), order.claim_status,
                "a payment claim is already awaiting confirmation",
            )

        order.claim_status = ClaimStatus.CLAIM_PENDING.value
        order.buyer_reference = buyer_reference
        order.claim_note = note
        order.claimed_at = self.clock.now()
        self.orders.touch(order, actor_id)

        conversation = self.escalation.conversation_for_order(order, actor_id)
        ref = order_ref(order.id)
        self.escalation.system_notice(
            conversation,
            self.messages.render(
                "payment_claimed",
                order_ref=ref,
                amount=order.final_amount,
                reference=f" (reference {buyer_reference})" if buyer_reference else "",
            ),
            actor_id,
            order_id=order.id,
        )
        newly_escalated = self.escalation.escalate_conversation(
            conversation,
            EscalationReason.PAYMENT_VALIDATION,
            actor_id,
            note=f"payment claimed for order {ref}",
        )

        template = "claim_reply_with_reference" if buyer_reference else "claim_reply"
        reply = self.messages.render(
            template, amount=order.final_amount, reference=buyer_reference,
            order_ref=ref,
        )
        self.escalation.agent_reply(conversation, reply, actor_id)

        logger.info(
            "payment_claimed",
            extra={
                "order_id": str(order.id),
                "conversation_id": str(conversation.id),
                "has_reference": buyer_reference is not None,
            },
        )
        return ClaimResult(
            order=order.to_dto(),
            reply=reply,
            escalated_conversation_id=conversation.id,
            newly_escalated=newly_escalated,
        )

    def claim_latest_payment(
        self,
        buyer_ref: str,
        merchant_ref: str,
        actor_id: str,
        buyer_reference: str | None = None,
        note: str | None = None,
    ) -> ClaimResult:
        """Claim payment on the buyer's most recent pending order."""
        relation = self.relations.find(buyer_ref, merchant_ref)
        order_id = None
        if relation is not None:
            order_id = self.session.execute(
                select(Order.id)
                .where(
                    Order.relation_id == relation.id,
                    Order.status == OrderStatus.PENDING.value,
                )
                .order_by(Order.placed_at.desc(), Order.revision.asc())
                .limit(1)
            ).scalar_one_or_none()
        if order_id is None:
            raise OrderNotFoundError(f"pending order for {buyer_ref}@{merchant_ref}")
        return self.claim_payment(
            order_id, actor_id, buyer_reference=buyer_reference, note=note,
        )

    # ------------------------------------------------------------------
    # Confirm
    # ------------------------------------------------------------------

    def confirm_payment(
        self,
        order_id: UUID,
        payment_method: PaymentMethod | str,
        operator_id: str,
        operator_reference: str | None = None,
        expected_revision: int | None = None,
    ) -> OrderInfo:
        """
        Confirm payment as one unit.

        Allowed with a pending claim or proactively without one.

        Raises:
            ValidationError: unknown payment method.
            AlreadyProcessedError: payment already confirmed.
            InvalidStateError: order is in problem.
            TerminalStateError: order is cancelled.
            ConcurrentModificationError: stale ``expected_revision``.
            StockConflictError: not enough stock; order moved to problem.
        """
        method = parse_choice(PaymentMethod, payment_method, "payment_method")

        order = self.orders.lock(order_id)
        if (
            order.status in STOCK_COMMITTED_STATES
            or order.claim_status == ClaimStatus.CONFIRMED.value
        ):
            raise AlreadyProcessedError(str(order.id), order.status)
        if ORDER_WORKFLOW.is_terminal(order.status):
            raise TerminalStateError("Order", str(order.id), order.status)
        if order.status == OrderStatus.PROBLEM.value:
            raise InvalidStateError(
                "Order", str(order.id), order.status,
                "payment cannot be confirmed on an order with a problem",
            )
        self.orders.check_revision(order, expected_revision)

        savepoint = self.session.begin_nested()
        try:
            self.orders.apply(
                order,
                OrderStatus.PAID,
                operator_id,
                payment_method=method,
                payment_reference=operator_reference,
            )
            order.claim_status = ClaimStatus.CONFIRMED.value
            now = self.clock.now()
            self.relations.record_purchase(
                order.relation_id, order.final_amount, now, operator_id,
            )
            conversation = self.escalation.conversation_for_order(order, operator_id)
            self.escalation.system_notice(
                conversation,
                self.messages.render(
                    "payment_confirmed",
                    order_ref=order_ref(order.id),
                    amount=order.final_amount,
                    method=method.value,
                ),
                operator_id,
                order_id=order.id,
            )
            self.session.flush()
            savepoint.commit()
        except InsufficientStockError as exc:
            savepoint.rollback()
            conversation_id, newly_escalated = self._park_in_problem(
                order_id, operator_id, exc,
            )
            raise StockConflictError(
                str(order_id), exc.product_id, exc.requested, exc.available,
                conversation_id=str(conversation_id),
                newly_escalated=newly_escalated,
            ) from exc
        except Exception:
            if savepoint.is_active:
                savepoint.rollback()
            raise

        logger.info(
            "payment_confirmed",
            extra={
                "order_id": str(order.id),
                "payment_method": method.value,
                "final_amount": str(order.final_amount),
                "revision": order.revision,
            },
        )
        return order.to_dto()

    def _park_in_problem(
        self, order_id: UUID, operator_id: str, exc: InsufficientStockError,
    ) -> tuple[UUID, bool]:
        """Move the order to problem; returns (notified conversation id, newly escalated)."""
        order = self.orders.lock(order_id)
        product = self.session.get(Product, UUID(exc.product_id))
        product_name = product.name if product is not None else exc.product_id
        description = (
            f"Insufficient stock for {product_name}: "
            f"requested {exc.requested}, available {exc.available}"
        )
        self.orders.apply(
            order, OrderStatus.PROBLEM, operator_id, description=description,
        )

        conversation = self.escalation.conversation_for_order(order, operator_id)
        self.escalation.system_notice(
            conversation,
            self.messages.render(
                "stock_conflict",
                order_ref=order_ref(order.id),
                product_name=product_name,
                requested=exc.requested,
                available=exc.available,
            ),
            operator_id,
            order_id=order.id,
        )
        newly_escalated = self.escalation.escalate_conversation(
            conversation, EscalationReason.OTHER, operator_id, note=description,
        )

        logger.warning(
            "payment_confirm_stock_conflict",
            extra={
                "order_id": str(order.id),
                "product_id": exc.product_id,
                "requested": exc.requested,
                "available": exc.available,
            },
        )
        return conversation.id, newly_escalated

    # ------------------------------------------------------------------
    # Reject
    # ------------------------------------------------------------------

    def reject_payment(
        self, order_id: UUID, reason: str, operator_id: str,
    ) -> OrderInfo:
        """
        Reject a pending claim.  The buyer may claim again afterwards.

        Raises:
            ValidationError: empty reason.
            TerminalStateError: order delivered or cancelled.
            InvalidStateError: no claim is pending.
        """
        if not reason or not reason.strip():
            raise ValidationError("A rejection needs a reason", field="reason")

        order = self.orders.lock(order_id)
        if ORDER_WORKFLOW.is_terminal(order.status):
            raise TerminalStateError("Order", str(order.id), order.status)
        if order.claim_status != ClaimStatus.CLAIM_PENDING.value:
            raise InvalidStateError(
                "Order", str(order.id), order.claim_status,
                "no payment claim is awaiting confirmation",
            )

        order.claim_status = ClaimStatus.UNCLAIMED.value
        order.payment_rejected = True
        order.rejection_reason = reason.strip()
        order.rejected_by = operator_id
        order.rejected_at = self.clock.now()
        order.rejection_count += 1
        self.orders.touch(order, operator_id)

        conversation = self.escalation.conversation_for_order(order, operator_id)
        self.escalation.system_notice(
            conversation,
            self.messages.render(
                "payment_rejected",
                order_ref=order_ref(order.id),
                reason=order.rejection_reason,
            ),
            operator_id,
            order_id=order.id,
        )

        logger.info(
            "payment_rejected",
            extra={
                "order_id": str(order.id),
                "rejection_count": order.rejection_count,
            },
        )
        return order.to_dto()
