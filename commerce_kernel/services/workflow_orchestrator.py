"""
WorkflowOrchestrator -- public entry point and transaction owner.

Responsibility:
    Wires the five kernel services onto one session and exposes every
    operation the calling layer (agent runtime, operator dashboard) needs.
    Each call is one unit of work:

        bind log context -> run services (flush only) -> commit
        -> publish domain events

    On failure the unit is rolled back and the error re-raised; transient
    database failures are retried first.

Architecture position:
    Kernel > Services -- the only kernel component that commits.  Settings
    are kernel value objects (WorkflowSettings); ``commerce_config.bridges``
    builds them from the YAML configuration.

Invariants enforced:
    - Services never commit; this class commits once per call (when
      ``auto_commit`` is on).
    - Events are published only after the commit that made them true.  With
      ``auto_commit=False`` they are queued until ``publish_pending`` is
      called by whoever commits.
    - StockConflictError is the one failure that commits: the compensating
      ``problem`` state is persisted before the error propagates.
    - Domain errors are never retried.

Failure modes:
    - Any CommerceKernelError from the services, unchanged.
    - The last transient DBAPIError once ``max_transient_retries`` is spent.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from commerce_kernel.db.engine import is_transient_error
from commerce_kernel.domain.classifier import EscalationRules
from commerce_kernel.domain.clock import Clock, SystemClock
from commerce_kernel.domain.dtos import (
    ClaimResult,
    ConversationInfo,
    IngestResult,
    LineRequest,
    MessageInfo,
    OrderInfo,
    ProductInfo,
)
from commerce_kernel.domain.events import DomainEvent, EventBus, EventType
from commerce_kernel.domain.replies import MessageCatalog, order_ref
from commerce_kernel.domain.values import (
    EscalationReason,
    MessageKind,
    OrderStatus,
    PaymentMethod,
    parse_choice,
)
from commerce_kernel.exceptions import StockConflictError
from commerce_kernel.logging_config import LogContext, get_logger
from commerce_kernel.models.order import Order
from commerce_kernel.services.escalation_engine import EscalationEngine
from commerce_kernel.services.order_lifecycle import OrderLifecycle
from commerce_kernel.services.payment_workflow import PaymentValidationWorkflow
from commerce_kernel.services.relationship_tracker import ClientRelationshipTracker
from commerce_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.workflow_orchestrator")

T = TypeVar("T")


@dataclass(frozen=True)
class WorkflowSettings:
    """Runtime knobs for the orchestrator, built from configuration."""

    rules: EscalationRules
    messages: MessageCatalog = field(default_factory=MessageCatalog)
    auto_escalate: bool = True
    resolve_on_confirm: bool = False
    max_transient_retries: int = 3


class WorkflowOrchestrator:
    """
    Facade over the kernel services for one session.

    Usage:
        with session_scope() as session:   # or a session per request
            engine = WorkflowOrchestrator(session, settings)
            result = engine.ingest_message("buyer-1", "shop-9", "hi", "agent")
    """

    def __init__(
        self,
        session: Session,
        settings: WorkflowSettings,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        auto_commit: bool = True,
    ):
        self.session = session
        self.settings = settings
        self.clock = clock or SystemClock()
        self.event_bus = event_bus or EventBus()
        self._auto_commit = auto_commit
        self._pending: list[DomainEvent] = []

        self.stock = StockLedger(session, self.clock)
        self.relations = ClientRelationshipTracker(session, self.clock)
        self.orders = OrderLifecycle(session, self.clock, stock_ledger=self.stock)
        self.escalation = EscalationEngine(
            session,
            settings.rules,
            clock=self.clock,
            auto_escalate=settings.auto_escalate,
            relations=self.relations,
        )
        self.payments = PaymentValidationWorkflow(
            session,
            self.orders,
            self.escalation,
            relations=self.relations,
            clock=self.clock,
            messages=settings.messages,
        )

    # ------------------------------------------------------------------
    # Unit-of-work plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        actor_id: str,
        work: Callable[[list[DomainEvent]], T],
        **context: Any,
    ) -> T:
        correlation_id = str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            actor_id=actor_id,
            merchant_ref=context.pop("merchant_ref", None),
            order_id=context.pop("order_id", None),
            conversation_id=context.pop("conversation_id", None),
        ):
            logger.info(f"{operation}_started", extra=context)
            t0 = time.monotonic()
            attempt = 0
            while True:
                attempt += 1
                events: list[DomainEvent] = []
                try:
                    result = work(events)
                    if self._auto_commit:
                        self.session.commit()
                except StockConflictError as exc:
                    duration_ms = round((time.monotonic() - t0) * 1000, 2)
                    events.extend(self._stock_conflict_events(exc, actor_id))
                    if self._auto_commit:
                        self.session.commit()
                    self._dispatch(events)
                    logger.error(
                        f"{operation}_failed",
                        extra={"duration_ms": duration_ms, "attempt": attempt},
                        exc_info=True,
                    )
                    raise
                except Exception as exc:
                    duration_ms = round((time.monotonic() - t0) * 1000, 2)
                    if self._auto_commit:
                        self.session.rollback()
                        if (
                            is_transient_error(exc)
                            and attempt <= self.settings.max_transient_retries
                        ):
                            logger.warning(
                                f"{operation}_retrying",
                                extra={"attempt": attempt, "duration_ms": duration_ms},
                            )
                            continue
                    logger.error(
                        f"{operation}_failed",
                        extra={"duration_ms": duration_ms, "attempt": attempt},
                        exc_info=True,
                    )
                    raise

                self._dispatch(events)
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.info(
                    f"{operation}_completed",
                    extra={
                        "duration_ms": duration_ms,
                        "attempt": attempt,
                        "event_count": len(events),
                    },
                )
                return result

    def _dispatch(self, events: list[DomainEvent]) -> None:
        if self._auto_commit:
            self.event_bus.publish_all(events)
        else:
            self._pending.extend(events)

    def publish_pending(self) -> int:
        """Publish events queued under ``auto_commit=False``.  Call after commit."""
        events, self._pending = self._pending, []
        self.event_bus.publish_all(events)
        return len(events)

    def discard_pending(self) -> None:
        """Drop queued events after the caller rolled back."""
        self._pending = []

    def _event(
        self,
        event_type: EventType,
        actor_id: str,
        merchant_ref: str,
        order_id: UUID | None = None,
        conversation_id: UUID | None = None,
        **payload: Any,
    ) -> DomainEvent:
        return DomainEvent(
            event_type=event_type,
            occurred_at=self.clock.now(),
            merchant_ref=merchant_ref,
            actor_id=actor_id,
            order_id=order_id,
            conversation_id=conversation_id,
            payload=payload,
        )

    def _stock_conflict_events(
        self, exc: StockConflictError, actor_id: str,
    ) -> list[DomainEvent]:
        order = self.session.get(Order, UUID(exc.order_id))
        if order is None:
            return []
        conversation_id = UUID(exc.conversation_id) if exc.conversation_id else None
        events = [
            self._event(
                EventType.ORDER_PROBLEM, actor_id, order.merchant_ref,
                order_id=order.id, conversation_id=conversation_id,
                description=order.problem_description,
                product_id=exc.product_id,
            ),
        ]
        if exc.newly_escalated:
            events.append(self._event(
                EventType.CONVERSATION_ESCALATED, actor_id, order.merchant_ref,
                order_id=order.id, conversation_id=conversation_id,
                reason=EscalationReason.OTHER.value,
            ))
        return events

    def _notify_order(
        self, order_id: UUID, template: str, actor_id: str, **values: Any,
    ) -> UUID:
        """Append an order notice to its conversation; returns the conversation id."""
        order = self.orders.lock(order_id)
        conversation = self.escalation.conversation_for_order(order, actor_id)
        self.escalation.system_notice(
            conversation,
            self.settings.messages.render(
                template, order_ref=order_ref(order.id), **values,
            ),
            actor_id,
            order_id=order.id,
        )
        return conversation.id

    def _escalate(
        self,
        conversation_id: UUID,
        reason: EscalationReason,
        actor_id: str,
        note: str | None,
    ) -> tuple[ConversationInfo, bool]:
        """Escalate under a row lock; the flag is False when it only added a note."""
        conversation = self.escalation.lock(conversation_id)
        fresh = self.escalation.escalate_conversation(conversation, reason, actor_id, note)
        return conversation.to_dto(), fresh

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def register_product(
        self,
        merchant_ref: str,
        name: str,
        display_price: Decimal | int | str,
        actor_id: str,
        floor_price: Decimal | int | str | None = None,
        quantity: int = 0,
    ) -> ProductInfo:
        return self._run(
            "product_registration",
            actor_id,
            lambda events: self.stock.register_product(
                merchant_ref, name, display_price, actor_id,
                floor_price=floor_price, quantity=quantity,
            ),
            merchant_ref=merchant_ref,
        )

    def adjust_stock(self, product_id: UUID, delta: int, actor_id: str) -> ProductInfo:
        return self._run(
            "stock_adjustment",
            actor_id,
            lambda events: self.stock.adjust(product_id, delta, actor_id),
            product_id=str(product_id),
            delta=delta,
        )

    def restock(self, product_id: UUID, quantity: int, actor_id: str) -> ProductInfo:
        return self._run(
            "restock",
            actor_id,
            lambda events: self.stock.restock(product_id, quantity, actor_id),
            product_id=str(product_id),
            quantity=quantity,
        )

    def discontinue_product(self, product_id: UUID, actor_id: str) -> ProductInfo:
        return self._run(
            "product_discontinue",
            actor_id,
            lambda events: self.stock.discontinue(product_id, actor_id),
            product_id=str(product_id),
        )

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def ingest_message(
        self,
        buyer_ref: str,
        merchant_ref: str,
        text: str,
        actor_id: str,
        buyer_name: str | None = None,
        kind: MessageKind | str = MessageKind.TEXT,
    ) -> IngestResult:
        def work(events: list[DomainEvent]) -> IngestResult:
            result = self.escalation.ingest(
                buyer_ref, merchant_ref, text, actor_id,
                buyer_name=buyer_name, kind=kind,
            )
            if result.newly_escalated:
                events.append(self._event(
                    EventType.CONVERSATION_ESCALATED, actor_id, merchant_ref,
                    conversation_id=result.conversation.id,
                    reason=result.classification.reason.value,
                    matched=result.classification.matched,
                ))
            return result

        return self._run(
            "message_ingest", actor_id, work,
            merchant_ref=merchant_ref, buyer_ref=buyer_ref,
        )

    def post_agent_reply(
        self,
        conversation_id: UUID,
        text: str,
        actor_id: str,
        confidence: float | None = None,
    ) -> MessageInfo:
        return self._run(
            "agent_reply",
            actor_id,
            lambda events: self.escalation.post_agent_reply(
                conversation_id, text, actor_id, confidence=confidence,
            ),
            conversation_id=str(conversation_id),
        )

    def post_operator_message(
        self, conversation_id: UUID, text: str, operator_id: str,
    ) -> MessageInfo:
        return self._run(
            "operator_message",
            operator_id,
            lambda events: self.escalation.append_message(
                conversation_id, "operator", text, operator_id,
            ),
            conversation_id=str(conversation_id),
        )

    def escalate(
        self,
        conversation_id: UUID,
        reason: EscalationReason | str,
        actor_id: str,
        note: str | None = None,
    ) -> ConversationInfo:
        reason = parse_choice(EscalationReason, reason, "reason")

        def work(events: list[DomainEvent]) -> ConversationInfo:
            info, fresh = self._escalate(conversation_id, reason, actor_id, note)
            if fresh:
                events.append(self._event(
                    EventType.CONVERSATION_ESCALATED, actor_id, info.merchant_ref,
                    conversation_id=info.id, reason=info.escalation_reason.value,
                ))
            return info

        return self._run(
            "conversation_escalation", actor_id, work,
            conversation_id=str(conversation_id),
        )

    def resolve_conversation(
        self, conversation_id: UUID, actor_id: str, note: str | None = None,
    ) -> ConversationInfo:
        def work(events: list[DomainEvent]) -> ConversationInfo:
            info = self.escalation.resolve(conversation_id, actor_id, note=note)
            events.append(self._event(
                EventType.CONVERSATION_RESOLVED, actor_id, info.merchant_ref,
                conversation_id=info.id,
            ))
            return info

        return self._run(
            "conversation_resolution", actor_id, work,
            conversation_id=str(conversation_id),
        )

    def close_conversation(self, conversation_id: UUID, actor_id: str) -> ConversationInfo:
        def work(events: list[DomainEvent]) -> ConversationInfo:
            info = self.escalation.close(conversation_id, actor_id)
            events.append(self._event(
                EventType.CONVERSATION_CLOSED, actor_id, info.merchant_ref,
                conversation_id=info.id,
            ))
            return info

        return self._run(
            "conversation_close", actor_id, work,
            conversation_id=str(conversation_id),
        )

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order(
        self,
        relation_id: UUID,
        merchant_ref: str,
        lines: Sequence[LineRequest],
        actor_id: str,
        conversation_id: UUID | None = None,
        discount: Decimal | int | str = 0,
    ) -> OrderInfo:
        """
        Create an order.  Without an explicit conversation the order is
        attached to the relation's active conversation (started if needed).
        """
        def work(events: list[DomainEvent]) -> OrderInfo:
            conv_id = conversation_id
            if conv_id is None:
                conv_id = self.escalation.ensure_conversation(
                    relation_id, merchant_ref, actor_id,
                ).id
            info = self.orders.create(
                relation_id, merchant_ref, lines, actor_id,
                conversation_id=conv_id, discount=discount,
            )
            events.append(self._event(
                EventType.ORDER_CREATED, actor_id, merchant_ref,
                order_id=info.id, conversation_id=info.conversation_id,
                final_amount=str(info.final_amount),
            ))
            return info

        return self._run(
            "order_creation", actor_id, work,
            merchant_ref=merchant_ref, relation_id=str(relation_id),
        )

    def transition_order(
        self,
        order_id: UUID,
        target: OrderStatus | str,
        actor_id: str,
        expected_revision: int | None = None,
        **payload: Any,
    ) -> OrderInfo:
        """Generic transition.  Prefer the named operations, which also notify."""
        target = parse_choice(OrderStatus, target, "target")
        if target == OrderStatus.SHIPPED:
            return self.mark_shipped(
                order_id, actor_id,
                shipping_address=payload.get("shipping_address"),
                expected_delivery_at=payload.get("expected_delivery_at"),
                expected_revision=expected_revision,
            )
        if target == OrderStatus.DELIVERED:
            return self.mark_delivered(
                order_id, actor_id, expected_revision=expected_revision,
            )
        if target == OrderStatus.PROBLEM:
            return self.report_problem(
                order_id, payload.get("description") or "", actor_id,
                operator_notes=payload.get("operator_notes"),
                expected_revision=expected_revision,
            )
        if target == OrderStatus.CANCELLED:
            return self.cancel_order(
                order_id, payload.get("reason"), actor_id,
                expected_revision=expected_revision,
            )
        if target == OrderStatus.PAID:
            return self.confirm_payment(
                order_id,
                payload.get("payment_method"),
                actor_id,
                operator_reference=payload.get("payment_reference"),
                expected_revision=expected_revision,
            )
        return self._run(
            "order_transition",
            actor_id,
            lambda events: self.orders.transition(
                order_id, target, actor_id,
                expected_revision=expected_revision, **payload,
            ),
            order_id=str(order_id),
            target=target.value,
        )

    def mark_shipped(
        self,
        order_id: UUID,
        actor_id: str,
        shipping_address: str | None = None,
        expected_delivery_at: datetime | None = None,
        expected_revision: int | None = None,
    ) -> OrderInfo:
        def work(events: list[DomainEvent]) -> OrderInfo:
            self.orders.mark_shipped(
                order_id, actor_id,
                shipping_address=shipping_address,
                expected_delivery_at=expected_delivery_at,
                expected_revision=expected_revision,
            )
            conv_id = self._notify_order(
                order_id, "order_shipped", actor_id,
                address=f" to {shipping_address}" if shipping_address else "",
            )
            info = self.orders.get(order_id)
            events.append(self._event(
                EventType.ORDER_SHIPPED, actor_id, info.merchant_ref,
                order_id=order_id, conversation_id=conv_id,
            ))
            return info

        return self._run("order_shipping", actor_id, work, order_id=str(order_id))

    def mark_delivered(
        self, order_id: UUID, actor_id: str, expected_revision: int | None = None,
    ) -> OrderInfo:
        def work(events: list[DomainEvent]) -> OrderInfo:
            self.orders.mark_delivered(
                order_id, actor_id, expected_revision=expected_revision,
            )
            conv_id = self._notify_order(order_id, "order_delivered", actor_id)
            info = self.orders.get(order_id)
            events.append(self._event(
                EventType.ORDER_DELIVERED, actor_id, info.merchant_ref,
                order_id=order_id, conversation_id=conv_id,
            ))
            return info

        return self._run("order_delivery", actor_id, work, order_id=str(order_id))

    def report_problem(
        self,
        order_id: UUID,
        description: str,
        actor_id: str,
        operator_notes: str | None = None,
        expected_revision: int | None = None,
    ) -> OrderInfo:
        """Move the order to problem and hand its conversation to a human."""
        def work(events: list[DomainEvent]) -> OrderInfo:
            self.orders.report_problem(
                order_id, description, actor_id,
                operator_notes=operator_notes,
                expected_revision=expected_revision,
            )
            conv_id = self._notify_order(
                order_id, "order_problem", actor_id, description=description,
            )
            conversation, fresh = self._escalate(
                conv_id, EscalationReason.DEFECT_REFUND, actor_id, description,
            )
            info = self.orders.get(order_id)
            events.append(self._event(
                EventType.ORDER_PROBLEM, actor_id, info.merchant_ref,
                order_id=order_id, conversation_id=conv_id,
                description=info.problem_description,
            ))
            if fresh:
                events.append(self._event(
                    EventType.CONVERSATION_ESCALATED, actor_id, info.merchant_ref,
                    order_id=order_id, conversation_id=conv_id,
                    reason=conversation.escalation_reason.value,
                ))
            return info

        return self._run("problem_report", actor_id, work, order_id=str(order_id))

    def cancel_order(
        self,
        order_id: UUID,
        reason: str | None,
        actor_id: str,
        expected_revision: int | None = None,
    ) -> OrderInfo:
        def work(events: list[DomainEvent]) -> OrderInfo:
            info = self.orders.cancel(
                order_id, reason, actor_id, expected_revision=expected_revision,
            )
            conv_id = self._notify_order(
                order_id, "order_cancelled", actor_id, reason=reason or "",
            )
            events.append(self._event(
                EventType.ORDER_CANCELLED, actor_id, info.merchant_ref,
                order_id=order_id, conversation_id=conv_id,
                stock_released=info.stock_released,
            ))
            return info

        return self._run("order_cancellation", actor_id, work, order_id=str(order_id))

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    def claim_payment(
        self,
        order_id: UUID,
        actor_id: str,
        buyer_reference: str | None = None,
        note: str | None = None,
    ) -> ClaimResult:
        def work(events: list[DomainEvent]) -> ClaimResult:
            result = self.payments.claim_payment(
                order_id, actor_id, buyer_reference=buyer_reference, note=note,
            )
            events.extend(self._claim_events(result, actor_id))
            return result

        return self._run("payment_claim", actor_id, work, order_id=str(order_id))

    def claim_latest_payment(
        self,
        buyer_ref: str,
        merchant_ref: str,
        actor_id: str,
        buyer_reference: str | None = None,
        note: str | None = None,
    ) -> ClaimResult:
        def work(events: list[DomainEvent]) -> ClaimResult:
            result = self.payments.claim_latest_payment(
                buyer_ref, merchant_ref, actor_id,
                buyer_reference=buyer_reference, note=note,
            )
            events.extend(self._claim_events(result, actor_id))
            return result

        return self._run(
            "payment_claim", actor_id, work,
            merchant_ref=merchant_ref, buyer_ref=buyer_ref,
        )

    def _claim_events(self, result: ClaimResult, actor_id: str) -> list[DomainEvent]:
        order = result.order
        events = [
            self._event(
                EventType.PAYMENT_CLAIMED, actor_id, order.merchant_ref,
                order_id=order.id, conversation_id=result.escalated_conversation_id,
                buyer_reference=order.buyer_reference,
            ),
        ]
        if result.newly_escalated:
            events.append(self._event(
                EventType.CONVERSATION_ESCALATED, actor_id, order.merchant_ref,
                order_id=order.id, conversation_id=result.escalated_conversation_id,
                reason=EscalationReason.PAYMENT_VALIDATION.value,
            ))
        return events

    def confirm_payment(
        self,
        order_id: UUID,
        payment_method: PaymentMethod | str,
        operator_id: str,
        operator_reference: str | None = None,
        expected_revision: int | None = None,
        resolve_conversation: bool | None = None,
    ) -> OrderInfo:
        """
        Confirm payment.  On success the conversation that received the
        confirmation notice is optionally resolved (``resolve_conversation``,
        defaulting to the ``resolve_on_confirm`` setting).
        """
        resolve = (
            self.settings.resolve_on_confirm
            if resolve_conversation is None
            else resolve_conversation
        )

        def work(events: list[DomainEvent]) -> OrderInfo:
            info = self.payments.confirm_payment(
                order_id, payment_method, operator_id,
                operator_reference=operator_reference,
                expected_revision=expected_revision,
            )
            # the thread that received the confirmation notice, which may not
            # be the order's original one if that was already resolved
            conversation = self.escalation.conversation_for_order(
                self.orders.lock(info.id), operator_id,
            )
            events.append(self._event(
                EventType.PAYMENT_CONFIRMED, operator_id, info.merchant_ref,
                order_id=info.id, conversation_id=conversation.id,
                payment_method=info.payment_method.value,
                final_amount=str(info.final_amount),
            ))
            if resolve:
                self.escalation.resolve(
                    conversation.id, operator_id,
                    note=f"payment confirmed for order {order_ref(info.id)}",
                )
                events.append(self._event(
                    EventType.CONVERSATION_RESOLVED, operator_id,
                    info.merchant_ref, order_id=info.id,
                    conversation_id=conversation.id,
                ))
            return info

        return self._run(
            "payment_confirmation", operator_id, work, order_id=str(order_id),
        )

    def reject_payment(self, order_id: UUID, reason: str, operator_id: str) -> OrderInfo:
        def work(events: list[DomainEvent]) -> OrderInfo:
            info = self.payments.reject_payment(order_id, reason, operator_id)
            events.append(self._event(
                EventType.PAYMENT_REJECTED, operator_id, info.merchant_ref,
                order_id=info.id, conversation_id=info.conversation_id,
                reason=info.rejection_reason,
                rejection_count=info.rejection_count,
            ))
            return info

        return self._run(
            "payment_rejection", operator_id, work, order_id=str(order_id),
        )
