"""
Data Transfer Objects for the commerce kernel.

Frozen dataclasses that cross the service / selector boundary.  Services and
selectors never hand ORM instances to callers; dashboards and notifiers get
these read-only projections instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from commerce_kernel.domain.values import (
    ClaimStatus,
    ConversationStatus,
    EscalationReason,
    MessageKind,
    OrderStatus,
    PaymentMethod,
    ProductStatus,
    SenderRole,
)


@dataclass(frozen=True)
class LineRequest:
    """
    One requested order line.

    ``unit_price`` is an optional negotiated price; it must lie between the
    product's floor price and display price.  When omitted the current
    display price is used.
    """

    product_id: UUID
    quantity: int
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class ProductInfo:
    id: UUID
    merchant_ref: str
    name: str
    display_price: Decimal
    floor_price: Decimal
    quantity: int
    status: ProductStatus
    units_sold: int

    @property
    def is_orderable(self) -> bool:
        return self.status == ProductStatus.AVAILABLE and self.quantity > 0


@dataclass(frozen=True)
class OrderLineInfo:
    line_no: int
    product_id: UUID
    product_name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


@dataclass(frozen=True)
class OrderInfo:
    """Read-only projection of an order and its lines."""

    id: UUID
    relation_id: UUID
    merchant_ref: str
    conversation_id: UUID | None
    status: OrderStatus
    claim_status: ClaimStatus
    lines: tuple[OrderLineInfo, ...]
    total_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    revision: int
    payment_method: PaymentMethod | None = None
    payment_reference: str | None = None
    buyer_reference: str | None = None
    claim_note: str | None = None
    claimed_at: datetime | None = None
    validated_at: datetime | None = None
    validated_by: str | None = None
    payment_rejected: bool = False
    rejection_reason: str | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    rejection_count: int = 0
    stock_committed: bool = False
    stock_released: bool = False
    problem_description: str | None = None
    operator_notes: str | None = None
    cancellation_reason: str | None = None
    shipping_address: str | None = None
    expected_delivery_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    placed_at: datetime | None = None

    @property
    def has_pending_claim(self) -> bool:
        return self.claim_status == ClaimStatus.CLAIM_PENDING


@dataclass(frozen=True)
class RelationInfo:
    id: UUID
    buyer_ref: str
    merchant_ref: str
    buyer_name: str | None
    purchase_count: int
    total_spent: Decimal
    last_purchase_at: datetime | None


@dataclass(frozen=True)
class ConversationInfo:
    id: UUID
    relation_id: UUID
    merchant_ref: str
    status: ConversationStatus
    escalation_reason: EscalationReason | None
    escalation_notes: tuple[str, ...]
    escalated_at: datetime | None
    resolution_note: str | None
    resolved_at: datetime | None
    closed_at: datetime | None
    handled_by_agent: bool
    last_activity_at: datetime | None
    message_count: int

    @property
    def is_active(self) -> bool:
        return self.status in (ConversationStatus.AUTOMATED, ConversationStatus.ESCALATED)


@dataclass(frozen=True)
class MessageInfo:
    id: UUID
    conversation_id: UUID
    sender: SenderRole
    content: str
    kind: MessageKind
    sent_at: datetime
    order_id: UUID | None = None
    agent_confidence: float | None = None


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one inbound message."""

    escalate: bool
    reason: EscalationReason | None = None
    matched: str | None = None

    @classmethod
    def none(cls) -> Classification:
        return cls(escalate=False)


@dataclass(frozen=True)
class IngestResult:
    conversation: ConversationInfo
    message: MessageInfo
    classification: Classification
    escalated: bool
    created_conversation: bool = False
    # False when the conversation was already escalated and only gained a note
    newly_escalated: bool = False


@dataclass(frozen=True)
class ClaimResult:
    """Result of a buyer payment claim, with the reply owed to the buyer."""

    order: OrderInfo
    reply: str
    escalated_conversation_id: UUID | None = None
    newly_escalated: bool = False
