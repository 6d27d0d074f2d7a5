"""
Module: commerce_kernel.models.order
Responsibility: ORM persistence for orders and their line items, including
    the payment-claim handshake fields and the stock commit/release flags.
Architecture position: Kernel > Models.  Rows are written only by
    OrderLifecycle and PaymentValidationWorkflow; orders are never deleted.

Invariants enforced:
    - final_amount = total_amount - discount_amount and final_amount > 0
      (ck_order_final_positive, ck_order_discount_non_negative).
    - revision >= 1 and increments on every mutation.  The row lock plus
      revision is what turns a stale caller into ConcurrentModificationError.
    - stock_released implies stock_committed (ck_order_release_after_commit).
    - Line unit_price is a snapshot taken at creation; later catalog price
      changes never alter an existing order.

Failure modes:
    - IntegrityError if a write bypasses the services and breaks one of the
      check constraints above.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commerce_kernel.db.base import Base, TrackedBase, UUIDString
from commerce_kernel.domain.values import ClaimStatus, OrderStatus


class Order(TrackedBase):
    """
    A buyer's order with one merchant.

    Contract:
        ``status`` follows ORDER_WORKFLOW and ``claim_status`` follows
        CLAIM_WORKFLOW (see ``commerce_kernel.domain.workflows``).  The
        ``stock_committed`` / ``stock_released`` flags are flipped exactly
        once each by OrderLifecycle.
    """

    __tablename__ = "orders"

    __table_args__ = (
        CheckConstraint("final_amount > 0", name="ck_order_final_positive"),
        CheckConstraint(
            "discount_amount >= 0", name="ck_order_discount_non_negative",
        ),
        CheckConstraint("revision >= 1", name="ck_order_revision_positive"),
        CheckConstraint(
            "NOT stock_released OR stock_committed",
            name="ck_order_release_after_commit",
        ),
        Index("idx_order_merchant_status", "merchant_ref", "status"),
        Index("idx_order_relation_status", "relation_id", "status"),
        Index("idx_order_claim_status", "claim_status"),
        Index("idx_order_conversation", "conversation_id"),
        Index("idx_order_relation_placed", "relation_id", "placed_at"),
    )

    relation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("client_merchant_relations.id"),
        nullable=False,
    )

    merchant_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    conversation_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("conversations.id"),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING.value,
    )

    claim_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ClaimStatus.UNCLAIMED.value,
    )

    # Amounts
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0"),
    )
    final_amount: Mapped[Decimal] = mapped_column(nullable=False)

    # Payment claim / confirmation
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True,
    )
    buyer_reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True,
    )
    claim_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    validated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Rejection
    payment_rejected: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_count: Mapped[int] = mapped_column(nullable=False, default=0)

    # Stock movement flags
    stock_committed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    stock_released: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    # Fulfillment
    problem_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    operator_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    shipping_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    expected_delivery_at: Mapped[datetime | None] = mapped_column(nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Set from the service clock; orders for one buyer sort by it
    placed_at: Mapped[datetime] = mapped_column(nullable=False)

    revision: Mapped[int] = mapped_column(nullable=False, default=1)

    lines: Mapped[list["OrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.line_no",
        lazy="selectin",
    )

    def quantities_by_product(self) -> dict[UUID, int]:
        """Requested quantity summed per product across lines."""
        totals: dict[UUID, int] = {}
        for line in self.lines:
            totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
        return totals

    def to_dto(self):
        """Convert ORM model to frozen domain DTO."""
        from commerce_kernel.domain.dtos import OrderInfo
        from commerce_kernel.domain.values import PaymentMethod

        return OrderInfo(
            id=self.id,
            relation_id=self.relation_id,
            merchant_ref=self.merchant_ref,
            conversation_id=self.conversation_id,
            status=OrderStatus(self.status),
            claim_status=ClaimStatus(self.claim_status),
            lines=tuple(line.to_dto() for line in self.lines),
            total_amount=self.total_amount,
            discount_amount=self.discount_amount,
            final_amount=self.final_amount,
            revision=self.revision,
            payment_method=(
                PaymentMethod(self.payment_method) if self.payment_method else None
            ),
            payment_reference=self.payment_reference,
            buyer_reference=self.buyer_reference,
            claim_note=self.claim_note,
            claimed_at=self.claimed_at,
            validated_at=self.validated_at,
            validated_by=self.validated_by,
            payment_rejected=self.payment_rejected,
            rejection_reason=self.rejection_reason,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            rejection_count=self.rejection_count,
            stock_committed=self.stock_committed,
            stock_released=self.stock_released,
            problem_description=self.problem_description,
            operator_notes=self.operator_notes,
            cancellation_reason=self.cancellation_reason,
            shipping_address=self.shipping_address,
            expected_delivery_at=self.expected_delivery_at,
            shipped_at=self.shipped_at,
            delivered_at=self.delivered_at,
            placed_at=self.placed_at,
        )

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.status}/{self.claim_status} r{self.revision}>"


class OrderLine(Base):
    """One product / quantity / price entry within an order."""

    __tablename__ = "order_lines"

    __table_args__ = (
        UniqueConstraint("order_id", "line_no", name="uq_order_line_no"),
        CheckConstraint("quantity > 0", name="ck_order_line_quantity_positive"),
        Index("idx_order_line_product", "product_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    # Snapshot of the product name at order time
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False)

    line_total: Mapped[Decimal] = mapped_column(nullable=False)

    order: Mapped["Order"] = relationship(back_populates="lines")

    def to_dto(self):
        from commerce_kernel.domain.dtos import OrderLineInfo

        return OrderLineInfo(
            line_no=self.line_no,
            product_id=self.product_id,
            product_name=self.product_name,
            unit_price=self.unit_price,
            quantity=self.quantity,
            line_total=self.line_total,
        )
