"""
Module: commerce_kernel.models.relation
Responsibility: ORM persistence for the per-buyer, per-merchant aggregate
    record (purchase count, total spent, last purchase).
Architecture position: Kernel > Models.

Invariants enforced:
    - UNIQUE(buyer_ref, merchant_ref) (uq_relation_buyer_merchant).
      Concurrent first contacts race on this constraint; the loser re-reads.
    - purchase_count / total_spent change only inside a payment
      confirmation unit.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from commerce_kernel.db.base import TrackedBase


class ClientMerchantRelation(TrackedBase):
    """A buyer's standing with one merchant."""

    __tablename__ = "client_merchant_relations"

    __table_args__ = (
        UniqueConstraint(
            "buyer_ref", "merchant_ref", name="uq_relation_buyer_merchant",
        ),
        Index("idx_relation_merchant", "merchant_ref"),
    )

    buyer_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    merchant_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    buyer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    purchase_count: Mapped[int] = mapped_column(nullable=False, default=0)

    total_spent: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0"),
    )

    last_purchase_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen domain DTO."""
        from commerce_kernel.domain.dtos import RelationInfo

        return RelationInfo(
            id=self.id,
            buyer_ref=self.buyer_ref,
            merchant_ref=self.merchant_ref,
            buyer_name=self.buyer_name,
            purchase_count=self.purchase_count,
            total_spent=self.total_spent,
            last_purchase_at=self.last_purchase_at,
        )

    def __repr__(self) -> str:
        return (
            f"<ClientMerchantRelation {self.buyer_ref}@{self.merchant_ref} "
            f"purchases={self.purchase_count}>"
        )
