"""
Module: commerce_kernel.selectors.order_selector
Responsibility: Read-only order projections for the merchant dashboard
    (orders by status, claims awaiting confirmation, a buyer's history).
"""

from uuid import UUID

from sqlalchemy import select

from commerce_kernel.domain.dtos import OrderInfo
from commerce_kernel.domain.values import ClaimStatus, OrderStatus, parse_choice
from commerce_kernel.models.order import Order
from commerce_kernel.selectors.base import BaseSelector


class OrderSelector(BaseSelector[Order]):

    model = Order

    def list_for_merchant(
        self,
        merchant_ref: str,
        status: OrderStatus | str | None = None,
        limit: int = 100,
    ) -> list[OrderInfo]:
        """Newest first."""
        stmt = select(Order).where(Order.merchant_ref == merchant_ref)
        if status is not None:
            status = parse_choice(OrderStatus, status, "status")
            stmt = stmt.where(Order.status == status.value)
        stmt = stmt.order_by(Order.placed_at.desc()).limit(limit)
        return self._dtos(stmt)

    def pending_claims(self, merchant_ref: str) -> list[OrderInfo]:
        """Claims awaiting an operator, oldest claim first."""
        stmt = (
            select(Order)
            .where(
                Order.merchant_ref == merchant_ref,
                Order.claim_status == ClaimStatus.CLAIM_PENDING.value,
            )
            .order_by(Order.claimed_at.asc())
        )
        return self._dtos(stmt)

    def for_relation(self, relation_id: UUID) -> list[OrderInfo]:
        stmt = (
            select(Order)
            .where(Order.relation_id == relation_id)
            .order_by(Order.placed_at.desc())
        )
        return self._dtos(stmt)
