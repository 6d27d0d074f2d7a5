"""Read-only buyer-merchant relation projections."""

from sqlalchemy import select

from commerce_kernel.domain.dtos import RelationInfo
from commerce_kernel.models.relation import ClientMerchantRelation
from commerce_kernel.selectors.base import BaseSelector


class RelationSelector(BaseSelector[ClientMerchantRelation]):

    model = ClientMerchantRelation

    def find(self, buyer_ref: str, merchant_ref: str) -> RelationInfo | None:
        relation = self.session.execute(
            select(ClientMerchantRelation).where(
                ClientMerchantRelation.buyer_ref == buyer_ref,
                ClientMerchantRelation.merchant_ref == merchant_ref,
            )
        ).scalar_one_or_none()
        return relation.to_dto() if relation is not None else None

    def top_buyers(self, merchant_ref: str, limit: int = 10) -> list[RelationInfo]:
        """Highest total spent first."""
        stmt = (
            select(ClientMerchantRelation)
            .where(ClientMerchantRelation.merchant_ref == merchant_ref)
            .order_by(
                ClientMerchantRelation.total_spent.desc(),
                ClientMerchantRelation.buyer_ref.asc(),
            )
            .limit(limit)
        )
        return self._dtos(stmt)
