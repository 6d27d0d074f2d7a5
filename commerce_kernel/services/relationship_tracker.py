"""
ClientRelationshipTracker -- per-buyer, per-merchant aggregates.

Responsibility:
    Creates the relation row on first contact and maintains purchase_count,
    total_spent and last_purchase_at.

Invariants enforced:
    - One row per (buyer_ref, merchant_ref).  Two first contacts racing each
      other resolve through a savepoint and an IntegrityError re-read.
    - Counters move only through ``record_purchase``, which is called from
      the payment confirmation unit and nowhere else.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from commerce_kernel.db.types import round_money
from commerce_kernel.domain.dtos import RelationInfo
from commerce_kernel.exceptions import RelationNotFoundError, ValidationError
from commerce_kernel.logging_config import get_logger
from commerce_kernel.models.relation import ClientMerchantRelation
from commerce_kernel.services.base import BaseService

logger = get_logger("services.relationship_tracker")


class ClientRelationshipTracker(BaseService[ClientMerchantRelation]):

    model = ClientMerchantRelation

    def ensure_relation(
        self,
        buyer_ref: str,
        merchant_ref: str,
        actor_id: str,
        buyer_name: str | None = None,
    ) -> RelationInfo:
        """
        Return the relation for the pair, creating it if absent.

        An existing relation is returned unchanged, except that a buyer name
        is filled in when none was recorded yet.
        """
        if not buyer_ref or not merchant_ref:
            raise ValidationError(
                "Both buyer_ref and merchant_ref are required", field="buyer_ref",
            )

        relation = self.find(buyer_ref, merchant_ref)
        if relation is None:
            savepoint = self.session.begin_nested()
            try:
                relation = ClientMerchantRelation(
                    buyer_ref=buyer_ref,
                    merchant_ref=merchant_ref,
                    buyer_name=buyer_name,
                    purchase_count=0,
                    total_spent=Decimal("0"),
                    created_by=actor_id,
                )
                self.session.add(relation)
                self.session.flush()
                savepoint.commit()
                logger.info(
                    "relation_created",
                    extra={
                        "relation_id": str(relation.id),
                        "buyer_ref": buyer_ref,
                        "merchant_ref": merchant_ref,
                    },
                )
                return relation.to_dto()
            except IntegrityError:
                logger.debug(
                    "relation_create_race_retry",
                    extra={"buyer_ref": buyer_ref, "merchant_ref": merchant_ref},
                )
                savepoint.rollback()
                relation = self.find(buyer_ref, merchant_ref)
                if relation is None:
                    raise

        if buyer_name and not relation.buyer_name:
            relation.buyer_name = buyer_name
            relation.updated_by = actor_id
            self.session.flush()
        return relation.to_dto()

    def record_purchase(
        self,
        relation_id: UUID,
        amount: Decimal,
        at: datetime,
        actor_id: str,
    ) -> RelationInfo:
        """Locked increment of the purchase counters."""
        if amount <= 0:
            raise ValidationError("Purchase amount must be positive", field="amount")

        relation = self._select_for_update(relation_id)
        if relation is None:
            raise RelationNotFoundError(str(relation_id))

        relation.purchase_count += 1
        relation.total_spent = round_money(relation.total_spent + amount)
        relation.last_purchase_at = at
        relation.updated_by = actor_id
        self.session.flush()

        logger.info(
            "purchase_recorded",
            extra={
                "relation_id": str(relation_id),
                "amount": str(amount),
                "purchase_count": relation.purchase_count,
            },
        )
        return relation.to_dto()

    def get(self, relation_id: UUID) -> RelationInfo:
        relation = self.session.get(ClientMerchantRelation, relation_id)
        if relation is None:
            raise RelationNotFoundError(str(relation_id))
        return relation.to_dto()

    def find(self, buyer_ref: str, merchant_ref: str) -> ClientMerchantRelation | None:
        return self.session.execute(
            select(ClientMerchantRelation).where(
                ClientMerchantRelation.buyer_ref == buyer_ref,
                ClientMerchantRelation.merchant_ref == merchant_ref,
            )
        ).scalar_one_or_none()
