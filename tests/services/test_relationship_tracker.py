"""Tests for ClientRelationshipTracker."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from commerce_kernel.exceptions import RelationNotFoundError, ValidationError


class TestEnsureRelation:

    def test_first_contact_creates_relation(self, relations, test_actor_id):
        relation = relations.ensure_relation("buyer-1", "shop-1", test_actor_id, buyer_name="Awa")
        assert relation.purchase_count == 0
        assert relation.total_spent == Decimal("0")
        assert relation.buyer_name == "Awa"
        assert relation.last_purchase_at is None

    def test_second_contact_returns_same_row(self, relations, test_actor_id):
        first = relations.ensure_relation("buyer-1", "shop-1", test_actor_id)
        second = relations.ensure_relation("buyer-1", "shop-1", test_actor_id)
        assert first.id == second.id

    def test_name_filled_in_later_but_never_overwritten(self, relations, test_actor_id):
        relations.ensure_relation("buyer-1", "shop-1", test_actor_id)
        named = relations.ensure_relation("buyer-1", "shop-1", test_actor_id, buyer_name="Awa")
        renamed = relations.ensure_relation("buyer-1", "shop-1", test_actor_id, buyer_name="Other")
        assert named.buyer_name == "Awa"
        assert renamed.buyer_name == "Awa"

    def test_same_buyer_different_merchants(self, relations, test_actor_id):
        a = relations.ensure_relation("buyer-1", "shop-1", test_actor_id)
        b = relations.ensure_relation("buyer-1", "shop-2", test_actor_id)
        assert a.id != b.id

    def test_missing_refs_rejected(self, relations, test_actor_id):
        with pytest.raises(ValidationError):
            relations.ensure_relation("", "shop-1", test_actor_id)


class TestRecordPurchase:

    def test_counters_accumulate(self, relations, test_actor_id):
        relation = relations.ensure_relation("buyer-1", "shop-1", test_actor_id)
        at = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)

        relations.record_purchase(relation.id, Decimal("15000"), at, test_actor_id)
        after = relations.record_purchase(relation.id, Decimal("2500.50"), at, test_actor_id)

        assert after.purchase_count == 2
        assert after.total_spent == Decimal("17500.50")
        assert after.last_purchase_at is not None

    def test_non_positive_amount_rejected(self, relations, test_actor_id):
        relation = relations.ensure_relation("buyer-1", "shop-1", test_actor_id)
        with pytest.raises(ValidationError):
            relations.record_purchase(
                relation.id, Decimal("0"), datetime.now(timezone.utc), test_actor_id,
            )

    def test_unknown_relation(self, relations, test_actor_id):
        with pytest.raises(RelationNotFoundError):
            relations.record_purchase(
                uuid4(), Decimal("10"), datetime.now(timezone.utc), test_actor_id,
            )
        with pytest.raises(RelationNotFoundError):
            relations.get(uuid4())
