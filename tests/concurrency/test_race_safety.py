"""
Race-safety tests with real commits from concurrent threads.

Each worker gets its own session and orchestrator, and all workers are
released together by a Barrier so their transactions overlap.

Verified:
- Stock never goes negative and no decrement is lost
- A payment is confirmed exactly once, whatever the number of operators
- Two orders racing for the same units: one is paid, the other becomes a problem
- First contact from one buyer on many threads creates one relation and
  one active conversation
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from commerce_kernel.domain.dtos import LineRequest
from commerce_kernel.domain.values import ConversationStatus, OrderStatus, PaymentMethod
from commerce_kernel.exceptions import (
    AlreadyProcessedError,
    InsufficientStockError,
    StockConflictError,
)
from commerce_kernel.selectors import ConversationSelector, OrderSelector, RelationSelector
from commerce_kernel.services.workflow_orchestrator import WorkflowOrchestrator

pytestmark = pytest.mark.concurrency

SHOP = "shop-race"
OPERATOR = "operator-1"
AGENT = "agent-runtime"


def _run_concurrently(session_factory, settings, n, operation):
    """Run ``operation(orchestrator, i)`` on n threads; return results or exceptions."""
    barrier = Barrier(n)

    def worker(i):
        session = session_factory()
        try:
            engine = WorkflowOrchestrator(session, settings)
            barrier.wait()
            return operation(engine, i)
        except Exception as exc:
            return exc
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(worker, range(n)))


@pytest.fixture
def seed(session_factory, settings):
    """Commit a product and a buyer relation; returns (product, conversation)."""
    session = session_factory()
    try:
        engine = WorkflowOrchestrator(session, settings)

        def _seed(quantity=5):
            product = engine.register_product(
                SHOP, "Kente scarf", Decimal("10000"), OPERATOR, quantity=quantity,
            )
            greeting = engine.ingest_message("buyer-1", SHOP, "Bonjour", AGENT)
            return product, greeting.conversation, engine

        yield _seed
    finally:
        session.close()


class TestStockRaces:

    def test_concurrent_decrements_never_go_negative(self, session_factory, settings, seed):
        product, _, engine = seed(quantity=10)

        results = _run_concurrently(
            session_factory, settings, 15,
            lambda eng, i: eng.adjust_stock(product.id, -1, f"worker-{i}"),
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(results) - len(failures) == 10
        assert all(isinstance(f, InsufficientStockError) for f in failures)

        engine.session.expire_all()
        after = engine.stock.get(product.id)
        assert after.quantity == 0
        assert after.units_sold == 10


class TestConfirmationRaces:

    def test_payment_confirmed_exactly_once(self, session_factory, settings, seed):
        product, conversation, engine = seed(quantity=5)
        order = engine.create_order(
            conversation.relation_id, SHOP, [LineRequest(product.id, 2)], AGENT,
        )
        engine.claim_payment(order.id, AGENT, buyer_reference="OM-42")

        results = _run_concurrently(
            session_factory, settings, 8,
            lambda eng, i: eng.confirm_payment(order.id, PaymentMethod.ORANGE_MONEY, f"operator-{i}"),
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert all(isinstance(r, AlreadyProcessedError) for r in losers)

        engine.session.expire_all()
        assert engine.stock.get(product.id).quantity == 3
        assert RelationSelector(engine.session).get(order.relation_id).purchase_count == 1

    def test_two_orders_racing_for_stock(self, session_factory, settings, seed):
        product, conversation, engine = seed(quantity=5)
        small = engine.create_order(
            conversation.relation_id, SHOP, [LineRequest(product.id, 2)], AGENT,
        )
        large = engine.create_order(
            conversation.relation_id, SHOP, [LineRequest(product.id, 4)], AGENT,
        )
        order_ids = [small.id, large.id]

        results = _run_concurrently(
            session_factory, settings, 2,
            lambda eng, i: eng.confirm_payment(order_ids[i], PaymentMethod.CASH, OPERATOR),
        )

        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert sum(isinstance(r, StockConflictError) for r in results) == 1

        engine.session.expire_all()
        statuses = {
            oid: OrderSelector(engine.session).get(oid).status for oid in order_ids
        }
        assert sorted(s.value for s in statuses.values()) == ["paid", "problem"]
        remaining = engine.stock.get(product.id).quantity
        expected = 3 if statuses[small.id] == OrderStatus.PAID else 1
        assert remaining == expected


class TestFirstContactRaces:

    def test_one_relation_and_one_conversation(self, session_factory, settings):
        results = _run_concurrently(
            session_factory, settings, 8,
            lambda eng, i: eng.ingest_message("buyer-new", SHOP, f"hello {i}", AGENT),
        )

        assert not [r for r in results if isinstance(r, Exception)]
        assert len({r.conversation.relation_id for r in results}) == 1
        assert len({r.conversation.id for r in results}) == 1
        assert sum(r.created_conversation for r in results) == 1

        session = session_factory()
        relation = RelationSelector(session).find("buyer-new", SHOP)
        conversation = ConversationSelector(session).active_for_relation(relation.id)
        assert conversation.status == ConversationStatus.AUTOMATED
        assert conversation.message_count == 8
        assert len(ConversationSelector(session).messages(conversation.id)) == 8
