"""
Tests for EscalationEngine.

Covers:
- Inbound message ingestion and auto-escalation
- Earliest escalation reason kept, later notes appended
- One active conversation per relation
- Conversation transitions and terminal states
- Message validation and ordering
"""

from uuid import uuid4

import pytest

from commerce_kernel.domain.values import (
    ConversationStatus,
    EscalationReason,
    MessageKind,
    SenderRole,
)
from commerce_kernel.exceptions import (
    ConversationNotFoundError,
    TerminalStateError,
    ValidationError,
)
from commerce_kernel.selectors.conversation_selector import ConversationSelector
from commerce_kernel.selectors.relation_selector import RelationSelector
from commerce_kernel.services.escalation_engine import EscalationEngine

BUYER = "buyer-237-6911"
SHOP = "shop-awa"


class TestIngest:

    def test_first_message_starts_conversation(self, escalation, test_actor_id):
        result = escalation.ingest(
            BUYER, SHOP, "Bonjour, vous avez des sandales en 42", test_actor_id,
            buyer_name="Awa",
        )

        assert result.created_conversation is True
        assert result.escalated is False
        assert result.classification.escalate is False
        assert result.conversation.status == ConversationStatus.AUTOMATED
        assert result.conversation.handled_by_agent is True
        assert result.conversation.message_count == 1
        assert result.message.sender == SenderRole.BUYER

    def test_defect_message_escalates(self, escalation, test_actor_id):
        result = escalation.ingest(
            BUYER, SHOP, "my shoes arrived broken, I want a refund", test_actor_id,
        )

        assert result.escalated is True
        conversation = result.conversation
        assert conversation.status == ConversationStatus.ESCALATED
        assert conversation.escalation_reason == EscalationReason.DEFECT_REFUND
        assert conversation.handled_by_agent is False
        assert conversation.escalated_at is not None
        assert conversation.escalation_notes == ("auto: matched 'broken'",)

    def test_later_trigger_keeps_first_reason(self, escalation, test_actor_id):
        escalation.ingest(BUYER, SHOP, "when is delivery", test_actor_id)
        second = escalation.ingest(BUYER, SHOP, "my bag is damaged", test_actor_id)

        assert second.created_conversation is False
        assert second.escalated is True
        assert second.newly_escalated is False
        assert second.conversation.escalation_reason == EscalationReason.DELIVERY
        assert len(second.conversation.escalation_notes) == 2
        assert second.conversation.message_count == 2

    def test_auto_escalation_disabled(
        self, session, settings, relations, deterministic_clock, test_actor_id,
    ):
        engine = EscalationEngine(
            session, settings.rules, clock=deterministic_clock,
            auto_escalate=False, relations=relations,
        )
        result = engine.ingest(BUYER, SHOP, "I want a refund", test_actor_id)

        assert result.classification.reason == EscalationReason.DEFECT_REFUND
        assert result.escalated is False
        assert result.conversation.status == ConversationStatus.AUTOMATED

    def test_media_message_may_be_empty(self, escalation, test_actor_id):
        result = escalation.ingest(BUYER, SHOP, "", test_actor_id, kind=MessageKind.MEDIA)
        assert result.message.kind == MessageKind.MEDIA
        assert result.escalated is False

    def test_empty_text_rejected(self, escalation, test_actor_id):
        with pytest.raises(ValidationError):
            escalation.ingest(BUYER, SHOP, "   ", test_actor_id)

    def test_ingest_is_logged(self, escalation, test_actor_id, captured_logs):
        escalation.ingest(BUYER, SHOP, "price please", test_actor_id)
        records = [r for r in captured_logs() if r["message"] == "message_ingested"]
        assert records[-1]["reason"] == "discount"
        assert records[-1]["escalated"] is True


class TestOneActiveConversation:

    def test_new_conversation_after_resolution(self, escalation, test_actor_id):
        first = escalation.ingest(BUYER, SHOP, "hello", test_actor_id)
        escalation.resolve(first.conversation.id, test_actor_id, note="answered")

        second = escalation.ingest(BUYER, SHOP, "hello again", test_actor_id)
        assert second.created_conversation is True
        assert second.conversation.id != first.conversation.id
        assert second.conversation.relation_id == first.conversation.relation_id

    def test_ensure_conversation_reuses_active(self, escalation, make_relation, test_actor_id):
        relation = make_relation()
        a = escalation.ensure_conversation(relation.id, relation.merchant_ref, test_actor_id)
        b = escalation.ensure_conversation(relation.id, relation.merchant_ref, test_actor_id)
        assert a.id == b.id

    def test_active_for_relation_selector(self, session, escalation, test_actor_id):
        result = escalation.ingest(BUYER, SHOP, "hello", test_actor_id)
        active = ConversationSelector(session).active_for_relation(result.conversation.relation_id)
        assert active.id == result.conversation.id


class TestTransitions:

    def test_manual_escalation(self, escalation, test_actor_id):
        conversation = escalation.ingest(BUYER, SHOP, "hello", test_actor_id).conversation
        info = escalation.escalate(conversation.id, "other", test_actor_id, note="vip buyer")
        assert info.status == ConversationStatus.ESCALATED
        assert info.escalation_reason == EscalationReason.OTHER
        assert info.escalation_notes == ("vip buyer",)

    def test_resolve_and_close(self, escalation, test_actor_id):
        conversation = escalation.ingest(BUYER, SHOP, "refund", test_actor_id).conversation

        resolved = escalation.resolve(conversation.id, test_actor_id, note="refund sent")
        assert resolved.status == ConversationStatus.RESOLVED
        assert resolved.resolution_note == "refund sent"
        assert resolved.resolved_at is not None

        closed = escalation.close(conversation.id, test_actor_id)
        assert closed.status == ConversationStatus.CLOSED
        assert closed.closed_at is not None

    def test_resolved_rejects_escalation_and_resolution(self, escalation, test_actor_id):
        conversation = escalation.ingest(BUYER, SHOP, "hello", test_actor_id).conversation
        escalation.resolve(conversation.id, test_actor_id)

        with pytest.raises(TerminalStateError):
            escalation.escalate(conversation.id, EscalationReason.OTHER, test_actor_id)
        with pytest.raises(TerminalStateError):
            escalation.resolve(conversation.id, test_actor_id)

    def test_closed_rejects_everything(self, escalation, test_actor_id):
        conversation = escalation.ingest(BUYER, SHOP, "hello", test_actor_id).conversation
        escalation.close(conversation.id, test_actor_id)

        with pytest.raises(TerminalStateError):
            escalation.close(conversation.id, test_actor_id)
        with pytest.raises(TerminalStateError):
            escalation.resolve(conversation.id, test_actor_id)

    def test_unknown_conversation(self, escalation, test_actor_id):
        with pytest.raises(ConversationNotFoundError):
            escalation.resolve(uuid4(), test_actor_id)

    def test_repeat_escalation_is_not_fresh(self, escalation, test_actor_id):
        first = escalation.ingest(BUYER, SHOP, "I want a refund", test_actor_id)
        again = escalation.ingest(BUYER, SHOP, "any discount then", test_actor_id)

        assert first.newly_escalated is True
        assert again.escalated is True
        assert again.newly_escalated is False
        assert again.conversation.escalation_reason == EscalationReason.DEFECT_REFUND

    def test_unknown_reason_is_a_validation_error(self, escalation, test_actor_id):
        conversation = escalation.ingest(BUYER, SHOP, "hello", test_actor_id).conversation

        with pytest.raises(ValidationError) as excinfo:
            escalation.escalate(conversation.id, "urgent", test_actor_id)

        assert excinfo.value.field == "reason"
        unchanged = escalation.get(conversation.id)
        assert unchanged.status == ConversationStatus.AUTOMATED
        assert unchanged.escalation_notes == ()


class TestMessages:

    def test_messages_keep_order(self, session, escalation, test_actor_id, deterministic_clock):
        conversation = escalation.ingest(BUYER, SHOP, "hello", test_actor_id).conversation
        deterministic_clock.advance(5)
        escalation.post_agent_reply(conversation.id, "Hi! How can I help?", test_actor_id, confidence=0.92)
        escalation.post_system_message(conversation.id, "Catalog updated", test_actor_id)

        messages = ConversationSelector(session).messages(conversation.id)
        assert [m.sender for m in messages] == [
            SenderRole.BUYER, SenderRole.AGENT, SenderRole.SYSTEM,
        ]
        assert messages[1].agent_confidence == pytest.approx(0.92)
        assert messages[2].kind == MessageKind.SYSTEM
        assert escalation.get(conversation.id).message_count == 3

    def test_confidence_out_of_range(self, escalation, test_actor_id):
        conversation = escalation.ingest(BUYER, SHOP, "hello", test_actor_id).conversation
        with pytest.raises(ValidationError):
            escalation.post_agent_reply(conversation.id, "ok", test_actor_id, confidence=1.5)

    def test_unknown_sender_or_kind_rejected(self, escalation, test_actor_id):
        conversation = escalation.ingest(BUYER, SHOP, "hello", test_actor_id).conversation

        with pytest.raises(ValidationError, match="sender"):
            escalation.append_message(conversation.id, "robot", "beep", test_actor_id)
        with pytest.raises(ValidationError, match="kind"):
            escalation.append_message(
                conversation.id, SenderRole.OPERATOR, "hi", test_actor_id, kind="video",
            )
        assert escalation.get(conversation.id).message_count == 1

    def test_ingest_with_unknown_kind_creates_nothing(self, session, escalation, test_actor_id):
        with pytest.raises(ValidationError):
            escalation.ingest("buyer-unseen", SHOP, "hello", test_actor_id, kind="video")

        assert RelationSelector(session).find("buyer-unseen", SHOP) is None

    def test_operator_message_on_resolved_conversation(self, escalation, test_actor_id):
        conversation = escalation.ingest(BUYER, SHOP, "hello", test_actor_id).conversation
        escalation.resolve(conversation.id, test_actor_id)

        message = escalation.append_message(
            conversation.id, SenderRole.OPERATOR, "Following up", "operator-1",
        )
        assert message.sender == SenderRole.OPERATOR
