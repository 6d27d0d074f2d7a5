"""
EscalationEngine -- hand-off between the automated agent and a human.

Responsibility:
    Owns the conversation state machine and the message log.  Inbound buyer
    text is appended, classified by EscalationClassifier and, when the
    classification says so and auto-escalation is on, the conversation is
    escalated to a human operator.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Classification is
    delegated to the pure ``commerce_kernel.domain.classifier``; transition
    legality comes from ``CONVERSATION_WORKFLOW``.

Invariants enforced:
    - At most one active conversation per relation.  Creation races resolve
      through a savepoint and an IntegrityError re-read.
    - Escalating an already escalated conversation keeps the earliest reason
      and only appends the note.
    - resolved / closed conversations reject every transition except
      resolved -> closed.
    - Messages are append-only; each takes the next ``seq`` under the
      conversation row lock.  Messages may be appended to conversations in
      any state (late system notices for a resolved thread are kept).
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from commerce_kernel.domain.classifier import EscalationClassifier, EscalationRules
from commerce_kernel.domain.clock import Clock
from commerce_kernel.domain.dtos import (
    Classification,
    ConversationInfo,
    IngestResult,
    MessageInfo,
)
from commerce_kernel.domain.values import (
    ConversationStatus,
    EscalationReason,
    MessageKind,
    SenderRole,
    parse_choice,
)
from commerce_kernel.domain.workflows import (
    ACTIVE_CONVERSATION_STATES,
    CONVERSATION_WORKFLOW,
)
from commerce_kernel.exceptions import (
    ConversationNotFoundError,
    InvalidTransitionError,
    TerminalStateError,
    ValidationError,
)
from commerce_kernel.logging_config import get_logger
from commerce_kernel.models.conversation import Conversation, Message
from commerce_kernel.models.order import Order
from commerce_kernel.services.base import BaseService
from commerce_kernel.services.relationship_tracker import ClientRelationshipTracker

logger = get_logger("services.escalation_engine")


class EscalationEngine(BaseService[Conversation]):
    """
    Conversation lifecycle and message log.

    Contract:
        ``rules`` are injected (see ``commerce_config.bridges``).  With
        ``auto_escalate=False`` ingest still classifies but leaves the
        conversation alone.
    """

    model = Conversation

    def __init__(
        self,
        session: Session,
        rules: EscalationRules,
        clock: Clock | None = None,
        auto_escalate: bool = True,
        relations: ClientRelationshipTracker | None = None,
    ):
        super().__init__(session, clock)
        self.classifier = EscalationClassifier(rules)
        self.auto_escalate = auto_escalate
        self.relations = relations or ClientRelationshipTracker(session, self.clock)

    def classify(self, text: str) -> Classification:
        return self.classifier.classify(text)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def ingest(
        self,
        buyer_ref: str,
        merchant_ref: str,
        text: str,
        actor_id: str,
        buyer_name: str | None = None,
        kind: MessageKind | str = MessageKind.TEXT,
    ) -> IngestResult:
        """
        Record one inbound buyer message and escalate if it calls for it.

        ``IngestResult.escalated`` is True when this message's classification
        was applied to the conversation, either as a fresh escalation or as
        an extra note on an already escalated one.
        """
        kind = parse_choice(MessageKind, kind, "kind")
        relation = self.relations.ensure_relation(
            buyer_ref, merchant_ref, actor_id, buyer_name=buyer_name,
        )
        conversation, created = self._ensure(relation.id, merchant_ref, actor_id)
        message = self._append(
            conversation, SenderRole.BUYER, text, kind, actor_id,
        )

        classification = self.classify(text)
        escalated = newly_escalated = False
        if classification.escalate and self.auto_escalate:
            newly_escalated = self.escalate_conversation(
                conversation,
                classification.reason,
                actor_id,
                note=f"auto: matched '{classification.matched}'",
            )
            escalated = True

        logger.info(
            "message_ingested",
            extra={
                "conversation_id": str(conversation.id),
                "message_id": str(message.id),
                "escalate": classification.escalate,
                "reason": (
                    classification.reason.value if classification.reason else None
                ),
                "escalated": escalated,
                "newly_escalated": newly_escalated,
            },
        )
        return IngestResult(
            conversation=conversation.to_dto(),
            message=message.to_dto(),
            classification=classification,
            escalated=escalated,
            created_conversation=created,
            newly_escalated=newly_escalated,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def escalate(
        self,
        conversation_id: UUID,
        reason: EscalationReason | str,
        actor_id: str,
        note: str | None = None,
    ) -> ConversationInfo:
        conversation = self.lock(conversation_id)
        self.escalate_conversation(
            conversation, parse_choice(EscalationReason, reason, "reason"), actor_id, note,
        )
        return conversation.to_dto()

    def resolve(
        self, conversation_id: UUID, actor_id: str, note: str | None = None,
    ) -> ConversationInfo:
        conversation = self.lock(conversation_id)
        self._require(conversation, ConversationStatus.RESOLVED)
        previous = conversation.status
        conversation.status = ConversationStatus.RESOLVED.value
        conversation.resolution_note = note
        conversation.resolved_at = self.clock.now()
        conversation.updated_by = actor_id
        self.session.flush()
        logger.info(
            "conversation_resolved",
            extra={"conversation_id": str(conversation.id), "from_state": previous},
        )
        return conversation.to_dto()

    def close(self, conversation_id: UUID, actor_id: str) -> ConversationInfo:
        conversation = self.lock(conversation_id)
        self._require(conversation, ConversationStatus.CLOSED)
        previous = conversation.status
        conversation.status = ConversationStatus.CLOSED.value
        conversation.closed_at = self.clock.now()
        conversation.updated_by = actor_id
        self.session.flush()
        logger.info(
            "conversation_closed",
            extra={"conversation_id": str(conversation.id), "from_state": previous},
        )
        return conversation.to_dto()

    def _require(self, conversation: Conversation, target: ConversationStatus) -> None:
        current = conversation.status
        if CONVERSATION_WORKFLOW.find(current, target) is not None:
            return
        if CONVERSATION_WORKFLOW.is_terminal(current):
            raise TerminalStateError("Conversation", str(conversation.id), current)
        raise InvalidTransitionError(
            "Conversation", str(conversation.id), current, target.value,
        )

    def escalate_conversation(
        self,
        conversation: Conversation,
        reason: EscalationReason,
        actor_id: str,
        note: str | None = None,
    ) -> bool:
        """Escalate a locked conversation.  Returns True on a fresh escalation."""
        current = conversation.status
        if CONVERSATION_WORKFLOW.is_terminal(current):
            raise TerminalStateError("Conversation", str(conversation.id), current)

        fresh = current == ConversationStatus.AUTOMATED.value
        if fresh:
            conversation.status = ConversationStatus.ESCALATED.value
            conversation.escalation_reason = reason.value
            conversation.escalated_at = self.clock.now()
            conversation.handled_by_agent = False
        if note:
            # reassign so the JSON column is flagged dirty
            conversation.escalation_notes = [*(conversation.escalation_notes or []), note]
        conversation.updated_by = actor_id
        self.session.flush()

        logger.info(
            "conversation_escalated" if fresh else "conversation_escalation_noted",
            extra={
                "conversation_id": str(conversation.id),
                "reason": reason.value,
                "kept_reason": conversation.escalation_reason,
            },
        )
        return fresh

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def ensure_conversation(
        self, relation_id: UUID, merchant_ref: str, actor_id: str,
    ) -> ConversationInfo:
        conversation, _ = self._ensure(relation_id, merchant_ref, actor_id)
        return conversation.to_dto()

    def conversation_for_order(self, order: Order, actor_id: str) -> Conversation:
        """
        The conversation that order notices go to: the order's own if it is
        still active, otherwise the relation's active one (created if
        needed).
        """
        if order.conversation_id is not None:
            conversation = self.lock(order.conversation_id)
            if conversation.status in ACTIVE_CONVERSATION_STATES:
                return conversation
        conversation, _ = self._ensure(order.relation_id, order.merchant_ref, actor_id)
        return conversation

    def _ensure(
        self, relation_id: UUID, merchant_ref: str, actor_id: str,
    ) -> tuple[Conversation, bool]:
        conversation = self._find_active(relation_id)
        if conversation is not None:
            return conversation, False

        savepoint = self.session.begin_nested()
        try:
            conversation = Conversation(
                relation_id=relation_id,
                merchant_ref=merchant_ref,
                status=ConversationStatus.AUTOMATED.value,
                escalation_notes=[],
                handled_by_agent=True,
                message_count=0,
                last_activity_at=self.clock.now(),
                created_by=actor_id,
            )
            self.session.add(conversation)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "conversation_create_race_retry",
                extra={"relation_id": str(relation_id)},
            )
            savepoint.rollback()
            conversation = self._find_active(relation_id)
            if conversation is None:
                raise
            return conversation, False

        logger.info(
            "conversation_started",
            extra={
                "conversation_id": str(conversation.id),
                "relation_id": str(relation_id),
            },
        )
        return conversation, True

    def _find_active(self, relation_id: UUID) -> Conversation | None:
        return self.session.execute(
            select(Conversation)
            .where(
                Conversation.relation_id == relation_id,
                Conversation.status.in_(ACTIVE_CONVERSATION_STATES),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(self, conversation_id: UUID) -> ConversationInfo:
        conversation = self.session.get(Conversation, conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(str(conversation_id))
        return conversation.to_dto()

    def lock(self, conversation_id: UUID) -> Conversation:
        conversation = self._select_for_update(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(str(conversation_id))
        return conversation

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def append_message(
        self,
        conversation_id: UUID,
        sender: SenderRole | str,
        content: str,
        actor_id: str,
        kind: MessageKind | str = MessageKind.TEXT,
        order_id: UUID | None = None,
        confidence: float | None = None,
    ) -> MessageInfo:
        sender = parse_choice(SenderRole, sender, "sender")
        kind = parse_choice(MessageKind, kind, "kind")
        conversation = self.lock(conversation_id)
        message = self._append(
            conversation,
            sender,
            content,
            kind,
            actor_id,
            order_id=order_id,
            confidence=confidence,
        )
        return message.to_dto()

    def post_system_message(
        self,
        conversation_id: UUID,
        content: str,
        actor_id: str,
        order_id: UUID | None = None,
    ) -> MessageInfo:
        return self.append_message(
            conversation_id,
            SenderRole.SYSTEM,
            content,
            actor_id,
            kind=MessageKind.SYSTEM,
            order_id=order_id,
        )

    def post_agent_reply(
        self,
        conversation_id: UUID,
        text: str,
        actor_id: str,
        confidence: float | None = None,
    ) -> MessageInfo:
        return self.append_message(
            conversation_id,
            SenderRole.AGENT,
            text,
            actor_id,
            confidence=confidence,
        )

    def system_notice(
        self,
        conversation: Conversation,
        content: str,
        actor_id: str,
        order_id: UUID | None = None,
    ) -> Message:
        """Append a system message to a conversation already locked by the caller."""
        return self._append(
            conversation, SenderRole.SYSTEM, content, MessageKind.SYSTEM, actor_id,
            order_id=order_id,
        )

    def agent_reply(
        self,
        conversation: Conversation,
        text: str,
        actor_id: str,
        confidence: float | None = None,
    ) -> Message:
        return self._append(
            conversation, SenderRole.AGENT, text, MessageKind.TEXT, actor_id,
            confidence=confidence,
        )

    def _append(
        self,
        conversation: Conversation,
        sender: SenderRole,
        content: str,
        kind: MessageKind,
        actor_id: str,
        order_id: UUID | None = None,
        confidence: float | None = None,
    ) -> Message:
        if kind != MessageKind.MEDIA and not (content or "").strip():
            raise ValidationError("Message content must not be empty", field="content")
        if confidence is not None and not 0.0 <= confidence <= 1.0:
            raise ValidationError(
                f"Agent confidence must be within [0, 1], got {confidence}",
                field="confidence",
            )

        now = self.clock.now()
        conversation.message_count += 1
        conversation.last_activity_at = now
        conversation.updated_by = actor_id
        message = Message(
            conversation_id=conversation.id,
            sender=sender.value,
            content=content or "",
            kind=kind.value,
            order_id=order_id,
            agent_confidence=confidence,
            sent_at=now,
            seq=conversation.message_count,
        )
        self.session.add(message)
        self.session.flush()

        logger.debug(
            "message_appended",
            extra={
                "conversation_id": str(conversation.id),
                "sender": sender.value,
                "seq": message.seq,
            },
        )
        return message
