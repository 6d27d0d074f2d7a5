"""
Module: commerce_kernel.selectors.conversation_selector
Responsibility: Read-only conversation and message projections -- the
    operator's escalation queue and a conversation's transcript.
"""

from uuid import UUID

from sqlalchemy import select

from commerce_kernel.domain.dtos import ConversationInfo, MessageInfo
from commerce_kernel.domain.values import ConversationStatus, EscalationReason, parse_choice
from commerce_kernel.domain.workflows import ACTIVE_CONVERSATION_STATES
from commerce_kernel.models.conversation import Conversation, Message
from commerce_kernel.selectors.base import BaseSelector


class ConversationSelector(BaseSelector[Conversation]):

    model = Conversation

    def active_for_relation(self, relation_id: UUID) -> ConversationInfo | None:
        conversation = self.session.execute(
            select(Conversation).where(
                Conversation.relation_id == relation_id,
                Conversation.status.in_(ACTIVE_CONVERSATION_STATES),
            )
        ).scalar_one_or_none()
        return conversation.to_dto() if conversation is not None else None

    def escalated_for_merchant(
        self,
        merchant_ref: str,
        reason: EscalationReason | str | None = None,
    ) -> list[ConversationInfo]:
        """The operator queue: escalated conversations, longest waiting first."""
        stmt = select(Conversation).where(
            Conversation.merchant_ref == merchant_ref,
            Conversation.status == ConversationStatus.ESCALATED.value,
        )
        if reason is not None:
            reason = parse_choice(EscalationReason, reason, "reason")
            stmt = stmt.where(Conversation.escalation_reason == reason.value)
        stmt = stmt.order_by(Conversation.escalated_at.asc())
        return self._dtos(stmt)

    def messages(self, conversation_id: UUID, limit: int | None = None) -> list[MessageInfo]:
        """Transcript in append order."""
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.seq.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._dtos(stmt)

    def messages_for_order(self, order_id: UUID) -> list[MessageInfo]:
        stmt = (
            select(Message)
            .where(Message.order_id == order_id)
            .order_by(Message.sent_at.asc(), Message.seq.asc())
        )
        return self._dtos(stmt)
