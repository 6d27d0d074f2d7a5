"""
Module: commerce_kernel.models.conversation
Responsibility: ORM persistence for buyer conversations (the escalation
    state machine) and their append-only message log.
Architecture position: Kernel > Models.  Conversation status is written only
    by EscalationEngine; messages only via EscalationEngine.append_message.

Invariants enforced:
    - At most one active (automated / escalated) conversation per relation
      (uq_conversation_active_relation, a partial unique index).
    - escalation_reason keeps the earliest reason; repeated escalations
      only append to escalation_notes.
    - Messages are never updated or deleted.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from commerce_kernel.db.base import Base, TrackedBase, UUIDString
from commerce_kernel.domain.values import (
    ConversationStatus,
    EscalationReason,
    MessageKind,
    SenderRole,
)

_ACTIVE_PREDICATE = "status IN ('automated', 'escalated')"


class Conversation(TrackedBase):
    """A thread between one buyer and one merchant."""

    __tablename__ = "conversations"

    __table_args__ = (
        Index(
            "uq_conversation_active_relation",
            "relation_id",
            unique=True,
            postgresql_where=text(_ACTIVE_PREDICATE),
            sqlite_where=text(_ACTIVE_PREDICATE),
        ),
        Index("idx_conversation_merchant_status", "merchant_ref", "status"),
    )

    relation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("client_merchant_relations.id"),
        nullable=False,
    )

    merchant_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConversationStatus.AUTOMATED.value,
    )

    escalation_reason: Mapped[str | None] = mapped_column(
        String(30), nullable=True,
    )

    escalation_notes: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list,
    )

    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # True until a human first takes over
    handled_by_agent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
    )

    last_activity_at: Mapped[datetime | None] = mapped_column(nullable=True)

    message_count: Mapped[int] = mapped_column(nullable=False, default=0)

    def to_dto(self):
        """Convert ORM model to frozen domain DTO."""
        from commerce_kernel.domain.dtos import ConversationInfo

        return ConversationInfo(
            id=self.id,
            relation_id=self.relation_id,
            merchant_ref=self.merchant_ref,
            status=ConversationStatus(self.status),
            escalation_reason=(
                EscalationReason(self.escalation_reason)
                if self.escalation_reason
                else None
            ),
            escalation_notes=tuple(self.escalation_notes or ()),
            escalated_at=self.escalated_at,
            resolution_note=self.resolution_note,
            resolved_at=self.resolved_at,
            closed_at=self.closed_at,
            handled_by_agent=self.handled_by_agent,
            last_activity_at=self.last_activity_at,
            message_count=self.message_count,
        )

    def __repr__(self) -> str:
        return f"<Conversation {self.id} {self.status}>"


class Message(Base):
    """One entry in a conversation's append-only log."""

    __tablename__ = "messages"

    __table_args__ = (
        Index("idx_message_conversation_sent", "conversation_id", "sent_at"),
        Index("idx_message_order", "order_id"),
    )

    conversation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("conversations.id"),
        nullable=False,
    )

    sender: Mapped[str] = mapped_column(String(20), nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MessageKind.TEXT.value,
    )

    order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=True,
    )

    # Agent self-reported confidence, 0..1
    agent_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    sent_at: Mapped[datetime] = mapped_column(nullable=False)

    # Position within the conversation; ties on sent_at sort by this
    seq: Mapped[int] = mapped_column(nullable=False)

    def to_dto(self):
        from commerce_kernel.domain.dtos import MessageInfo

        return MessageInfo(
            id=self.id,
            conversation_id=self.conversation_id,
            sender=SenderRole(self.sender),
            content=self.content,
            kind=MessageKind(self.kind),
            sent_at=self.sent_at,
            order_id=self.order_id,
            agent_confidence=self.agent_confidence,
        )
