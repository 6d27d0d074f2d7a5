"""
Domain events and the in-process EventBus.

Responsibility:
    Lets an external notifier (push alerts to the merchant, the outbound
    messaging bridge) react to order and conversation changes without the
    engine knowing about it.

Contract:
    - Events are published by WorkflowOrchestrator only after the
      transaction that produced them has committed.  A rolled-back operation
      publishes nothing.
    - Subscriber failures are logged and isolated: they never undo or fail
      the committed operation, and later subscribers still run.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from commerce_kernel.logging_config import get_logger

logger = get_logger("domain.events")


class EventType(str, Enum):
    ORDER_CREATED = "order.created"
    PAYMENT_CLAIMED = "payment.claimed"
    PAYMENT_CONFIRMED = "payment.confirmed"
    PAYMENT_REJECTED = "payment.rejected"
    ORDER_PROBLEM = "order.problem"
    ORDER_SHIPPED = "order.shipped"
    ORDER_DELIVERED = "order.delivered"
    ORDER_CANCELLED = "order.cancelled"
    CONVERSATION_ESCALATED = "conversation.escalated"
    CONVERSATION_RESOLVED = "conversation.resolved"
    CONVERSATION_CLOSED = "conversation.closed"


@dataclass(frozen=True)
class DomainEvent:
    event_type: EventType
    occurred_at: datetime
    merchant_ref: str
    actor_id: str
    order_id: UUID | None = None
    conversation_id: UUID | None = None
    payload: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[DomainEvent], None]

ALL_EVENTS = "*"


class EventBus:
    """Synchronous subscriber registry, safe to share across threads."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: EventType | str, handler: EventHandler) -> None:
        key = event_type.value if isinstance(event_type, EventType) else event_type
        with self._lock:
            self._handlers.setdefault(key, []).append(handler)

    def unsubscribe(self, event_type: EventType | str, handler: EventHandler) -> None:
        key = event_type.value if isinstance(event_type, EventType) else event_type
        with self._lock:
            handlers = self._handlers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event.event_type.value, ()))
            handlers += self._handlers.get(ALL_EVENTS, ())

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_type": event.event_type.value,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )

    def publish_all(self, events: list[DomainEvent]) -> None:
        for event in events:
            self.publish(event)
