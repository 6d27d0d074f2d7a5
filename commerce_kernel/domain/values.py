"""
Status and classification enums shared by models, services and selectors.

All enums are ``str`` subclasses so that they persist as plain strings and
serialize unchanged into log payloads and events.
"""

from enum import Enum
from typing import TypeVar

from commerce_kernel.exceptions import ValidationError

E = TypeVar("E", bound=Enum)


class ProductStatus(str, Enum):
    """Product lifecycle status.

    out_of_stock is derived: it holds iff quantity == 0 and the product is
    not discontinued.  discontinued is set explicitly and never reverts.
    """

    AVAILABLE = "available"
    OUT_OF_STOCK = "out_of_stock"
    DISCONTINUED = "discontinued"


class OrderStatus(str, Enum):
    """
    Order status.

    State machine:
        PENDING -> PAID -> SHIPPED -> DELIVERED
        PENDING | PAID | SHIPPED -> PROBLEM
        PENDING | PAID | SHIPPED | PROBLEM -> CANCELLED
        DELIVERED: terminal
        CANCELLED: terminal
    """

    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    PROBLEM = "problem"
    CANCELLED = "cancelled"


class ClaimStatus(str, Enum):
    """Payment claim status attached to an order.

    A rejected claim returns to UNCLAIMED; the rejection itself is kept in
    the order's rejection fields.
    """

    UNCLAIMED = "unclaimed"
    CLAIM_PENDING = "claim_pending"
    CONFIRMED = "confirmed"


class PaymentMethod(str, Enum):
    ORANGE_MONEY = "orange_money"
    MTN_MONEY = "mtn_money"
    CASH = "cash"


class ConversationStatus(str, Enum):
    """
    Conversation status.

    State machine:
        AUTOMATED -> ESCALATED -> RESOLVED -> CLOSED
        AUTOMATED -> RESOLVED | CLOSED
        ESCALATED -> CLOSED
    """

    AUTOMATED = "automated"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    CLOSED = "closed"


class EscalationReason(str, Enum):
    """Fixed escalation taxonomy."""

    DEFECT_REFUND = "defect_refund"
    DISCOUNT = "discount"
    DELIVERY = "delivery"
    COMPLEXITY = "complexity"
    PAYMENT_VALIDATION = "payment_validation"
    OTHER = "other"


class SenderRole(str, Enum):
    BUYER = "buyer"
    AGENT = "agent"
    OPERATOR = "operator"
    SYSTEM = "system"


class MessageKind(str, Enum):
    TEXT = "text"
    MEDIA = "media"
    SYSTEM = "system"


def parse_choice(enum_type: type[E], value: E | str, field: str) -> E:
    """Coerce caller input to ``enum_type``; unknown values are a ValidationError."""
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(
            f"Unknown {field} {value!r}; expected one of: {allowed}", field=field,
        ) from None
