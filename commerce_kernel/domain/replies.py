"""
MessageCatalog -- text of the system messages and agent replies the engine
appends to conversations.

The kernel ships English defaults; ``commerce_config.bridges`` builds a
catalog from the merchant-facing YAML so wording can change without code.
Templates use ``str.format`` fields:

    order_ref, amount, method, reference, reason, product_name, requested,
    available, address, description
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any
from uuid import UUID


@dataclass(frozen=True)
class MessageCatalog:
    payment_claimed: str = (
        "Buyer reports payment of {amount} for order {order_ref}{reference}. "
        "Awaiting operator confirmation."
    )
    claim_reply: str = (
        "Thank you! I am checking your payment of {amount} with the merchant. "
        "You will receive a confirmation shortly."
    )
    claim_reply_with_reference: str = (
        "Thank you! I am checking your payment of {amount} "
        "(reference {reference}) with the merchant. You will receive a "
        "confirmation shortly."
    )
    payment_confirmed: str = (
        "Payment of {amount} for order {order_ref} confirmed ({method})."
    )
    payment_rejected: str = (
        "Payment for order {order_ref} could not be confirmed: {reason}"
    )
    order_shipped: str = "Order {order_ref} has shipped{address}."
    order_delivered: str = "Order {order_ref} was delivered."
    order_cancelled: str = "Order {order_ref} was cancelled: {reason}"
    order_problem: str = "A problem was reported on order {order_ref}: {description}"
    stock_conflict: str = (
        "Order {order_ref} could not be confirmed: {product_name} has "
        "{available} left, {requested} needed. An operator will follow up."
    )

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def render(self, key: str, **values: Any) -> str:
        """Render template ``key``.  Unknown fields render as empty strings."""
        template = getattr(self, key)
        return template.format_map(_Blank(values))


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


def order_ref(order_id: UUID) -> str:
    """Short, buyer-readable order reference."""
    return str(order_id).split("-")[0].upper()
