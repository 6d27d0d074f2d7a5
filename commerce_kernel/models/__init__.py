"""ORM models for the commerce kernel."""

from commerce_kernel.models.conversation import Conversation, Message
from commerce_kernel.models.order import Order, OrderLine
from commerce_kernel.models.product import Product
from commerce_kernel.models.relation import ClientMerchantRelation

__all__ = [
    "ClientMerchantRelation",
    "Conversation",
    "Message",
    "Order",
    "OrderLine",
    "Product",
]
