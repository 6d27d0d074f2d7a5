"""Read-only selectors for the commerce kernel."""

from commerce_kernel.selectors.conversation_selector import ConversationSelector
from commerce_kernel.selectors.order_selector import OrderSelector
from commerce_kernel.selectors.product_selector import ProductSelector
from commerce_kernel.selectors.relation_selector import RelationSelector

__all__ = [
    "ConversationSelector",
    "OrderSelector",
    "ProductSelector",
    "RelationSelector",
]
