"""
StockLedger -- authoritative on-hand quantity per product.

Responsibility:
    The only writer of ``Product.quantity``.  Every change is a single
    locked read-modify-write, and the derived product status is kept in
    step with the quantity.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.  Called by
    OrderLifecycle (commit / release) and directly by the orchestrator for
    registration and restocking.

Invariants enforced:
    - Quantity is never negative.  A change that would go below zero raises
      InsufficientStockError and leaves the row untouched.
    - Concurrent adjusts on one product serialize on the row lock
      (``SELECT ... FOR UPDATE`` on PostgreSQL; the IMMEDIATE write
      transaction on SQLite), so no update is lost.
    - quantity == 0 => out_of_stock unless discontinued; a positive quantity
      lifts out_of_stock back to available; discontinued is never left
      automatically.

Failure modes:
    - ProductNotFoundError for an unknown id.
    - ValidationError for a zero delta or malformed registration data.
    - InsufficientStockError when the result would be negative.
"""

from decimal import Decimal
from uuid import UUID

from commerce_kernel.db.types import to_money
from commerce_kernel.domain.dtos import ProductInfo
from commerce_kernel.domain.values import ProductStatus
from commerce_kernel.exceptions import (
    InsufficientStockError,
    ProductNotFoundError,
    ValidationError,
)
from commerce_kernel.logging_config import get_logger
from commerce_kernel.models.product import Product
from commerce_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")


class StockLedger(BaseService[Product]):
    """
    Atomic stock adjustments with derived product status.

    Contract:
        ``adjust`` returns the product after the change.  The row stays
        locked until the caller's transaction ends, so callers that touch
        several products must do so in sorted id order.
    """

    model = Product

    def register_product(
        self,
        merchant_ref: str,
        name: str,
        display_price: Decimal | int | str,
        actor_id: str,
        floor_price: Decimal | int | str | None = None,
        quantity: int = 0,
    ) -> ProductInfo:
        """Seed a product from the external catalog."""
        if not merchant_ref or not name or not name.strip():
            raise ValidationError("Product needs a merchant and a name", field="name")
        display = to_money(display_price)
        floor = to_money(floor_price) if floor_price is not None else display
        if display <= 0:
            raise ValidationError(
                "Display price must be positive", field="display_price",
            )
        if floor <= 0 or floor > display:
            raise ValidationError(
                f"Floor price {floor} must be positive and not above "
                f"display price {display}",
                field="floor_price",
            )
        if quantity < 0:
            raise ValidationError("Quantity must not be negative", field="quantity")

        product = Product(
            merchant_ref=merchant_ref,
            name=name.strip(),
            display_price=display,
            floor_price=floor,
            quantity=quantity,
            status=(
                ProductStatus.AVAILABLE.value
                if quantity > 0
                else ProductStatus.OUT_OF_STOCK.value
            ),
            units_sold=0,
            created_by=actor_id,
        )
        self.session.add(product)
        self.session.flush()

        logger.info(
            "product_registered",
            extra={
                "product_id": str(product.id),
                "merchant_ref": merchant_ref,
                "quantity": quantity,
            },
        )
        return product.to_dto()

    def get(self, product_id: UUID) -> ProductInfo:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product.to_dto()

    def adjust(
        self,
        product_id: UUID,
        delta: int,
        actor_id: str,
        count_as_sale: bool = True,
    ) -> ProductInfo:
        """
        Apply ``delta`` to the on-hand quantity under a row lock.

        Negative deltas that are sales add to ``units_sold``; positive ones
        (releases of a cancelled order) take it back, floored at zero.
        Restocking passes ``count_as_sale=False`` so the counter is left
        alone.

        Raises:
            ValidationError: delta is zero.
            ProductNotFoundError: unknown product.
            InsufficientStockError: result would be negative; nothing changed.
        """
        if delta == 0:
            raise ValidationError("Stock adjustment must be non-zero", field="delta")

        product = self._lock(product_id)
        before = product.quantity
        after = before + delta

        if after < 0:
            logger.warning(
                "stock_insufficient",
                extra={
                    "product_id": str(product_id),
                    "requested": -delta,
                    "available": before,
                },
            )
            raise InsufficientStockError(str(product_id), -delta, before)

        product.quantity = after
        product.status = _derive_status(product.status, after)
        if count_as_sale:
            product.units_sold = max(0, product.units_sold - delta)
        product.updated_by = actor_id
        self.session.flush()

        logger.info(
            "stock_adjusted",
            extra={
                "product_id": str(product_id),
                "delta": delta,
                "quantity_before": before,
                "quantity_after": after,
                "status": product.status,
            },
        )
        return product.to_dto()

    def restock(self, product_id: UUID, quantity: int, actor_id: str) -> ProductInfo:
        if quantity <= 0:
            raise ValidationError("Restock quantity must be positive", field="quantity")
        return self.adjust(product_id, quantity, actor_id, count_as_sale=False)

    def discontinue(self, product_id: UUID, actor_id: str) -> ProductInfo:
        product = self._lock(product_id)
        product.status = ProductStatus.DISCONTINUED.value
        product.updated_by = actor_id
        self.session.flush()
        logger.info("product_discontinued", extra={"product_id": str(product_id)})
        return product.to_dto()

    def _lock(self, product_id: UUID) -> Product:
        product = self._select_for_update(product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product


def _derive_status(current: str, quantity: int) -> str:
    if current == ProductStatus.DISCONTINUED.value:
        return current
    if quantity == 0:
        return ProductStatus.OUT_OF_STOCK.value
    return ProductStatus.AVAILABLE.value
