"""Read-only product projections (catalog stock view)."""

from sqlalchemy import select

from commerce_kernel.domain.dtos import ProductInfo
from commerce_kernel.domain.values import ProductStatus, parse_choice
from commerce_kernel.models.product import Product
from commerce_kernel.selectors.base import BaseSelector


class ProductSelector(BaseSelector[Product]):

    model = Product

    def list_for_merchant(
        self,
        merchant_ref: str,
        status: ProductStatus | str | None = None,
    ) -> list[ProductInfo]:
        stmt = select(Product).where(Product.merchant_ref == merchant_ref)
        if status is not None:
            status = parse_choice(ProductStatus, status, "status")
            stmt = stmt.where(Product.status == status.value)
        stmt = stmt.order_by(Product.name.asc())
        return self._dtos(stmt)

    def low_stock(self, merchant_ref: str, threshold: int = 5) -> list[ProductInfo]:
        """Non-discontinued products at or below ``threshold`` units."""
        stmt = (
            select(Product)
            .where(
                Product.merchant_ref == merchant_ref,
                Product.status != ProductStatus.DISCONTINUED.value,
                Product.quantity <= threshold,
            )
            .order_by(Product.quantity.asc(), Product.name.asc())
        )
        return self._dtos(stmt)
