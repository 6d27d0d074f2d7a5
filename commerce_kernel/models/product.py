"""
Module: commerce_kernel.models.product
Responsibility: ORM persistence for a merchant's sellable product and its
    authoritative on-hand quantity.
Architecture position: Kernel > Models.  May import from db/ and the pure
    domain value enums only.

Invariants enforced:
    - quantity >= 0 (ck_product_quantity_non_negative).  The service layer
      refuses negative results first; the constraint is the last line.
    - floor_price <= display_price (ck_product_floor_le_display).
    - status is out_of_stock iff quantity == 0 and the product is not
      discontinued.  Maintained by StockLedger, the only writer of quantity.

Failure modes:
    - IntegrityError if a write bypasses StockLedger and drives quantity
      negative.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from commerce_kernel.db.base import TrackedBase
from commerce_kernel.domain.values import ProductStatus


class Product(TrackedBase):
    """
    A product offered by one merchant.

    Registration and catalog edits happen elsewhere; this row only carries
    what the fulfillment engine needs: prices for order snapshots, the
    on-hand quantity, its derived status, and the units-sold counter.
    """

    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_product_quantity_non_negative"),
        CheckConstraint(
            "floor_price <= display_price", name="ck_product_floor_le_display",
        ),
        Index("idx_product_merchant", "merchant_ref"),
        Index("idx_product_merchant_status", "merchant_ref", "status"),
    )

    merchant_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    display_price: Mapped[Decimal] = mapped_column(nullable=False)

    # Minimum negotiable unit price
    floor_price: Mapped[Decimal] = mapped_column(nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ProductStatus.AVAILABLE.value,
    )

    units_sold: Mapped[int] = mapped_column(nullable=False, default=0)

    @property
    def is_discontinued(self) -> bool:
        return self.status == ProductStatus.DISCONTINUED.value

    def to_dto(self):
        """Convert ORM model to frozen domain DTO."""
        from commerce_kernel.domain.dtos import ProductInfo

        return ProductInfo(
            id=self.id,
            merchant_ref=self.merchant_ref,
            name=self.name,
            display_price=self.display_price,
            floor_price=self.floor_price,
            quantity=self.quantity,
            status=ProductStatus(self.status),
            units_sold=self.units_sold,
        )

    def __repr__(self) -> str:
        return f"<Product {self.name} qty={self.quantity} {self.status}>"
