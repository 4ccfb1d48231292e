"""
Module: stock_kernel.models.product
Responsibility: ORM persistence for the tenant's product catalog.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - sku is unique per tenant (uq_product_tenant_sku).
    - price_pence >= 0 (ck_product_price_non_negative).
    - Archived products accept no new stock movements.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, TimestampMixin


class Product(TimestampMixin, Base):
    """A sellable item.  Prices are integer pence."""

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
        CheckConstraint("price_pence >= 0", name="ck_product_price_non_negative"),
    )

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Unit sale price in pence
    price_pence: Mapped[int] = mapped_column(default=0, nullable=False)

    barcode: Mapped[str | None] = mapped_column(String(100), nullable=True)

    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Product {self.sku}>"
