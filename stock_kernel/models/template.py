"""
Module: stock_kernel.models.template
Responsibility: ORM persistence for reusable transfer templates.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - source_branch_id != destination_branch_id.
    - One item per product per template (uq_template_item_product), with
      default_qty > 0.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TimestampMixin


class TransferTemplate(TimestampMixin, Base):
    """A saved route plus default item quantities, used to prefill transfers."""

    __tablename__ = "stock_transfer_templates"

    __table_args__ = (
        CheckConstraint(
            "source_branch_id <> destination_branch_id",
            name="ck_template_distinct_branches",
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    source_branch_id: Mapped[UUID] = mapped_column(ForeignKey("branches.id"), nullable=False)

    destination_branch_id: Mapped[UUID] = mapped_column(ForeignKey("branches.id"), nullable=False)

    created_by: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)

    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)

    items: Mapped[list["TransferTemplateItem"]] = relationship(
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TransferTemplateItem.created_at",
    )


class TransferTemplateItem(TimestampMixin, Base):
    __tablename__ = "stock_transfer_template_items"

    __table_args__ = (
        UniqueConstraint("template_id", "product_id", name="uq_template_item_product"),
        CheckConstraint("default_qty > 0", name="ck_template_item_qty_positive"),
    )

    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("stock_transfer_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )

    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)

    default_qty: Mapped[int] = mapped_column(nullable=False)
