"""
Module: stock_kernel.models.branch
Responsibility: ORM persistence for branches (stock-holding locations).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - slug is unique per tenant (uq_branch_tenant_slug).
    - Archived branches are inactive: BranchService sets is_active=False on
      archive.  Transfers require both branches to be active.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, TimestampMixin


class Branch(TimestampMixin, Base):
    """A shop, warehouse or other location that holds stock."""

    __tablename__ = "branches"

    __table_args__ = (UniqueConstraint("tenant_id", "slug", name="uq_branch_tenant_slug"),)

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)

    slug: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Branch {self.slug}>"
