"""
Module: stock_kernel.models.tenant
Responsibility: ORM persistence for tenants, the top-level isolation boundary.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - slug is globally unique (uq_tenant_slug).
    - Every other tenant-scoped row carries tenant_id; services filter on it
      so rows of one tenant are invisible ("not found") to another.
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, TimestampMixin


class Tenant(TimestampMixin, Base):
    """
    A company using the system.

    Contract:
        Created through TenantService.create_tenant(), which also seeds the
        system roles and the first OWNER membership.
    """

    __tablename__ = "tenants"

    __table_args__ = (UniqueConstraint("slug", name="uq_tenant_slug"),)

    # URL-safe identifier (e.g., "acme-coffee")
    slug: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    def __repr__(self) -> str:
        return f"<Tenant {self.slug}>"
