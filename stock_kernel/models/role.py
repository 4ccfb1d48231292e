"""
Module: stock_kernel.models.role
Responsibility: ORM persistence for permissions and tenant-scoped roles.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Permission.key is globally unique; rows are seeded from
      domain.rbac.PERMISSION_CATALOG.
    - Role.name is unique per tenant (uq_role_tenant_name).
    - System roles (OWNER, ADMIN, EDITOR, VIEWER) have is_system=True and are
      never edited or archived (enforced by RoleService).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, Column, ForeignKey, String, Table, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TimestampMixin, UUIDString

role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", UUIDString(), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "permission_id",
        UUIDString(),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Permission(Base):
    """A single grantable capability, e.g. ``stock:write``."""

    __tablename__ = "permissions"

    __table_args__ = (UniqueConstraint("key", name="uq_permission_key"),)

    key: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Permission {self.key}>"


class Role(TimestampMixin, Base):
    """
    Named bundle of permissions inside one tenant.

    Guarantees:
        - permissions are loaded eagerly (selectin); permission checks never
          trigger lazy loads mid-request.
    """

    __tablename__ = "roles"

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_role_tenant_name"),)

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)

    permissions: Mapped[list[Permission]] = relationship(
        secondary=role_permissions,
        lazy="selectin",
        order_by=Permission.key,
    )

    def __repr__(self) -> str:
        return f"<Role {self.name} tenant={self.tenant_id}>"

    @property
    def permission_keys(self) -> list[str]:
        return [p.key for p in self.permissions]
