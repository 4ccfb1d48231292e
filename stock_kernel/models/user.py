"""
Module: stock_kernel.models.user
Responsibility: ORM persistence for users and their tenant/branch memberships.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - User.email is globally unique and stored lower-cased.
    - One UserTenantMembership per (user, tenant); the membership carries the
      user's single role in that tenant.
    - One UserBranchMembership per (user, branch).
    - A tenant always retains at least one active OWNER membership
      (enforced by TenantUserService).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TimestampMixin
from stock_kernel.models.role import Role


class User(TimestampMixin, Base):
    """A person who can sign in.  Users are global; access is per tenant."""

    __tablename__ = "users"

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    email: Mapped[str] = mapped_column(String(255), nullable=False)

    name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class UserTenantMembership(TimestampMixin, Base):
    """
    Grants a user a role inside a tenant.

    Contract:
        An archived membership grants nothing; AccessService treats the user
        as unauthenticated for that tenant.
    """

    __tablename__ = "user_tenant_memberships"

    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", name="uq_membership_user_tenant"),
    )

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)

    role_id: Mapped[UUID] = mapped_column(ForeignKey("roles.id"), nullable=False, index=True)

    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)

    user: Mapped[User] = relationship(lazy="joined")

    role: Mapped[Role] = relationship(lazy="joined")


class UserBranchMembership(TimestampMixin, Base):
    """Membership of a user in one branch of a tenant."""

    __tablename__ = "user_branch_memberships"

    __table_args__ = (
        UniqueConstraint("user_id", "branch_id", name="uq_branch_membership"),
    )

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)

    branch_id: Mapped[UUID] = mapped_column(ForeignKey("branches.id"), nullable=False, index=True)
