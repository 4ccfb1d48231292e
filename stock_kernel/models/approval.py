"""
Module: stock_kernel.models.approval
Responsibility: ORM persistence for configurable transfer approval rules and
    the per-transfer approval records they produce.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rule levels are unique per rule (uq_rule_level) and numbered 1..N
      (enforced by ApprovalRuleService).
    - Approval records are unique per (transfer, level) (uq_approval_record_level).
    - approval_mode on a record is copied from the matched rule at evaluation
      time; later rule edits do not change in-flight transfers.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TimestampMixin, enum_column


class ApprovalMode(str, Enum):
    """How the levels of a rule are signed.

    SEQUENTIAL: strictly 1, 2, 3...
    PARALLEL:   any order.
    HYBRID:     level 1 first, then the remaining levels in any order.
    """

    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"
    HYBRID = "HYBRID"


class ApprovalConditionType(str, Enum):
    TOTAL_QTY_THRESHOLD = "TOTAL_QTY_THRESHOLD"
    TOTAL_VALUE_THRESHOLD = "TOTAL_VALUE_THRESHOLD"
    SOURCE_BRANCH = "SOURCE_BRANCH"
    DESTINATION_BRANCH = "DESTINATION_BRANCH"
    PRODUCT_CATEGORY = "PRODUCT_CATEGORY"


class ApprovalRecordStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"


class ApprovalRule(TimestampMixin, Base):
    """
    Tenant-defined rule that gates transfers behind approval levels.

    Contract:
        A rule matches a transfer when ALL of its conditions match.  The
        first matching rule (priority desc, created_at asc) wins.
    """

    __tablename__ = "transfer_approval_rules"

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    approval_mode: Mapped[ApprovalMode] = mapped_column(
        enum_column(ApprovalMode), default=ApprovalMode.SEQUENTIAL, nullable=False
    )

    # Higher wins
    priority: Mapped[int] = mapped_column(default=0, nullable=False)

    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)

    conditions: Mapped[list["ApprovalRuleCondition"]] = relationship(
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ApprovalRuleCondition.position",
    )

    levels: Mapped[list["ApprovalRuleLevel"]] = relationship(
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ApprovalRuleLevel.level",
    )

    def __repr__(self) -> str:
        return f"<ApprovalRule {self.name} priority={self.priority}>"


class ApprovalRuleCondition(Base):
    __tablename__ = "transfer_approval_conditions"

    rule_id: Mapped[UUID] = mapped_column(
        ForeignKey("transfer_approval_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Declaration order within the rule
    position: Mapped[int] = mapped_column(default=0, nullable=False)

    condition_type: Mapped[ApprovalConditionType] = mapped_column(
        enum_column(ApprovalConditionType), nullable=False
    )

    # Quantity (units) or value (pence) for threshold conditions
    threshold: Mapped[int | None] = mapped_column(nullable=True)

    branch_id: Mapped[UUID | None] = mapped_column(ForeignKey("branches.id"), nullable=True)


class ApprovalRuleLevel(Base):
    __tablename__ = "transfer_approval_levels"

    __table_args__ = (UniqueConstraint("rule_id", "level", name="uq_rule_level"),)

    rule_id: Mapped[UUID] = mapped_column(
        ForeignKey("transfer_approval_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )

    level: Mapped[int] = mapped_column(nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    required_role_id: Mapped[UUID | None] = mapped_column(ForeignKey("roles.id"), nullable=True)

    required_user_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)


class ApprovalRecord(TimestampMixin, Base):
    """
    One approval level instantiated for one transfer.

    Guarantees:
        - Created PENDING by ApprovalEvaluationService.
        - Leaves PENDING exactly once (APPROVED, REJECTED or SKIPPED).
    """

    __tablename__ = "transfer_approval_records"

    __table_args__ = (
        UniqueConstraint("transfer_id", "level", name="uq_approval_record_level"),
    )

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)

    transfer_id: Mapped[UUID] = mapped_column(
        ForeignKey("stock_transfers.id"), nullable=False, index=True
    )

    rule_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("transfer_approval_rules.id"), nullable=True
    )

    level: Mapped[int] = mapped_column(nullable=False)

    level_name: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[ApprovalRecordStatus] = mapped_column(
        enum_column(ApprovalRecordStatus), default=ApprovalRecordStatus.PENDING, nullable=False
    )

    required_role_id: Mapped[UUID | None] = mapped_column(ForeignKey("roles.id"), nullable=True)

    required_user_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    approval_mode: Mapped[ApprovalMode] = mapped_column(
        enum_column(ApprovalMode), default=ApprovalMode.SEQUENTIAL, nullable=False
    )

    approved_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
