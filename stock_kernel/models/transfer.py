"""
Module: stock_kernel.models.transfer
Responsibility: ORM persistence for inter-branch stock transfers and their
    line items.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - transfer_number is unique per tenant (uq_transfer_tenant_number).
    - source_branch_id != destination_branch_id.
    - A transfer is reversed at most once: reversal_of_id is unique, and the
      original's reversed_by_transfer_id is set exactly once.
    - Per item: 0 <= qty_received <= qty_shipped <= qty_approved <= qty_requested.
    - Status changes follow domain.transfer.TRANSFER_TRANSITIONS (enforced by
      TransferService).

Audit relevance:
    Every status change produces a TRANSFER_* AuditEvent.  shipment_batches
    keeps the exact lots consumed per shipment, which is what reversal uses
    to put stock back into the same lots.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TimestampMixin, enum_column


class TransferStatus(str, Enum):
    """Lifecycle status of a stock transfer.

    Contract: transitions are listed in domain.transfer.TRANSFER_TRANSITIONS.
    REJECTED, CANCELLED and REVERSED are terminal.
    """

    DRAFT = "DRAFT"
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    SHIPPED = "SHIPPED"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    REVERSED = "REVERSED"


class TransferPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TransferInitiationType(str, Enum):
    """PUSH: the source offers stock.  PULL: the destination asks for it."""

    PUSH = "PUSH"
    PULL = "PULL"


class StockTransfer(TimestampMixin, Base):
    """
    Movement of stock between two branches of one tenant.

    Contract:
        The initiating branch (source for PUSH, destination for PULL) creates
        and submits; the other branch reviews.  The source ships, the
        destination receives.

    Guarantees:
        - Stock leaves the source only on ship and arrives at the destination
          only on receive.
        - A COMPLETED transfer can be reversed once; the reversal is itself a
          COMPLETED transfer with the branches swapped.

    Non-goals:
        - Does NOT reserve stock at approval time.
    """

    __tablename__ = "stock_transfers"

    __table_args__ = (
        UniqueConstraint("tenant_id", "transfer_number", name="uq_transfer_tenant_number"),
        UniqueConstraint("reversal_of_id", name="uq_transfer_reversal_of"),
        CheckConstraint(
            "source_branch_id <> destination_branch_id",
            name="ck_transfer_distinct_branches",
        ),
        Index("idx_transfer_tenant_status", "tenant_id", "status"),
        Index("idx_transfer_requested_at", "tenant_id", "requested_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)

    # Human-readable number, e.g. "TRF-2025-0001"
    transfer_number: Mapped[str] = mapped_column(String(30), nullable=False)

    source_branch_id: Mapped[UUID] = mapped_column(ForeignKey("branches.id"), nullable=False)

    destination_branch_id: Mapped[UUID] = mapped_column(ForeignKey("branches.id"), nullable=False)

    status: Mapped[TransferStatus] = mapped_column(
        enum_column(TransferStatus), default=TransferStatus.REQUESTED, nullable=False
    )

    priority: Mapped[TransferPriority] = mapped_column(
        enum_column(TransferPriority), default=TransferPriority.NORMAL, nullable=False
    )

    initiation_type: Mapped[TransferInitiationType] = mapped_column(
        enum_column(TransferInitiationType), default=TransferInitiationType.PUSH, nullable=False
    )

    initiated_by_branch_id: Mapped[UUID] = mapped_column(ForeignKey("branches.id"), nullable=False)

    request_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    order_notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Request
    requested_by: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(nullable=False)

    # Review
    reviewed_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Shipment and completion
    shipped_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    requires_multi_level_approval: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    # Reversal links
    is_reversal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("stock_transfers.id"), nullable=True
    )
    reversed_by_transfer_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("stock_transfers.id"), nullable=True
    )
    reversal_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    items: Mapped[list["StockTransferItem"]] = relationship(
        back_populates="transfer",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockTransferItem.created_at",
    )

    def __repr__(self) -> str:
        return f"<StockTransfer {self.transfer_number}: {self.status.value}>"


class StockTransferItem(TimestampMixin, Base):
    """
    One product line on a transfer.

    shipment_batches is a JSON list, one entry per ship call:
        {"batch_number", "qty", "shipped_at", "shipped_by_user_id",
         "lots_consumed": [{"lot_id", "qty", "unit_cost_pence"}]}
    """

    __tablename__ = "stock_transfer_items"

    __table_args__ = (
        UniqueConstraint("transfer_id", "product_id", name="uq_transfer_item_product"),
        CheckConstraint("qty_requested > 0", name="ck_transfer_item_requested_positive"),
        CheckConstraint("qty_approved >= 0", name="ck_transfer_item_approved_non_negative"),
        CheckConstraint("qty_shipped >= 0", name="ck_transfer_item_shipped_non_negative"),
        CheckConstraint("qty_received >= 0", name="ck_transfer_item_received_non_negative"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        ForeignKey("stock_transfers.id", ondelete="CASCADE"), nullable=False, index=True
    )

    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)

    qty_requested: Mapped[int] = mapped_column(nullable=False)
    qty_approved: Mapped[int] = mapped_column(default=0, nullable=False)
    qty_shipped: Mapped[int] = mapped_column(default=0, nullable=False)
    qty_received: Mapped[int] = mapped_column(default=0, nullable=False)

    # Weighted average over every lot consumed by all shipment batches
    avg_unit_cost_pence: Mapped[int | None] = mapped_column(nullable=True)

    shipment_batches: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    transfer: Mapped[StockTransfer] = relationship(back_populates="items")

    @property
    def qty_to_ship(self) -> int:
        return self.qty_approved - self.qty_shipped

    @property
    def qty_to_receive(self) -> int:
        return self.qty_shipped - self.qty_received
