"""
Module: stock_kernel.models.stock
Responsibility: ORM persistence for the stock ledger: received lots, the
    append-only movement ledger, and the per-branch on-hand aggregate.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - StockLot.qty_remaining >= 0 (ck_lot_qty_remaining_non_negative).
    - StockLot receipt facts (qty_received, unit_cost_pence, received_at) are
      frozen after insert (ORM listener, db/immutability.py).
    - StockLedgerEntry rows are append-only and qty_delta != 0.
    - ProductStock is unique per (tenant, branch, product) and
      qty_on_hand >= 0.
    - For every (branch, product): qty_on_hand == sum(qty_remaining of lots)
      == sum(qty_delta of ledger rows).  Maintained by StockService, which is
      the only writer.

Audit relevance:
    Ledger rows are the movement history; every row also has a matching
    AuditEvent (STOCK_RECEIVE / STOCK_ADJUST / STOCK_CONSUME / STOCK_REVERSE)
    written in the same transaction.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, TimestampMixin, enum_column, utcnow


class StockMovementKind(str, Enum):
    """Why a ledger row exists.  Sign of qty_delta depends on the movement."""

    RECEIPT = "RECEIPT"
    ADJUSTMENT = "ADJUSTMENT"
    CONSUMPTION = "CONSUMPTION"
    REVERSAL = "REVERSAL"


class StockLot(TimestampMixin, Base):
    """
    A quantity of one product received into one branch at one cost.

    Contract:
        FIFO decrements consume lots ordered by (received_at, created_at, id).
        Restoring quantity to a lot keeps its received_at, so the lot keeps
        its FIFO position.
    """

    __tablename__ = "stock_lots"

    __table_args__ = (
        CheckConstraint("qty_remaining >= 0", name="ck_lot_qty_remaining_non_negative"),
        CheckConstraint("qty_received > 0", name="ck_lot_qty_received_positive"),
        Index("idx_lot_fifo", "tenant_id", "branch_id", "product_id", "received_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)

    branch_id: Mapped[UUID] = mapped_column(ForeignKey("branches.id"), nullable=False)

    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)

    qty_received: Mapped[int] = mapped_column(nullable=False)

    qty_remaining: Mapped[int] = mapped_column(nullable=False)

    # Unit cost in pence; None when the receipt carried no cost
    unit_cost_pence: Mapped[int | None] = mapped_column(nullable=True)

    # Free-form origin, e.g. "PO-1042" or "Transfer TRF-2025-0001"
    source_ref: Mapped[str | None] = mapped_column(String(200), nullable=True)

    received_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<StockLot {self.id} {self.qty_remaining}/{self.qty_received}>"


class StockLedgerEntry(Base):
    """
    One signed quantity movement against one lot.

    Contract:
        Append-only.  Corrections are new rows (ADJUSTMENT or REVERSAL),
        never edits.
    """

    __tablename__ = "stock_ledger"

    __table_args__ = (
        CheckConstraint("qty_delta <> 0", name="ck_ledger_qty_delta_non_zero"),
        Index("idx_ledger_product_occurred", "tenant_id", "product_id", "occurred_at"),
        Index("idx_ledger_branch", "branch_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)

    branch_id: Mapped[UUID] = mapped_column(ForeignKey("branches.id"), nullable=False)

    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)

    lot_id: Mapped[UUID] = mapped_column(ForeignKey("stock_lots.id"), nullable=False, index=True)

    kind: Mapped[StockMovementKind] = mapped_column(enum_column(StockMovementKind), nullable=False)

    qty_delta: Mapped[int] = mapped_column(nullable=False)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    actor_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<StockLedgerEntry {self.kind.value} {self.qty_delta:+d}>"


class ProductStock(TimestampMixin, Base):
    """On-hand aggregate for one product in one branch."""

    __tablename__ = "product_stock"

    __table_args__ = (
        UniqueConstraint("tenant_id", "branch_id", "product_id", name="uq_product_stock"),
        CheckConstraint("qty_on_hand >= 0", name="ck_product_stock_non_negative"),
    )

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)

    branch_id: Mapped[UUID] = mapped_column(ForeignKey("branches.id"), nullable=False)

    product_id: Mapped[UUID] = mapped_column(ForeignKey("products.id"), nullable=False)

    qty_on_hand: Mapped[int] = mapped_column(default=0, nullable=False)

    qty_allocated: Mapped[int] = mapped_column(default=0, nullable=False)
