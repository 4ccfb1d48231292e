"""
StockService -- the only writer of lots, ledger rows and on-hand aggregates.

Responsibility:
    Receives, adjusts and consumes stock in a branch, decrementing lots in
    FIFO order, and restores quantities to existing lots for reversals.

Architecture position:
    Kernel > Services.  Uses domain/fifo.py for the allocation plan.
    TransferService calls the ``record_*`` methods after doing its own
    branch checks.

Invariants enforced:
    - Quantities are integers; receipts are > 0, adjustments non-zero.
    - On-hand never goes negative: a decrement larger than on-hand raises
      InsufficientStockError and applies nothing.
    - For every (branch, product): aggregate qty_on_hand equals the sum of
      lot qty_remaining equals the sum of ledger qty_delta.
    - Restored lots keep their received_at, so they keep their FIFO age.

Audit relevance:
    Each ledger row is audited as STOCK_LEDGER with the movement action; a
    new lot is audited as STOCK_LOT CREATE; each aggregate change is audited
    as PRODUCT_STOCK UPDATE with qty_on_hand before and after.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.fifo import LotBalance, plan_fifo_allocation
from stock_kernel.domain.principal import Principal
from stock_kernel.exceptions import (
    EntityNotFoundError,
    InsufficientStockError,
    InvalidQuantityError,
    LotsNotFoundError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.product import Product
from stock_kernel.models.stock import ProductStock, StockLedgerEntry, StockLot, StockMovementKind
from stock_kernel.services.access_service import AccessService
from stock_kernel.services.base import BaseService, snapshot

logger = get_logger("services.stock")


@dataclass(frozen=True)
class ConsumedLot:
    """One lot touched by a FIFO decrement."""

    lot_id: UUID
    qty: int
    unit_cost_pence: int | None
    ledger_id: UUID


@dataclass(frozen=True)
class StockMovementResult:
    branch_id: UUID
    product_id: UUID
    kind: StockMovementKind
    qty_delta: int
    qty_on_hand: int
    lot_id: UUID | None = None
    ledger_ids: tuple[UUID, ...] = ()
    allocations: tuple[ConsumedLot, ...] = ()


class StockService(BaseService):
    def __init__(self, session, auditor, clock=None):
        super().__init__(session, auditor, clock)
        self._access = AccessService(session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _active_product(self, tenant_id: UUID, product_id: UUID) -> Product:
        product = self.session.execute(
            select(Product).where(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
                Product.is_archived.is_(False),
            )
        ).scalar_one_or_none()
        if product is None:
            raise EntityNotFoundError("Product", str(product_id))
        return product

    def _check_access(self, principal: Principal, branch_id: UUID, product_id: UUID) -> Product:
        self._access.assert_branch_access(principal.tenant_id, principal.user_id, branch_id)
        return self._active_product(principal.tenant_id, product_id)

    def _aggregate(self, tenant_id: UUID, branch_id: UUID, product_id: UUID) -> ProductStock:
        """Locked aggregate row, created at zero when absent."""
        row = self.session.execute(
            select(ProductStock)
            .where(
                ProductStock.tenant_id == tenant_id,
                ProductStock.branch_id == branch_id,
                ProductStock.product_id == product_id,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if row is None:
            row = ProductStock(
                tenant_id=tenant_id,
                branch_id=branch_id,
                product_id=product_id,
                qty_on_hand=0,
                qty_allocated=0,
            )
            self.session.add(row)
            self.session.flush()
        return row

    # ------------------------------------------------------------------
    # Audit helpers
    # ------------------------------------------------------------------

    def _audit_ledger(self, principal: Principal, entry: StockLedgerEntry, action: AuditAction) -> None:
        self._audit(
            principal, AuditEntityType.STOCK_LEDGER, entry.id, action,
            entity_name=entry.kind.value, after=snapshot(entry),
        )

    def _audit_aggregate(self, principal: Principal, aggregate: ProductStock, qty_before: int) -> None:
        self._audit(
            principal, AuditEntityType.PRODUCT_STOCK, aggregate.id, AuditAction.UPDATE,
            before={"qty_on_hand": qty_before},
            after={"qty_on_hand": aggregate.qty_on_hand},
        )

    def _ledger(
        self,
        principal: Principal,
        lot: StockLot,
        kind: StockMovementKind,
        qty_delta: int,
        reason: str | None,
        occurred_at: datetime,
    ) -> StockLedgerEntry:
        entry = StockLedgerEntry(
            tenant_id=lot.tenant_id,
            branch_id=lot.branch_id,
            product_id=lot.product_id,
            lot_id=lot.id,
            kind=kind,
            qty_delta=qty_delta,
            reason=reason,
            occurred_at=occurred_at,
            actor_id=principal.user_id,
        )
        self.session.add(entry)
        return entry

    # ------------------------------------------------------------------
    # Unchecked movements (callers have already checked access)
    # ------------------------------------------------------------------

    def record_receipt(
        self,
        principal: Principal,
        branch_id: UUID,
        product_id: UUID,
        qty: int,
        *,
        kind: StockMovementKind = StockMovementKind.RECEIPT,
        action: AuditAction = AuditAction.STOCK_RECEIVE,
        unit_cost_pence: int | None = None,
        source_ref: str | None = None,
        reason: str | None = None,
        occurred_at: datetime | None = None,
    ) -> StockMovementResult:
        """Create a lot of ``qty`` units and its positive ledger row."""
        if qty <= 0:
            raise InvalidQuantityError("qty", qty, "> 0")
        if unit_cost_pence is not None and unit_cost_pence < 0:
            raise InvalidQuantityError("unit_cost_pence", unit_cost_pence, ">= 0")
        occurred_at = occurred_at or self._clock.now()

        lot = StockLot(
            tenant_id=principal.tenant_id,
            branch_id=branch_id,
            product_id=product_id,
            qty_received=qty,
            qty_remaining=qty,
            unit_cost_pence=unit_cost_pence,
            source_ref=source_ref,
            received_at=occurred_at,
        )
        self.session.add(lot)
        self.session.flush()

        entry = self._ledger(principal, lot, kind, qty, reason, occurred_at)
        aggregate = self._aggregate(principal.tenant_id, branch_id, product_id)
        qty_before = aggregate.qty_on_hand
        aggregate.qty_on_hand = qty_before + qty
        self.session.flush()

        self._audit(
            principal, AuditEntityType.STOCK_LOT, lot.id, AuditAction.CREATE,
            entity_name=source_ref, after=snapshot(lot),
        )
        self._audit_ledger(principal, entry, action)
        self._audit_aggregate(principal, aggregate, qty_before)

        logger.info(
            "stock_received",
            extra={
                "branch_id": str(branch_id),
                "product_id": str(product_id),
                "lot_id": str(lot.id),
                "qty": qty,
                "kind": kind.value,
            },
        )
        return StockMovementResult(
            branch_id=branch_id,
            product_id=product_id,
            kind=kind,
            qty_delta=qty,
            qty_on_hand=aggregate.qty_on_hand,
            lot_id=lot.id,
            ledger_ids=(entry.id,),
        )

    def record_decrement(
        self,
        principal: Principal,
        branch_id: UUID,
        product_id: UUID,
        qty: int,
        *,
        kind: StockMovementKind = StockMovementKind.CONSUMPTION,
        action: AuditAction = AuditAction.STOCK_CONSUME,
        reason: str | None = None,
        occurred_at: datetime | None = None,
    ) -> StockMovementResult:
        """
        Take ``qty`` units out of the branch, oldest lots first.

        Raises:
            InsufficientStockError: qty exceeds on-hand; nothing is applied.
        """
        if qty <= 0:
            raise InvalidQuantityError("qty", qty, "> 0")
        occurred_at = occurred_at or self._clock.now()

        aggregate = self._aggregate(principal.tenant_id, branch_id, product_id)
        if qty > aggregate.qty_on_hand:
            logger.warning(
                "insufficient_stock",
                extra={
                    "branch_id": str(branch_id),
                    "product_id": str(product_id),
                    "requested": qty,
                    "available": aggregate.qty_on_hand,
                },
            )
            raise InsufficientStockError(
                str(branch_id), str(product_id), qty, aggregate.qty_on_hand
            )

        lots = {
            lot.id: lot
            for lot in self.session.execute(
                select(StockLot)
                .where(
                    StockLot.tenant_id == principal.tenant_id,
                    StockLot.branch_id == branch_id,
                    StockLot.product_id == product_id,
                    StockLot.qty_remaining > 0,
                )
                .order_by(StockLot.received_at, StockLot.created_at, StockLot.id)
                .with_for_update()
            ).scalars()
        }
        plan = plan_fifo_allocation(
            [
                LotBalance(
                    lot_id=lot.id,
                    qty_remaining=lot.qty_remaining,
                    unit_cost_pence=lot.unit_cost_pence,
                    received_at=lot.received_at,
                    created_at=lot.created_at,
                )
                for lot in lots.values()
            ],
            qty,
        )
        if plan.shortfall:
            raise InsufficientStockError(
                str(branch_id), str(product_id), qty, plan.total_qty
            )

        entries = []
        for allocation in plan.allocations:
            lot = lots[allocation.lot_id]
            lot.qty_remaining -= allocation.qty
            entries.append(
                self._ledger(principal, lot, kind, -allocation.qty, reason, occurred_at)
            )
        qty_before = aggregate.qty_on_hand
        aggregate.qty_on_hand = qty_before - qty
        self.session.flush()

        for entry in entries:
            self._audit_ledger(principal, entry, action)
        self._audit_aggregate(principal, aggregate, qty_before)

        consumed = tuple(
            ConsumedLot(a.lot_id, a.qty, a.unit_cost_pence, entry.id)
            for a, entry in zip(plan.allocations, entries)
        )
        logger.info(
            "stock_decremented",
            extra={
                "branch_id": str(branch_id),
                "product_id": str(product_id),
                "qty": qty,
                "kind": kind.value,
                "lots_touched": len(consumed),
            },
        )
        return StockMovementResult(
            branch_id=branch_id,
            product_id=product_id,
            kind=kind,
            qty_delta=-qty,
            qty_on_hand=aggregate.qty_on_hand,
            ledger_ids=tuple(e.id for e in entries),
            allocations=consumed,
        )

    def record_restore(
        self,
        principal: Principal,
        branch_id: UUID,
        lots: list[tuple[UUID, int]],
        reason: str | None = None,
    ) -> list[StockMovementResult]:
        """Put quantity back into existing lots; one result per product."""
        if not lots:
            raise ValidationError("At least one lot is required")
        for _, qty in lots:
            if qty <= 0:
                raise InvalidQuantityError("qty", qty, "> 0")

        wanted = {lot_id for lot_id, _ in lots}
        found = {
            lot.id: lot
            for lot in self.session.execute(
                select(StockLot)
                .where(
                    StockLot.tenant_id == principal.tenant_id,
                    StockLot.branch_id == branch_id,
                    StockLot.id.in_(wanted),
                )
                .with_for_update()
            ).scalars()
        }
        missing = sorted(str(lot_id) for lot_id in wanted - found.keys())
        if missing:
            raise LotsNotFoundError(missing)

        occurred_at = self._clock.now()
        per_product: dict[UUID, list[StockLedgerEntry]] = defaultdict(list)
        for lot_id, qty in lots:
            lot = found[lot_id]
            lot.qty_remaining += qty
            per_product[lot.product_id].append(
                self._ledger(principal, lot, StockMovementKind.REVERSAL, qty, reason, occurred_at)
            )
        self.session.flush()

        results = []
        for product_id, entries in per_product.items():
            restored = sum(e.qty_delta for e in entries)
            aggregate = self._aggregate(principal.tenant_id, branch_id, product_id)
            qty_before = aggregate.qty_on_hand
            aggregate.qty_on_hand = qty_before + restored
            self.session.flush()

            for entry in entries:
                self._audit_ledger(principal, entry, AuditAction.STOCK_REVERSE)
            self._audit_aggregate(principal, aggregate, qty_before)
            results.append(
                StockMovementResult(
                    branch_id=branch_id,
                    product_id=product_id,
                    kind=StockMovementKind.REVERSAL,
                    qty_delta=restored,
                    qty_on_hand=aggregate.qty_on_hand,
                    ledger_ids=tuple(e.id for e in entries),
                )
            )

        logger.info(
            "stock_restored",
            extra={"branch_id": str(branch_id), "lot_count": len(found), "reason": reason},
        )
        return results

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def receive_stock(
        self,
        principal: Principal,
        branch_id: UUID,
        product_id: UUID,
        qty: int,
        unit_cost_pence: int | None = None,
        source_ref: str | None = None,
        reason: str | None = None,
        occurred_at: datetime | None = None,
    ) -> StockMovementResult:
        self._check_access(principal, branch_id, product_id)
        return self.record_receipt(
            principal, branch_id, product_id, qty,
            unit_cost_pence=unit_cost_pence,
            source_ref=source_ref,
            reason=reason,
            occurred_at=occurred_at,
        )

    def adjust_stock(
        self,
        principal: Principal,
        branch_id: UUID,
        product_id: UUID,
        qty_delta: int,
        unit_cost_pence: int | None = None,
        reason: str | None = None,
    ) -> StockMovementResult:
        if qty_delta == 0:
            raise InvalidQuantityError("qty_delta", qty_delta, "non-zero")
        self._check_access(principal, branch_id, product_id)

        if qty_delta > 0:
            return self.record_receipt(
                principal, branch_id, product_id, qty_delta,
                kind=StockMovementKind.ADJUSTMENT,
                action=AuditAction.STOCK_ADJUST,
                unit_cost_pence=unit_cost_pence,
                reason=reason or "adjust-up",
            )
        return self.record_decrement(
            principal, branch_id, product_id, -qty_delta,
            kind=StockMovementKind.ADJUSTMENT,
            action=AuditAction.STOCK_ADJUST,
            reason=reason or "adjust-down",
        )

    def consume_stock(
        self,
        principal: Principal,
        branch_id: UUID,
        product_id: UUID,
        qty: int,
        reason: str | None = None,
    ) -> StockMovementResult:
        self._check_access(principal, branch_id, product_id)
        return self.record_decrement(principal, branch_id, product_id, qty, reason=reason)

    def restore_lot_quantities(
        self,
        principal: Principal,
        branch_id: UUID,
        lots: list[tuple[UUID, int]],
        reason: str | None = None,
    ) -> list[StockMovementResult]:
        self._access.assert_branch_access(principal.tenant_id, principal.user_id, branch_id)
        return self.record_restore(principal, branch_id, lots, reason)
