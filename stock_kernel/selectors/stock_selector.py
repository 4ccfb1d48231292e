"""
Module: stock_kernel.selectors.stock_selector
Responsibility: Read models for stock: per-branch levels with open lots, the
    cross-branch summary for one product, and the paginated movement ledger.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Lots are listed in FIFO order (received_at, created_at, id).
    - Ledger date filters are half-open: occurred_from inclusive,
      occurred_to exclusive.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.pagination import Page, SortDirection
from stock_kernel.domain.principal import Principal
from stock_kernel.exceptions import EntityNotFoundError, ValidationError
from stock_kernel.models.branch import Branch
from stock_kernel.models.product import Product
from stock_kernel.models.stock import ProductStock, StockLedgerEntry, StockLot, StockMovementKind
from stock_kernel.selectors.base import BaseSelector, SortKey, paginate, parse_datetime
from stock_kernel.services.access_service import AccessService


@dataclass(frozen=True)
class LotView:
    lot_id: UUID
    qty_received: int
    qty_remaining: int
    unit_cost_pence: int | None
    source_ref: str | None
    received_at: datetime


@dataclass(frozen=True)
class StockLevels:
    branch_id: UUID
    product_id: UUID
    qty_on_hand: int
    qty_allocated: int
    lots: tuple[LotView, ...]


@dataclass(frozen=True)
class BranchStockLevel:
    branch_id: UUID
    branch_name: str
    qty_on_hand: int
    qty_allocated: int


@dataclass(frozen=True)
class LedgerEntryView:
    id: UUID
    branch_id: UUID
    product_id: UUID
    lot_id: UUID
    kind: StockMovementKind
    qty_delta: int
    reason: str | None
    occurred_at: datetime
    actor_id: UUID | None
    created_at: datetime


def _ledger_view(entry: StockLedgerEntry) -> LedgerEntryView:
    return LedgerEntryView(
        id=entry.id,
        branch_id=entry.branch_id,
        product_id=entry.product_id,
        lot_id=entry.lot_id,
        kind=entry.kind,
        qty_delta=entry.qty_delta,
        reason=entry.reason,
        occurred_at=entry.occurred_at,
        actor_id=entry.actor_id,
        created_at=entry.created_at,
    )


class StockSelector(BaseSelector):
    def __init__(self, session):
        super().__init__(session)
        self._access = AccessService(session)

    def _product(self, tenant_id: UUID, product_id: UUID) -> Product:
        product = self.session.execute(
            select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if product is None:
            raise EntityNotFoundError("Product", str(product_id))
        return product

    def get_stock_levels(self, principal: Principal, branch_id: UUID, product_id: UUID) -> StockLevels:
        self._access.assert_branch_access(principal.tenant_id, principal.user_id, branch_id)
        self._product(principal.tenant_id, product_id)

        aggregate = self.session.execute(
            select(ProductStock).where(
                ProductStock.tenant_id == principal.tenant_id,
                ProductStock.branch_id == branch_id,
                ProductStock.product_id == product_id,
            )
        ).scalar_one_or_none()
        lots = self.session.execute(
            select(StockLot)
            .where(
                StockLot.tenant_id == principal.tenant_id,
                StockLot.branch_id == branch_id,
                StockLot.product_id == product_id,
                StockLot.qty_remaining > 0,
            )
            .order_by(StockLot.received_at, StockLot.created_at, StockLot.id)
        ).scalars()

        return StockLevels(
            branch_id=branch_id,
            product_id=product_id,
            qty_on_hand=aggregate.qty_on_hand if aggregate else 0,
            qty_allocated=aggregate.qty_allocated if aggregate else 0,
            lots=tuple(
                LotView(
                    lot_id=lot.id,
                    qty_received=lot.qty_received,
                    qty_remaining=lot.qty_remaining,
                    unit_cost_pence=lot.unit_cost_pence,
                    source_ref=lot.source_ref,
                    received_at=lot.received_at,
                )
                for lot in lots
            ),
        )

    def get_stock_levels_bulk(self, principal: Principal, product_id: UUID) -> tuple[BranchStockLevel, ...]:
        """Levels of one product in every active branch of the tenant, by name."""
        self._product(principal.tenant_id, product_id)
        rows = self.session.execute(
            select(Branch.id, Branch.name, ProductStock.qty_on_hand, ProductStock.qty_allocated)
            .outerjoin(
                ProductStock,
                (ProductStock.branch_id == Branch.id) & (ProductStock.product_id == product_id),
            )
            .where(
                Branch.tenant_id == principal.tenant_id,
                Branch.is_active.is_(True),
                Branch.is_archived.is_(False),
            )
            .order_by(Branch.name, Branch.id)
        ).all()
        return tuple(
            BranchStockLevel(
                branch_id=branch_id,
                branch_name=name,
                qty_on_hand=on_hand or 0,
                qty_allocated=allocated or 0,
            )
            for branch_id, name, on_hand, allocated in rows
        )

    def list_ledger(
        self,
        principal: Principal,
        product_id: UUID,
        branch_id: UUID | None = None,
        occurred_from: datetime | None = None,
        occurred_to: datetime | None = None,
        kinds: list[StockMovementKind] | None = None,
        min_qty: int | None = None,
        max_qty: int | None = None,
        limit: int | None = None,
        sort_dir: SortDirection = SortDirection.DESC,
        cursor: str | None = None,
    ) -> Page:
        self._product(principal.tenant_id, product_id)
        if branch_id is not None:
            self._access.assert_branch_access(principal.tenant_id, principal.user_id, branch_id)
        if min_qty is not None and max_qty is not None and min_qty > max_qty:
            raise ValidationError("min_qty cannot be greater than max_qty")

        stmt = select(StockLedgerEntry).where(
            StockLedgerEntry.tenant_id == principal.tenant_id,
            StockLedgerEntry.product_id == product_id,
        )
        if branch_id is not None:
            stmt = stmt.where(StockLedgerEntry.branch_id == branch_id)
        if occurred_from is not None:
            stmt = stmt.where(StockLedgerEntry.occurred_at >= occurred_from)
        if occurred_to is not None:
            stmt = stmt.where(StockLedgerEntry.occurred_at < occurred_to)
        if kinds:
            stmt = stmt.where(StockLedgerEntry.kind.in_(kinds))
        if min_qty is not None:
            stmt = stmt.where(StockLedgerEntry.qty_delta >= min_qty)
        if max_qty is not None:
            stmt = stmt.where(StockLedgerEntry.qty_delta <= max_qty)

        descending = sort_dir == SortDirection.DESC
        rows, has_next, next_cursor = paginate(
            self.session,
            stmt,
            [
                SortKey(StockLedgerEntry.occurred_at, lambda e: e.occurred_at,
                        descending=descending, parse=parse_datetime),
                SortKey(StockLedgerEntry.id, lambda e: e.id, descending=descending, parse=UUID),
            ],
            limit,
            cursor,
        )
        return Page(
            items=tuple(_ledger_view(e) for e in rows),
            has_next_page=has_next,
            next_cursor=next_cursor,
            applied={
                "product_id": product_id,
                "branch_id": branch_id,
                "occurred_from": occurred_from,
                "occurred_to": occurred_to,
                "kinds": [k.value for k in kinds] if kinds else None,
                "min_qty": min_qty,
                "max_qty": max_qty,
                "sort_dir": sort_dir.value,
            },
        )
