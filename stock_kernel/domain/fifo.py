"""
Module: stock_kernel.domain.fifo
Responsibility: Pure FIFO lot allocation and weighted-average cost.
Architecture position: Kernel > Domain.  Zero I/O; StockService applies the
    plan to the database.

Invariants enforced:
    - Lots are consumed oldest first by (received_at, created_at, id).
    - No lot is taken below zero; the plan never allocates more than asked.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence
from uuid import UUID


@dataclass(frozen=True)
class LotBalance:
    """Snapshot of an open lot as seen by the planner."""

    lot_id: UUID
    qty_remaining: int
    unit_cost_pence: int | None
    received_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class LotAllocation:
    lot_id: UUID
    qty: int
    unit_cost_pence: int | None


@dataclass(frozen=True)
class FifoPlan:
    """
    Result of planning a decrement.

    shortfall > 0 means the lots could not cover the request; callers treat
    that as insufficient stock and apply nothing.
    """

    allocations: tuple[LotAllocation, ...]
    shortfall: int

    @property
    def total_qty(self) -> int:
        return sum(a.qty for a in self.allocations)


def fifo_sort_key(lot: LotBalance) -> tuple:
    return (lot.received_at, lot.created_at, str(lot.lot_id))


def plan_fifo_allocation(lots: Sequence[LotBalance], qty: int) -> FifoPlan:
    """
    Plan which lots cover ``qty`` units, oldest first.

    Args:
        lots: Candidate lots, in any order.  Empty lots are ignored.
        qty: Units to take; must be > 0.

    Raises:
        ValueError: If qty is not positive.
    """
    if qty <= 0:
        raise ValueError(f"qty must be > 0 (got {qty})")

    remaining = qty
    allocations: list[LotAllocation] = []
    for lot in sorted(lots, key=fifo_sort_key):
        if remaining == 0:
            break
        take = min(remaining, lot.qty_remaining)
        if take <= 0:
            continue
        allocations.append(LotAllocation(lot.lot_id, take, lot.unit_cost_pence))
        remaining -= take

    return FifoPlan(allocations=tuple(allocations), shortfall=remaining)


def weighted_average_cost(allocations: Iterable[LotAllocation]) -> int:
    """
    Quantity-weighted mean unit cost in pence, rounded half-up.

    Allocations without a cost are ignored.  Returns 0 when no allocation
    carries a cost.
    """
    total_value = 0
    total_qty = 0
    for allocation in allocations:
        if allocation.unit_cost_pence is None:
            continue
        total_value += allocation.qty * allocation.unit_cost_pence
        total_qty += allocation.qty

    if total_qty == 0:
        return 0
    return (2 * total_value + total_qty) // (2 * total_qty)
