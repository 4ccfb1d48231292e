"""
StockService: receipts, adjustments and FIFO consumption.

Every test checks the balance invariant where it matters: the aggregate
on-hand equals the sum of lot remainders equals the sum of ledger deltas.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from stock_kernel.exceptions import (
    BranchAccessDeniedError,
    EntityNotFoundError,
    ImmutabilityViolationError,
    InsufficientStockError,
    InvalidQuantityError,
    LotsNotFoundError,
)
from stock_kernel.models.audit_event import AuditAction, AuditEntityType, AuditEvent
from stock_kernel.models.stock import ProductStock, StockLedgerEntry, StockLot, StockMovementKind


def _balances(session, branch_id, product_id) -> tuple[int, int, int]:
    aggregate = session.execute(
        select(ProductStock.qty_on_hand).where(
            ProductStock.branch_id == branch_id, ProductStock.product_id == product_id
        )
    ).scalar_one_or_none() or 0
    lots = session.execute(
        select(func.coalesce(func.sum(StockLot.qty_remaining), 0)).where(
            StockLot.branch_id == branch_id, StockLot.product_id == product_id
        )
    ).scalar_one()
    ledger = session.execute(
        select(func.coalesce(func.sum(StockLedgerEntry.qty_delta), 0)).where(
            StockLedgerEntry.branch_id == branch_id, StockLedgerEntry.product_id == product_id
        )
    ).scalar_one()
    return aggregate, lots, ledger


class TestReceiveStock:
    def test_receipt_creates_lot_and_ledger(self, session, north, widget, receive):
        result = receive(north, widget, 10, unit_cost_pence=120)

        assert result.kind == StockMovementKind.RECEIPT
        assert result.qty_delta == 10
        assert result.qty_on_hand == 10
        assert result.lot_id is not None
        assert len(result.ledger_ids) == 1
        assert _balances(session, north.id, widget.id) == (10, 10, 10)

    def test_receipts_accumulate(self, session, north, widget, receive):
        receive(north, widget, 4)
        result = receive(north, widget, 6)
        assert result.qty_on_hand == 10
        assert _balances(session, north.id, widget.id) == (10, 10, 10)

    @pytest.mark.parametrize("qty", [0, -1])
    def test_non_positive_qty_rejected(self, owner, north, widget, stock_service, qty):
        with pytest.raises(InvalidQuantityError):
            stock_service.receive_stock(owner, north.id, widget.id, qty)

    def test_negative_cost_rejected(self, owner, north, widget, stock_service):
        with pytest.raises(InvalidQuantityError):
            stock_service.receive_stock(owner, north.id, widget.id, 1, unit_cost_pence=-5)

    def test_requires_branch_membership(self, north, widget, make_user, stock_service):
        outsider = make_user("outsider@acme.test", "ADMIN")
        with pytest.raises(BranchAccessDeniedError):
            stock_service.receive_stock(outsider, north.id, widget.id, 1)

    def test_archived_product_not_found(self, owner, north, widget, product_service, stock_service):
        product_service.archive(owner, widget.id)
        with pytest.raises(EntityNotFoundError):
            stock_service.receive_stock(owner, north.id, widget.id, 1)

    def test_inactive_branch_not_found(self, owner, north, widget, branch_service, stock_service):
        branch_service.update(owner, north.id, is_active=False)
        with pytest.raises(EntityNotFoundError):
            stock_service.receive_stock(owner, north.id, widget.id, 1)

    def test_audit_trail(self, session, north, widget, receive):
        result = receive(north, widget, 3)

        actions = set(
            session.execute(select(AuditEvent.action).where(AuditEvent.entity_id == result.lot_id)).scalars()
        )
        assert actions == {AuditAction.CREATE}
        ledger_actions = list(
            session.execute(
                select(AuditEvent.action).where(AuditEvent.entity_type == AuditEntityType.STOCK_LEDGER)
            ).scalars()
        )
        assert ledger_actions == [AuditAction.STOCK_RECEIVE]

    def test_logs_receipt(self, north, widget, receive, captured_logs):
        receive(north, widget, 2)
        assert any(r["message"] == "stock_received" and r["qty"] == 2 for r in captured_logs())


class TestConsumeStock:
    def test_fifo_across_lots(self, session, owner, north, widget, receive, stock_service):
        first = receive(north, widget, 5, unit_cost_pence=100)
        second = receive(north, widget, 5, unit_cost_pence=200)

        result = stock_service.consume_stock(owner, north.id, widget.id, 7)

        assert result.qty_delta == -7
        assert result.qty_on_hand == 3
        assert [(a.lot_id, a.qty) for a in result.allocations] == [
            (first.lot_id, 5),
            (second.lot_id, 2),
        ]
        assert session.get(StockLot, first.lot_id).qty_remaining == 0
        assert session.get(StockLot, second.lot_id).qty_remaining == 3
        assert _balances(session, north.id, widget.id) == (3, 3, 3)

    def test_insufficient_stock_applies_nothing(self, session, owner, north, widget, receive, stock_service):
        receive(north, widget, 4)

        with pytest.raises(InsufficientStockError) as exc_info:
            stock_service.consume_stock(owner, north.id, widget.id, 5)

        assert exc_info.value.requested == 5
        assert exc_info.value.available == 4
        assert _balances(session, north.id, widget.id) == (4, 4, 4)

    def test_consume_with_no_stock(self, owner, north, widget, stock_service):
        with pytest.raises(InsufficientStockError):
            stock_service.consume_stock(owner, north.id, widget.id, 1)


class TestAdjustStock:
    def test_adjust_up_creates_lot(self, session, owner, north, widget, stock_service):
        result = stock_service.adjust_stock(owner, north.id, widget.id, 3, unit_cost_pence=50)

        assert result.kind == StockMovementKind.ADJUSTMENT
        assert result.lot_id is not None
        entry = session.get(StockLedgerEntry, result.ledger_ids[0])
        assert entry.reason == "adjust-up"

    def test_adjust_down_is_fifo(self, session, owner, north, widget, receive, stock_service):
        receive(north, widget, 2)
        receive(north, widget, 5)

        result = stock_service.adjust_stock(owner, north.id, widget.id, -4, reason="damaged")

        assert result.qty_on_hand == 3
        assert [a.qty for a in result.allocations] == [2, 2]
        reasons = {session.get(StockLedgerEntry, i).reason for i in result.ledger_ids}
        assert reasons == {"damaged"}

    def test_adjust_down_default_reason(self, session, owner, north, widget, receive, stock_service):
        receive(north, widget, 2)
        result = stock_service.adjust_stock(owner, north.id, widget.id, -1)
        assert session.get(StockLedgerEntry, result.ledger_ids[0]).reason == "adjust-down"

    def test_zero_adjustment_rejected(self, owner, north, widget, stock_service):
        with pytest.raises(InvalidQuantityError):
            stock_service.adjust_stock(owner, north.id, widget.id, 0)

    def test_adjust_below_zero_rejected(self, owner, north, widget, receive, stock_service):
        receive(north, widget, 1)
        with pytest.raises(InsufficientStockError):
            stock_service.adjust_stock(owner, north.id, widget.id, -2)


class TestRestoreLotQuantities:
    def test_restore_keeps_lot_age(self, session, owner, north, widget, receive, stock_service):
        old = receive(north, widget, 5, unit_cost_pence=100)
        receive(north, widget, 5, unit_cost_pence=200)
        stock_service.consume_stock(owner, north.id, widget.id, 5)

        results = stock_service.restore_lot_quantities(owner, north.id, [(old.lot_id, 2)], reason="undo")

        assert results[0].kind == StockMovementKind.REVERSAL
        assert results[0].qty_on_hand == 7
        # the restored units are the oldest again
        consumed = stock_service.consume_stock(owner, north.id, widget.id, 1)
        assert consumed.allocations[0].lot_id == old.lot_id
        assert _balances(session, north.id, widget.id) == (6, 6, 6)

    def test_unknown_lot_rejected(self, owner, north, widget, receive, stock_service):
        receive(north, widget, 1)
        with pytest.raises(LotsNotFoundError):
            stock_service.restore_lot_quantities(owner, north.id, [(uuid4(), 1)])


class TestImmutability:
    """Receipt facts and ledger rows cannot be changed through the ORM."""

    def test_lot_receipt_facts_frozen(self, session, north, widget, receive):
        result = receive(north, widget, 5, unit_cost_pence=100)
        lot = session.get(StockLot, result.lot_id)
        lot.unit_cost_pence = 1

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_ledger_rows_frozen(self, session, north, widget, receive):
        result = receive(north, widget, 5)
        entry = session.get(StockLedgerEntry, result.ledger_ids[0])
        entry.qty_delta = 50

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_ledger_rows_cannot_be_deleted(self, session, north, widget, receive):
        result = receive(north, widget, 5)
        session.delete(session.get(StockLedgerEntry, result.ledger_ids[0]))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
