"""StockSelector: levels, lots and the movement ledger."""

import pytest

from stock_kernel.domain.pagination import SortDirection
from stock_kernel.exceptions import BranchAccessDeniedError, ValidationError
from stock_kernel.models.stock import StockMovementKind


class TestStockLevels:
    def test_levels_list_open_lots_oldest_first(self, owner, north, widget, receive, stock_service,
                                                stock_selector):
        first = receive(north, widget, 2, unit_cost_pence=100)
        second = receive(north, widget, 3, unit_cost_pence=150)
        third = receive(north, widget, 4)
        stock_service.consume_stock(owner, north.id, widget.id, 2)

        levels = stock_selector.get_stock_levels(owner, north.id, widget.id)

        assert levels.qty_on_hand == 7
        assert levels.qty_allocated == 0
        # the emptied first lot is no longer listed
        assert [lot.lot_id for lot in levels.lots] == [second.lot_id, third.lot_id]
        assert first.lot_id not in {lot.lot_id for lot in levels.lots}
        assert [lot.unit_cost_pence for lot in levels.lots] == [150, None]

    def test_no_stock_is_zero(self, owner, south, widget, stock_selector):
        levels = stock_selector.get_stock_levels(owner, south.id, widget.id)
        assert levels.qty_on_hand == 0
        assert levels.lots == ()

    def test_requires_membership(self, north, widget, make_user, stock_selector):
        outsider = make_user("outsider@acme.test", "VIEWER")
        with pytest.raises(BranchAccessDeniedError):
            stock_selector.get_stock_levels(outsider, north.id, widget.id)

    def test_bulk_levels_cover_every_branch(self, owner, north, south, widget, receive, stock_selector):
        receive(north, widget, 6)

        rows = stock_selector.get_stock_levels_bulk(owner, widget.id)

        assert [(r.branch_name, r.qty_on_hand) for r in rows] == [
            ("North Store", 6),
            ("South Store", 0),
        ]


class TestLedger:
    @pytest.fixture
    def movements(self, owner, north, widget, receive, stock_service, deterministic_clock):
        receive(north, widget, 5)
        receive(north, widget, 5)
        deterministic_clock.advance(60)
        stock_service.consume_stock(owner, north.id, widget.id, 3)
        deterministic_clock.advance(60)
        stock_service.adjust_stock(owner, north.id, widget.id, -1, reason="broken")

    def test_newest_first_by_default(self, owner, north, widget, movements, stock_selector):
        page = stock_selector.list_ledger(owner, widget.id, branch_id=north.id)
        assert [e.qty_delta for e in page.items] == [-1, -3, 5, 5]

    def test_kind_filter(self, owner, widget, movements, stock_selector):
        page = stock_selector.list_ledger(owner, widget.id, kinds=[StockMovementKind.RECEIPT])
        assert {e.kind for e in page.items} == {StockMovementKind.RECEIPT}
        assert page.applied["kinds"] == ["RECEIPT"]

    def test_qty_range(self, owner, widget, movements, stock_selector):
        page = stock_selector.list_ledger(owner, widget.id, max_qty=-1)
        assert [e.qty_delta for e in page.items] == [-1, -3]

        with pytest.raises(ValidationError):
            stock_selector.list_ledger(owner, widget.id, min_qty=5, max_qty=1)

    def test_cursor_pages(self, owner, widget, movements, stock_selector):
        first = stock_selector.list_ledger(owner, widget.id, sort_dir=SortDirection.ASC, limit=3)
        assert first.has_next_page is True
        assert [e.qty_delta for e in first.items] == [5, 5, -3]

        second = stock_selector.list_ledger(
            owner, widget.id, sort_dir=SortDirection.ASC, limit=3, cursor=first.next_cursor
        )
        assert [e.qty_delta for e in second.items] == [-1]
        assert second.has_next_page is False

    def test_branch_filter_checks_membership(self, north, widget, make_user, stock_selector):
        outsider = make_user("outsider@acme.test", "VIEWER")
        with pytest.raises(BranchAccessDeniedError):
            stock_selector.list_ledger(outsider, widget.id, branch_id=north.id)
