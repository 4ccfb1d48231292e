"""
AnalyticsSelector over a fixed scenario on 10 March 2025:

    A  North -> South, 4 widgets: requested 10:00, approved 10:10,
       shipped 10:30, received 11:00 (COMPLETED)
    B  North -> South, 1 widget: requested 11:00, rejected 11:05
    C  South -> North, 2 widgets: requested 11:05, still REQUESTED
"""

from datetime import date, datetime, timezone

import pytest

from stock_kernel.exceptions import PermissionDeniedError, ValidationError
from stock_kernel.services.transfer_service import TransferItemInput

DAY = date(2025, 3, 10)


@pytest.fixture
def scenario(owner, north, south, widget, receive, transfer_service, deterministic_clock):
    receive(north, widget, 10, unit_cost_pence=100)
    clock = deterministic_clock
    clock.set_time(datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc))

    a = transfer_service.create_transfer(owner, north.id, south.id, [TransferItemInput(widget.id, 4)])
    clock.advance(600)
    transfer_service.review_transfer(owner, a.id, "approve")
    clock.advance(1200)
    transfer_service.ship_transfer(owner, a.id)
    clock.advance(1800)
    transfer_service.receive_transfer(owner, a.id)

    b = transfer_service.create_transfer(owner, north.id, south.id, [TransferItemInput(widget.id, 1)])
    clock.advance(300)
    transfer_service.review_transfer(owner, b.id, "reject")

    c = transfer_service.create_transfer(owner, south.id, north.id, [TransferItemInput(widget.id, 2)])
    return a, b, c


class TestAccess:
    def test_requires_reports_permission(self, make_user, analytics_selector):
        viewer = make_user("viewer@acme.test", "VIEWER")
        with pytest.raises(PermissionDeniedError):
            analytics_selector.overview(viewer, DAY, DAY)

    def test_end_before_start(self, owner, analytics_selector):
        with pytest.raises(ValidationError):
            analytics_selector.status_distribution(owner, DAY, date(2025, 3, 9))


class TestAnalytics:
    def test_overview(self, owner, scenario, analytics_selector):
        overview = analytics_selector.overview(owner, DAY, DAY)

        assert overview.total_transfers == 3
        assert overview.active_transfers == 1
        assert overview.avg_approval_seconds == 600
        assert overview.avg_ship_seconds == 1200
        assert overview.avg_receive_seconds == 1800

    def test_overview_for_branch(self, owner, north, scenario, analytics_selector, branch_service):
        east = branch_service.create(owner, slug="east", name="East")
        assert analytics_selector.overview(owner, DAY, DAY, branch_id=east.id).total_transfers == 0
        assert analytics_selector.overview(owner, DAY, DAY, branch_id=north.id).total_transfers == 3

    def test_empty_range(self, owner, scenario, analytics_selector):
        overview = analytics_selector.overview(owner, date(2025, 3, 11), date(2025, 3, 11))
        assert overview.total_transfers == 0
        assert overview.avg_approval_seconds is None

    def test_volume_chart_buckets_every_day(self, owner, scenario, analytics_selector):
        chart = analytics_selector.volume_chart(owner, date(2025, 3, 9), DAY)

        assert [bucket["date"] for bucket in chart] == [date(2025, 3, 9), DAY]
        assert chart[0] == {"date": date(2025, 3, 9), "created": 0, "approved": 0, "shipped": 0, "completed": 0}
        # the rejected review does not count as an approval
        assert chart[1] == {"date": DAY, "created": 3, "approved": 1, "shipped": 1, "completed": 1}

    def test_status_distribution_lists_every_status(self, owner, scenario, analytics_selector):
        distribution = analytics_selector.status_distribution(owner, DAY, DAY)

        assert distribution["COMPLETED"] == 1
        assert distribution["REJECTED"] == 1
        assert distribution["REQUESTED"] == 1
        assert distribution["CANCELLED"] == 0
        assert sum(distribution.values()) == 3

    def test_bottlenecks(self, owner, scenario, analytics_selector):
        assert analytics_selector.bottlenecks(owner, DAY, DAY) == {
            "approval_stage_seconds": 600,
            "shipping_stage_seconds": 1200,
            "receipt_stage_seconds": 1800,
        }

    def test_top_routes(self, owner, scenario, analytics_selector):
        routes = analytics_selector.top_routes(owner, DAY, DAY)

        assert [(r["source_branch"], r["destination_branch"], r["transfer_count"]) for r in routes] == [
            ("North Store", "South Store", 2),
            ("South Store", "North Store", 1),
        ]
        assert routes[0]["total_units"] == 4
        assert routes[0]["avg_completion_seconds"] == 3600
        assert len(analytics_selector.top_routes(owner, DAY, DAY, limit=1)) == 1

    def test_branch_dependencies_omit_timing(self, owner, scenario, analytics_selector):
        deps = analytics_selector.branch_dependencies(owner, DAY, DAY)
        assert all("avg_completion_seconds" not in d for d in deps)
        assert deps[0]["transfer_count"] == 2

    def test_product_frequency(self, owner, widget, scenario, analytics_selector):
        rows = analytics_selector.product_frequency(owner, DAY, DAY)

        assert len(rows) == 1
        assert rows[0]["product_id"] == widget.id
        assert rows[0]["product_name"] == "Widget"
        assert rows[0]["transfer_count"] == 3
        assert rows[0]["total_qty"] == 7
        assert rows[0]["top_routes"][0] == {
            "source_branch": "North Store",
            "destination_branch": "South Store",
            "count": 2,
        }
