"""
Module: stock_kernel.selectors.analytics_selector
Responsibility: Transfer analytics for a date range: overview counters,
    daily volume, branch dependencies, top routes, status distribution,
    stage bottlenecks and product frequency.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - The range is inclusive on both days and matched on requested_at.
    - Every figure is computed from the tenant's own transfers only.
    - Durations are whole seconds, floored; None when nothing qualifies.

Note:
    Aggregation runs in Python over the transfers of the range, so the same
    code serves SQLite and PostgreSQL.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import or_, select

from stock_kernel.domain.principal import Principal
from stock_kernel.domain.transfer import ACTIVE_STATUSES
from stock_kernel.exceptions import PermissionDeniedError, ValidationError
from stock_kernel.models.branch import Branch
from stock_kernel.models.product import Product
from stock_kernel.models.transfer import StockTransfer, TransferStatus
from stock_kernel.selectors.base import BaseSelector

REPORTS_VIEW = "reports:view"


@dataclass(frozen=True)
class TransferOverview:
    total_transfers: int
    active_transfers: int
    avg_approval_seconds: int | None
    avg_ship_seconds: int | None
    avg_receive_seconds: int | None


def _seconds(start: datetime | None, end: datetime | None) -> float | None:
    if start is None or end is None:
        return None
    return (end - start).total_seconds()


def _floored_mean(values) -> int | None:
    values = [v for v in values if v is not None]
    if not values:
        return None
    return int(sum(values) // len(values))


class AnalyticsSelector(BaseSelector):
    def _transfers(
        self, principal: Principal, start: date, end: date, branch_id: UUID | None = None
    ) -> list[StockTransfer]:
        if not principal.has(REPORTS_VIEW):
            raise PermissionDeniedError(permission=REPORTS_VIEW)
        if end < start:
            raise ValidationError("end must not be before start")

        stmt = select(StockTransfer).where(
            StockTransfer.tenant_id == principal.tenant_id,
            StockTransfer.requested_at >= datetime.combine(start, time.min, tzinfo=timezone.utc),
            StockTransfer.requested_at
            < datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc),
        )
        if branch_id is not None:
            stmt = stmt.where(
                or_(
                    StockTransfer.source_branch_id == branch_id,
                    StockTransfer.destination_branch_id == branch_id,
                )
            )
        return list(self.session.execute(stmt.order_by(StockTransfer.requested_at)).scalars())

    def _branch_names(self, tenant_id: UUID) -> dict[UUID, str]:
        return dict(
            self.session.execute(
                select(Branch.id, Branch.name).where(Branch.tenant_id == tenant_id)
            ).all()
        )

    def overview(
        self, principal: Principal, start: date, end: date, branch_id: UUID | None = None
    ) -> TransferOverview:
        transfers = self._transfers(principal, start, end, branch_id)
        completed = [t for t in transfers if t.status == TransferStatus.COMPLETED]
        return TransferOverview(
            total_transfers=len(transfers),
            active_transfers=sum(1 for t in transfers if t.status in ACTIVE_STATUSES),
            avg_approval_seconds=_floored_mean(_seconds(t.requested_at, t.reviewed_at) for t in completed),
            avg_ship_seconds=_floored_mean(_seconds(t.reviewed_at, t.shipped_at) for t in completed),
            avg_receive_seconds=_floored_mean(_seconds(t.shipped_at, t.completed_at) for t in completed),
        )

    def volume_chart(self, principal: Principal, start: date, end: date) -> list[dict]:
        """One bucket per day of the range, counting events on that day."""
        transfers = self._transfers(principal, start, end)
        buckets = {}
        day = start
        while day <= end:
            buckets[day] = {"date": day, "created": 0, "approved": 0, "shipped": 0, "completed": 0}
            day += timedelta(days=1)

        def bump(moment: datetime | None, field: str) -> None:
            if moment is not None and moment.date() in buckets:
                buckets[moment.date()][field] += 1

        for t in transfers:
            bump(t.requested_at, "created")
            if t.status != TransferStatus.REJECTED:
                bump(t.reviewed_at, "approved")
            bump(t.shipped_at, "shipped")
            bump(t.completed_at, "completed")
        return list(buckets.values())

    def _routes(self, principal: Principal, start: date, end: date) -> list[dict]:
        transfers = self._transfers(principal, start, end)
        names = self._branch_names(principal.tenant_id)
        grouped: dict[tuple[UUID, UUID], list[StockTransfer]] = defaultdict(list)
        for t in transfers:
            grouped[(t.source_branch_id, t.destination_branch_id)].append(t)

        routes = []
        for (source, destination), members in grouped.items():
            routes.append(
                {
                    "source_branch_id": source,
                    "source_branch": names.get(source),
                    "destination_branch_id": destination,
                    "destination_branch": names.get(destination),
                    "transfer_count": len(members),
                    "total_units": sum(i.qty_shipped for t in members for i in t.items),
                    "avg_completion_seconds": _floored_mean(
                        _seconds(t.requested_at, t.completed_at)
                        for t in members
                        if t.status == TransferStatus.COMPLETED
                    ),
                }
            )
        routes.sort(key=lambda r: (-r["transfer_count"], -r["total_units"], r["source_branch"] or ""))
        return routes

    def branch_dependencies(self, principal: Principal, start: date, end: date) -> list[dict]:
        return [
            {k: v for k, v in route.items() if k != "avg_completion_seconds"}
            for route in self._routes(principal, start, end)
        ]

    def top_routes(self, principal: Principal, start: date, end: date, limit: int = 10) -> list[dict]:
        return self._routes(principal, start, end)[: max(limit, 0)]

    def status_distribution(self, principal: Principal, start: date, end: date) -> dict[str, int]:
        transfers = self._transfers(principal, start, end)
        counts = Counter(t.status for t in transfers)
        return {status.value: counts.get(status, 0) for status in TransferStatus}

    def bottlenecks(self, principal: Principal, start: date, end: date) -> dict[str, int | None]:
        """Average seconds spent in each stage, over transfers that finished it."""
        transfers = self._transfers(principal, start, end)
        return {
            "approval_stage_seconds": _floored_mean(
                _seconds(t.requested_at, t.reviewed_at)
                for t in transfers
                if t.status != TransferStatus.REJECTED
            ),
            "shipping_stage_seconds": _floored_mean(_seconds(t.reviewed_at, t.shipped_at) for t in transfers),
            "receipt_stage_seconds": _floored_mean(_seconds(t.shipped_at, t.completed_at) for t in transfers),
        }

    def product_frequency(self, principal: Principal, start: date, end: date, limit: int = 10) -> list[dict]:
        transfers = self._transfers(principal, start, end)
        names = self._branch_names(principal.tenant_id)

        stats: dict[UUID, dict] = {}
        for t in transfers:
            for item in t.items:
                entry = stats.setdefault(
                    item.product_id,
                    {"transfers": set(), "total_qty": 0, "routes": Counter()},
                )
                entry["transfers"].add(t.id)
                entry["total_qty"] += item.qty_requested
                entry["routes"][(t.source_branch_id, t.destination_branch_id)] += 1

        product_names = dict(
            self.session.execute(
                select(Product.id, Product.name).where(Product.id.in_(stats.keys()))
            ).all()
        ) if stats else {}

        rows = [
            {
                "product_id": product_id,
                "product_name": product_names.get(product_id),
                "transfer_count": len(entry["transfers"]),
                "total_qty": entry["total_qty"],
                "top_routes": [
                    {
                        "source_branch": names.get(source),
                        "destination_branch": names.get(destination),
                        "count": count,
                    }
                    for (source, destination), count in entry["routes"].most_common(3)
                ],
            }
            for product_id, entry in stats.items()
        ]
        rows.sort(key=lambda r: (-r["transfer_count"], -r["total_qty"], r["product_name"] or ""))
        return rows[: max(limit, 0)]
