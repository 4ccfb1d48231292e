"""
Transfer analytics routes.

``start`` and ``end`` are inclusive calendar dates (UTC); when omitted the
window is the 30 days ending today.
"""

from datetime import date, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from stock_api.deps import Kernel, get_clock, get_kernel, require_permission
from stock_api.responses import ok
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.principal import Principal

router = APIRouter(prefix="/api/transfer-analytics", tags=["transfer-analytics"])

_reports = require_permission("reports:view")

DEFAULT_WINDOW_DAYS = 30


class DateWindow:
    def __init__(
        self,
        start: date | None = None,
        end: date | None = None,
        clock: Clock = Depends(get_clock),
    ):
        self.end = end or clock.now().date()
        self.start = start or self.end - timedelta(days=DEFAULT_WINDOW_DAYS - 1)


@router.get("/overview")
def overview(
    branch_id: UUID | None = None,
    window: DateWindow = Depends(),
    principal: Principal = Depends(_reports),
    kernel: Kernel = Depends(get_kernel),
):
    return ok(kernel.analytics.overview(principal, window.start, window.end, branch_id=branch_id))


@router.get("/volume-chart")
def volume_chart(
    window: DateWindow = Depends(),
    principal: Principal = Depends(_reports),
    kernel: Kernel = Depends(get_kernel),
):
    return ok(kernel.analytics.volume_chart(principal, window.start, window.end))


@router.get("/branch-dependencies")
def branch_dependencies(
    window: DateWindow = Depends(),
    principal: Principal = Depends(_reports),
    kernel: Kernel = Depends(get_kernel),
):
    return ok(kernel.analytics.branch_dependencies(principal, window.start, window.end))


@router.get("/top-routes")
def top_routes(
    limit: int = Query(10, ge=1, le=100),
    window: DateWindow = Depends(),
    principal: Principal = Depends(_reports),
    kernel: Kernel = Depends(get_kernel),
):
    return ok(kernel.analytics.top_routes(principal, window.start, window.end, limit=limit))


@router.get("/status-distribution")
def status_distribution(
    window: DateWindow = Depends(),
    principal: Principal = Depends(_reports),
    kernel: Kernel = Depends(get_kernel),
):
    return ok(kernel.analytics.status_distribution(principal, window.start, window.end))


@router.get("/bottlenecks")
def bottlenecks(
    window: DateWindow = Depends(),
    principal: Principal = Depends(_reports),
    kernel: Kernel = Depends(get_kernel),
):
    return ok(kernel.analytics.bottlenecks(principal, window.start, window.end))


@router.get("/product-frequency")
def product_frequency(
    limit: int = Query(10, ge=1, le=100),
    window: DateWindow = Depends(),
    principal: Principal = Depends(_reports),
    kernel: Kernel = Depends(get_kernel),
):
    return ok(kernel.analytics.product_frequency(principal, window.start, window.end, limit=limit))
