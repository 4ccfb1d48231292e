from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from stock_api.deps import Kernel, get_kernel, page_limit, require_permission
from stock_api.responses import ok, page_payload, write
from stock_api.schemas import StockAdjust, StockConsume, StockReceive
from stock_kernel.domain.pagination import SortDirection
from stock_kernel.domain.principal import Principal
from stock_kernel.models.stock import StockMovementKind

router = APIRouter(prefix="/api/stock", tags=["stock"])

_read = require_permission("stock:read")
_write = require_permission("stock:write")
_allocate = require_permission("stock:allocate")


@router.post("/receive")
def receive_stock(
    body: StockReceive,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel,
        principal,
        request,
        lambda: kernel.stock.receive_stock(
            principal,
            body.branch_id,
            body.product_id,
            body.qty,
            unit_cost_pence=body.unit_cost_pence,
            source_ref=body.source_ref,
            reason=body.reason,
            occurred_at=body.occurred_at,
        ),
        body,
        status_code=201,
    )


@router.post("/adjust")
def adjust_stock(
    body: StockAdjust,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel,
        principal,
        request,
        lambda: kernel.stock.adjust_stock(
            principal,
            body.branch_id,
            body.product_id,
            body.qty_delta,
            unit_cost_pence=body.unit_cost_pence,
            reason=body.reason,
        ),
        body,
    )


@router.post("/consume")
def consume_stock(
    body: StockConsume,
    request: Request,
    principal: Principal = Depends(_allocate),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel,
        principal,
        request,
        lambda: kernel.stock.consume_stock(
            principal, body.branch_id, body.product_id, body.qty, reason=body.reason
        ),
        body,
    )


@router.get("/levels")
def stock_levels(
    branch_id: UUID,
    product_id: UUID,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    return ok(kernel.stock_selector.get_stock_levels(principal, branch_id, product_id))


@router.get("/levels/bulk")
def stock_levels_bulk(
    product_id: UUID,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    return ok(kernel.stock_selector.get_stock_levels_bulk(principal, product_id))


@router.get("/ledger")
def stock_ledger(
    product_id: UUID,
    branch_id: UUID | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    kinds: list[StockMovementKind] | None = Query(None),
    min_qty: int | None = None,
    max_qty: int | None = None,
    sort_dir: SortDirection = SortDirection.DESC,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.stock_selector.list_ledger(
        principal,
        product_id,
        branch_id=branch_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        kinds=kinds,
        min_qty=min_qty,
        max_qty=max_qty,
        limit=limit,
        sort_dir=sort_dir,
        cursor=cursor,
    )
    return ok(page_payload(page))
