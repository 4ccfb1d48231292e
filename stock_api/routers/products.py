"""
Product catalog routes: cursor-paged listing with price filters, CRUD with
archive/restore, and the per-product audit activity feed.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Request

from stock_api.deps import Kernel, get_kernel, page_limit, require_permission
from stock_api.responses import dump, ok, page_payload, write
from stock_api.schemas import ProductCreate, ProductOut, ProductUpdate
from stock_kernel.domain.pagination import ArchiveFilter, SortDirection
from stock_kernel.domain.principal import Principal

router = APIRouter(prefix="/api/products", tags=["products"])

_read = require_permission("products:read")
_write = require_permission("products:write")


@router.get("")
def list_products(
    archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
    q: str | None = None,
    min_price_pence: int | None = None,
    max_price_pence: int | None = None,
    sort_by: str = "created_at",
    sort_dir: SortDirection = SortDirection.DESC,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.products.list(
        principal,
        archived=archived,
        q=q,
        min_price_pence=min_price_pence,
        max_price_pence=max_price_pence,
        sort_by=sort_by,
        sort_dir=sort_dir,
        limit=limit,
        cursor=cursor,
    )
    return ok(page_payload(page, ProductOut))


@router.post("")
def create_product(
    body: ProductCreate,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        product = kernel.products.create(
            principal,
            sku=body.sku,
            name=body.name,
            price_pence=body.price_pence,
            barcode=body.barcode,
        )
        return dump(ProductOut, product)

    return write(kernel, principal, request, action, body, status_code=201)


@router.get("/{product_id}")
def get_product(product_id: UUID, principal: Principal = Depends(_read), kernel: Kernel = Depends(get_kernel)):
    return ok(dump(ProductOut, kernel.products.get(principal, product_id)))


@router.put("/{product_id}")
def update_product(
    product_id: UUID,
    body: ProductUpdate,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        product = kernel.products.update(
            principal,
            product_id,
            sku=body.sku,
            name=body.name,
            price_pence=body.price_pence,
            barcode=body.barcode,
        )
        return dump(ProductOut, product)

    return write(kernel, principal, request, action, body)


@router.delete("/{product_id}")
def archive_product(
    product_id: UUID,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(ProductOut, kernel.products.archive(principal, product_id)),
    )


@router.post("/{product_id}/restore")
def restore_product(
    product_id: UUID,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(ProductOut, kernel.products.restore(principal, product_id)),
    )


@router.get("/{product_id}/activity")
def product_activity(
    product_id: UUID,
    actor_id: UUID | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    include_total: bool = False,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.audit.product_activity(
        principal,
        product_id,
        actor_id=actor_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        limit=limit,
        cursor=cursor,
        include_total=include_total,
    )
    return ok(page_payload(page))
