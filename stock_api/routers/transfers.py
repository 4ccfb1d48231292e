"""
Stock transfer routes.

Mutations return the full transfer view, read back through the selector
after the service has flushed, so every response carries items, batches and
approval records in one shape.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from stock_api.deps import Kernel, get_kernel, page_limit, require_permission
from stock_api.responses import dump, ok, page_payload, write
from stock_api.schemas import (
    ApprovalDecision,
    ApprovalProgressOut,
    TransferCreate,
    TransferFromTemplate,
    TransferMovement,
    TransferPriorityUpdate,
    TransferReverse,
    TransferReview,
)
from stock_kernel.domain.pagination import SortDirection
from stock_kernel.domain.principal import Principal
from stock_kernel.models.transfer import (
    TransferInitiationType,
    TransferPriority,
    TransferStatus,
)
from stock_kernel.services.transfer_service import ItemQty, TransferItemInput

router = APIRouter(prefix="/api/stock-transfers", tags=["stock-transfers"])

_read = require_permission("stock:read")
_write = require_permission("stock:write")


def _items(lines) -> list[TransferItemInput] | None:
    if lines is None:
        return None
    return [TransferItemInput(line.product_id, line.qty_requested) for line in lines]


def _quantities(body: TransferMovement | None) -> list[ItemQty] | None:
    if body is None or body.items is None:
        return None
    return [ItemQty(line.item_id, line.qty) for line in body.items]


@router.post("")
def create_transfer(
    body: TransferCreate,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        transfer = kernel.transfers.create_transfer(
            principal,
            body.source_branch_id,
            body.destination_branch_id,
            _items(body.items),
            priority=body.priority,
            initiation_type=body.initiation_type,
            request_notes=body.request_notes,
            order_notes=body.order_notes,
            expected_delivery_date=body.expected_delivery_date,
            submit=body.submit,
        )
        return kernel.transfer_selector.describe(transfer)

    return write(kernel, principal, request, action, body, status_code=201)


@router.post("/from-template/{template_id}")
def create_transfer_from_template(
    template_id: UUID,
    body: TransferFromTemplate,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        transfer = kernel.transfers.create_from_template(
            principal,
            template_id,
            items=_items(body.items),
            priority=body.priority,
            initiation_type=body.initiation_type,
            request_notes=body.request_notes,
            order_notes=body.order_notes,
            expected_delivery_date=body.expected_delivery_date,
            submit=body.submit,
        )
        return kernel.transfer_selector.describe(transfer)

    return write(kernel, principal, request, action, body, status_code=201)


@router.get("")
def list_transfers(
    branch_id: UUID | None = None,
    direction: str | None = None,
    status: list[TransferStatus] | None = Query(None),
    initiation_type: TransferInitiationType | None = None,
    priority: TransferPriority | None = None,
    q: str | None = None,
    requested_from: date | None = None,
    requested_to: date | None = None,
    shipped_from: date | None = None,
    shipped_to: date | None = None,
    expected_delivery_from: date | None = None,
    expected_delivery_to: date | None = None,
    sort_by: str = "requested_at",
    sort_dir: SortDirection = SortDirection.DESC,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    include_total: bool = False,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.transfer_selector.list(
        principal,
        branch_id=branch_id,
        direction=direction,
        statuses=status,
        initiation_type=initiation_type,
        priority=priority,
        q=q,
        requested_from=requested_from,
        requested_to=requested_to,
        shipped_from=shipped_from,
        shipped_to=shipped_to,
        expected_delivery_from=expected_delivery_from,
        expected_delivery_to=expected_delivery_to,
        sort_by=sort_by,
        sort_dir=sort_dir,
        limit=limit,
        cursor=cursor,
        include_total=include_total,
    )
    return ok(page_payload(page))


@router.get("/{transfer_id}")
def get_transfer(transfer_id: UUID, principal: Principal = Depends(_read), kernel: Kernel = Depends(get_kernel)):
    return ok(kernel.transfer_selector.get(principal, transfer_id))


@router.post("/{transfer_id}/submit")
def submit_transfer(
    transfer_id: UUID,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: kernel.transfer_selector.describe(
            kernel.transfers.submit_transfer(principal, transfer_id)
        ),
    )


@router.patch("/{transfer_id}/review")
def review_transfer(
    transfer_id: UUID,
    body: TransferReview,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    approved = None
    if body.items is not None:
        approved = {line.item_id: line.qty_approved for line in body.items}

    def action():
        transfer = kernel.transfers.review_transfer(
            principal,
            transfer_id,
            body.action,
            review_notes=body.review_notes,
            approved_items=approved,
        )
        return kernel.transfer_selector.describe(transfer)

    return write(kernel, principal, request, action, body)


@router.post("/{transfer_id}/ship")
def ship_transfer(
    transfer_id: UUID,
    request: Request,
    body: TransferMovement | None = None,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: kernel.transfer_selector.describe(
            kernel.transfers.ship_transfer(principal, transfer_id, _quantities(body))
        ),
        body,
    )


@router.post("/{transfer_id}/receive")
def receive_transfer(
    transfer_id: UUID,
    request: Request,
    body: TransferMovement | None = None,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: kernel.transfer_selector.describe(
            kernel.transfers.receive_transfer(principal, transfer_id, _quantities(body))
        ),
        body,
    )


@router.patch("/{transfer_id}/priority")
def update_transfer_priority(
    transfer_id: UUID,
    body: TransferPriorityUpdate,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: kernel.transfer_selector.describe(
            kernel.transfers.update_priority(principal, transfer_id, body.priority)
        ),
        body,
    )


@router.delete("/{transfer_id}")
def cancel_transfer(
    transfer_id: UUID,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: kernel.transfer_selector.describe(
            kernel.transfers.cancel_transfer(principal, transfer_id)
        ),
    )


@router.post("/{transfer_id}/reverse")
def reverse_transfer(
    transfer_id: UUID,
    request: Request,
    body: TransferReverse | None = None,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    reason = body.reversal_reason if body is not None else None
    return write(
        kernel, principal, request,
        lambda: kernel.transfer_selector.describe(
            kernel.transfers.reverse_transfer(principal, transfer_id, reversal_reason=reason)
        ),
        body,
        status_code=201,
    )


@router.post("/{transfer_id}/approve/{level}")
def approve_level(
    transfer_id: UUID,
    level: int,
    request: Request,
    body: ApprovalDecision | None = None,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    notes = body.notes if body is not None else None
    return write(
        kernel, principal, request,
        lambda: kernel.transfer_selector.describe(
            kernel.approvals.submit_approval(principal, transfer_id, level, notes=notes)
        ),
        body,
    )


@router.post("/{transfer_id}/reject/{level}")
def reject_level(
    transfer_id: UUID,
    level: int,
    request: Request,
    body: ApprovalDecision | None = None,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    notes = body.notes if body is not None else None
    return write(
        kernel, principal, request,
        lambda: kernel.transfer_selector.describe(
            kernel.approvals.reject_approval(principal, transfer_id, level, notes=notes)
        ),
        body,
    )


@router.get("/{transfer_id}/approval-progress")
def approval_progress(
    transfer_id: UUID,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    progress = kernel.approvals.get_approval_progress(principal, transfer_id)
    return ok(dump(ApprovalProgressOut, progress))
