from uuid import UUID

from fastapi import APIRouter, Depends, Request

from stock_api.deps import Kernel, get_kernel, page_limit, require_permission
from stock_api.responses import dump, ok, page_payload, write
from stock_api.schemas import TemplateCreate, TemplateOut, TemplateUpdate
from stock_kernel.domain.pagination import ArchiveFilter
from stock_kernel.domain.principal import Principal
from stock_kernel.services.template_service import TemplateItemInput

router = APIRouter(prefix="/api/stock-transfer-templates", tags=["transfer-templates"])

_read = require_permission("stock:read")
_write = require_permission("stock:write")


def _items(lines):
    if lines is None:
        return None
    return [TemplateItemInput(line.product_id, line.default_qty) for line in lines]


@router.get("")
def list_templates(
    archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
    q: str | None = None,
    source_branch_id: UUID | None = None,
    destination_branch_id: UUID | None = None,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.templates.list(
        principal,
        archived=archived,
        q=q,
        source_branch_id=source_branch_id,
        destination_branch_id=destination_branch_id,
        limit=limit,
        cursor=cursor,
    )
    return ok(page_payload(page, TemplateOut))


@router.post("")
def create_template(
    body: TemplateCreate,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        template = kernel.templates.create(
            principal,
            name=body.name,
            source_branch_id=body.source_branch_id,
            destination_branch_id=body.destination_branch_id,
            items=_items(body.items),
            description=body.description,
        )
        return dump(TemplateOut, template)

    return write(kernel, principal, request, action, body, status_code=201)


@router.get("/{template_id}")
def get_template(template_id: UUID, principal: Principal = Depends(_read), kernel: Kernel = Depends(get_kernel)):
    return ok(dump(TemplateOut, kernel.templates.get(principal, template_id)))


@router.patch("/{template_id}")
def update_template(
    template_id: UUID,
    body: TemplateUpdate,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        template = kernel.templates.update(
            principal,
            template_id,
            name=body.name,
            description=body.description,
            source_branch_id=body.source_branch_id,
            destination_branch_id=body.destination_branch_id,
            items=_items(body.items),
        )
        return dump(TemplateOut, template)

    return write(kernel, principal, request, action, body)


@router.delete("/{template_id}")
def archive_template(
    template_id: UUID,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(TemplateOut, kernel.templates.archive(principal, template_id)),
    )


@router.post("/{template_id}/duplicate")
def duplicate_template(
    template_id: UUID,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(TemplateOut, kernel.templates.duplicate(principal, template_id)),
        status_code=201,
    )


@router.post("/{template_id}/restore")
def restore_template(
    template_id: UUID,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(TemplateOut, kernel.templates.restore(principal, template_id)),
    )
