from uuid import UUID

from fastapi import APIRouter, Depends, Request

from stock_api.deps import Kernel, get_kernel, page_limit, require_permission
from stock_api.responses import dump, ok, page_payload, write
from stock_api.schemas import BranchCreate, BranchMemberOut, BranchOut, BranchUpdate
from stock_kernel.domain.pagination import ArchiveFilter, SortDirection
from stock_kernel.domain.principal import Principal

router = APIRouter(prefix="/api/branches", tags=["branches"])

_read = require_permission("stock:read")
_manage = require_permission("branches:manage")


@router.get("")
def list_branches(
    archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
    q: str | None = None,
    sort_dir: SortDirection = SortDirection.ASC,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.branches.list(
        principal, archived=archived, q=q, sort_dir=sort_dir, limit=limit, cursor=cursor
    )
    return ok(page_payload(page, BranchOut))


@router.post("")
def create_branch(
    body: BranchCreate,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        branch = kernel.branches.create(
            principal, slug=body.slug, name=body.name, is_active=body.is_active
        )
        return dump(BranchOut, branch)

    return write(kernel, principal, request, action, body, status_code=201)


@router.get("/{branch_id}")
def get_branch(branch_id: UUID, principal: Principal = Depends(_read), kernel: Kernel = Depends(get_kernel)):
    return ok(dump(BranchOut, kernel.branches.get(principal, branch_id)))


@router.put("/{branch_id}")
def update_branch(
    branch_id: UUID,
    body: BranchUpdate,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        branch = kernel.branches.update(
            principal, branch_id, slug=body.slug, name=body.name, is_active=body.is_active
        )
        return dump(BranchOut, branch)

    return write(kernel, principal, request, action, body)


@router.delete("/{branch_id}")
def archive_branch(
    branch_id: UUID,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(BranchOut, kernel.branches.archive(principal, branch_id)),
    )


@router.post("/{branch_id}/restore")
def restore_branch(
    branch_id: UUID,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(BranchOut, kernel.branches.restore(principal, branch_id)),
    )


@router.post("/{branch_id}/members/{user_id}")
def add_branch_member(
    branch_id: UUID,
    user_id: UUID,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(BranchMemberOut, kernel.branches.add_member(principal, branch_id, user_id)),
    )


@router.delete("/{branch_id}/members/{user_id}")
def remove_branch_member(
    branch_id: UUID,
    user_id: UUID,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        kernel.branches.remove_member(principal, branch_id, user_id)
        return {"branch_id": branch_id, "user_id": user_id}

    return write(kernel, principal, request, action)
