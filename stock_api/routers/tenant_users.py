from uuid import UUID

from fastapi import APIRouter, Depends, Request

from stock_api.deps import Kernel, get_kernel, page_limit, require_permission
from stock_api.responses import ok, page_payload, write
from stock_api.schemas import TenantUserCreate, TenantUserUpdate
from stock_kernel.domain.pagination import ArchiveFilter
from stock_kernel.domain.principal import Principal

router = APIRouter(prefix="/api/tenant-users", tags=["tenant-users"])

_manage = require_permission("users:manage")


@router.get("")
def list_users(
    archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
    q: str | None = None,
    role_id: UUID | None = None,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.users.list_users(
        principal, archived=archived, q=q, role_id=role_id, limit=limit, cursor=cursor
    )
    return ok(page_payload(page))


@router.post("")
def add_user(
    body: TenantUserCreate,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel,
        principal,
        request,
        lambda: kernel.users.add_user(
            principal,
            email=body.email,
            role_id=body.role_id,
            name=body.name,
            branch_ids=body.branch_ids,
        ),
        body,
        status_code=201,
    )


@router.get("/{user_id}")
def get_user(user_id: UUID, principal: Principal = Depends(_manage), kernel: Kernel = Depends(get_kernel)):
    return ok(kernel.users.get_user(principal, user_id))


@router.put("/{user_id}")
def update_user(
    user_id: UUID,
    body: TenantUserUpdate,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel,
        principal,
        request,
        lambda: kernel.users.update_user(
            principal,
            user_id,
            role_id=body.role_id,
            branch_ids=body.branch_ids,
            name=body.name,
        ),
        body,
    )


@router.delete("/{user_id}")
def archive_user(
    user_id: UUID,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    return write(kernel, principal, request, lambda: kernel.users.archive_user(principal, user_id))


@router.post("/{user_id}/restore")
def restore_user(
    user_id: UUID,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    return write(kernel, principal, request, lambda: kernel.users.restore_user(principal, user_id))
