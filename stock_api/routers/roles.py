"""Role and permission catalog routes, plus each role's audit activity feed."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Request

from stock_api.deps import Kernel, get_kernel, page_limit, require_permission
from stock_api.responses import dump, ok, page_payload, write
from stock_api.schemas import PermissionOut, RoleCreate, RoleOut, RoleUpdate
from stock_kernel.domain.pagination import ArchiveFilter
from stock_kernel.domain.principal import Principal

router = APIRouter(prefix="/api", tags=["roles"])

_read = require_permission("roles:read")
_manage = require_permission("roles:manage")


@router.get("/permissions")
def list_permissions(principal: Principal = Depends(_read), kernel: Kernel = Depends(get_kernel)):
    return ok([dump(PermissionOut, p) for p in kernel.roles.list_permissions()])


@router.get("/roles")
def list_roles(
    archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
    q: str | None = None,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.roles.list_roles(principal, archived=archived, q=q, limit=limit, cursor=cursor)
    return ok(page_payload(page, RoleOut))


@router.post("/roles")
def create_role(
    body: RoleCreate,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        role = kernel.roles.create_role(
            principal,
            name=body.name,
            permission_keys=body.permission_keys,
            description=body.description,
        )
        return dump(RoleOut, role)

    return write(kernel, principal, request, action, body, status_code=201)


@router.get("/roles/{role_id}")
def get_role(role_id: UUID, principal: Principal = Depends(_read), kernel: Kernel = Depends(get_kernel)):
    return ok(dump(RoleOut, kernel.roles.get_role(principal, role_id)))


@router.put("/roles/{role_id}")
def update_role(
    role_id: UUID,
    body: RoleUpdate,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        role = kernel.roles.update_role(
            principal,
            role_id,
            name=body.name,
            description=body.description,
            permission_keys=body.permission_keys,
        )
        return dump(RoleOut, role)

    return write(kernel, principal, request, action, body)


@router.delete("/roles/{role_id}")
def archive_role(
    role_id: UUID,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(RoleOut, kernel.roles.archive_role(principal, role_id)),
    )


@router.post("/roles/{role_id}/restore")
def restore_role(
    role_id: UUID,
    request: Request,
    principal: Principal = Depends(_manage),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(RoleOut, kernel.roles.restore_role(principal, role_id)),
    )


@router.get("/roles/{role_id}/activity")
def role_activity(
    role_id: UUID,
    actor_id: UUID | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    include_total: bool = False,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.audit.role_activity(
        principal,
        role_id,
        actor_id=actor_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        limit=limit,
        cursor=cursor,
        include_total=include_total,
    )
    return ok(page_payload(page))
