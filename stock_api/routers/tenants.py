from fastapi import APIRouter, Depends, Request

from stock_api.deps import Kernel, get_kernel
from stock_api.responses import write
from stock_api.schemas import TenantCreate

router = APIRouter(prefix="/api/tenants", tags=["tenants"])


@router.post("")
def create_tenant(body: TenantCreate, request: Request, kernel: Kernel = Depends(get_kernel)):
    """Bootstrap a tenant and its first OWNER; no principal exists yet."""
    return write(
        kernel,
        None,
        request,
        lambda: kernel.tenants.create_tenant(
            slug=body.slug,
            name=body.name,
            owner_email=body.owner_email,
            owner_name=body.owner_name,
        ),
        body,
        status_code=201,
    )
