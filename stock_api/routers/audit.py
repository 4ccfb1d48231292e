"""
Audit trail routes.

The timeline and single-event reads need ``users:manage`` or
``tenant:manage``.  Bounds on ``occurred_from``/``occurred_to`` are
inclusive ISO datetimes; an unknown ``entity_type`` in the path is a 400.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends

from stock_api.deps import Kernel, get_kernel, page_limit, require_any_permission
from stock_api.responses import ok, page_payload
from stock_kernel.domain.principal import Principal
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.selectors.audit_selector import AUDIT_READ_PERMISSIONS

router = APIRouter(prefix="/api/audit", tags=["audit"])

_audit_read = require_any_permission(*AUDIT_READ_PERMISSIONS)


@router.get("/events")
def list_audit_events(
    entity_type: AuditEntityType | None = None,
    entity_id: UUID | None = None,
    action: AuditAction | None = None,
    actor_id: UUID | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    include_total: bool = False,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_audit_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.audit.list_events(
        principal,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        limit=limit,
        cursor=cursor,
        include_total=include_total,
    )
    return ok(page_payload(page))


@router.get("/events/{event_id}")
def get_audit_event(
    event_id: UUID,
    principal: Principal = Depends(_audit_read),
    kernel: Kernel = Depends(get_kernel),
):
    return ok(kernel.audit.get_event(principal, event_id))


@router.get("/entities/{entity_type}/{entity_id}")
def list_entity_audit_events(
    entity_type: AuditEntityType,
    entity_id: UUID,
    action: AuditAction | None = None,
    actor_id: UUID | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_audit_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.audit.entity_events(
        principal,
        entity_type,
        entity_id,
        action=action,
        actor_id=actor_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        limit=limit,
        cursor=cursor,
    )
    return ok(page_payload(page))
