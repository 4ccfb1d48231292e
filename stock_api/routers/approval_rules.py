from uuid import UUID

from fastapi import APIRouter, Depends, Request

from stock_api.deps import Kernel, get_kernel, page_limit, require_permission
from stock_api.responses import dump, ok, page_payload, write
from stock_api.schemas import ApprovalRuleCreate, ApprovalRuleOut, ApprovalRuleUpdate
from stock_kernel.domain.pagination import ArchiveFilter, SortDirection
from stock_kernel.domain.principal import Principal
from stock_kernel.services.approval_rule_service import ConditionInput, LevelInput

router = APIRouter(prefix="/api/transfer-approval-rules", tags=["approval-rules"])

_read = require_permission("stock:read")
_write = require_permission("stock:write")


def _conditions(lines):
    if lines is None:
        return None
    return [ConditionInput(c.condition_type, c.threshold, c.branch_id) for c in lines]


def _levels(lines):
    if lines is None:
        return None
    return [
        LevelInput(lv.level, lv.name, lv.required_role_id, lv.required_user_id) for lv in lines
    ]


@router.get("")
def list_rules(
    archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
    is_active: bool | None = None,
    sort_by: str = "priority",
    sort_dir: SortDirection = SortDirection.DESC,
    limit: int = Depends(page_limit),
    cursor: str | None = None,
    principal: Principal = Depends(_read),
    kernel: Kernel = Depends(get_kernel),
):
    page = kernel.approval_rules.list(
        principal,
        archived=archived,
        is_active=is_active,
        sort_by=sort_by,
        sort_dir=sort_dir,
        limit=limit,
        cursor=cursor,
    )
    return ok(page_payload(page, ApprovalRuleOut))


@router.post("")
def create_rule(
    body: ApprovalRuleCreate,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        rule = kernel.approval_rules.create(
            principal,
            name=body.name,
            conditions=_conditions(body.conditions),
            levels=_levels(body.levels),
            description=body.description,
            is_active=body.is_active,
            approval_mode=body.approval_mode,
            priority=body.priority,
        )
        return dump(ApprovalRuleOut, rule)

    return write(kernel, principal, request, action, body, status_code=201)


@router.get("/{rule_id}")
def get_rule(rule_id: UUID, principal: Principal = Depends(_read), kernel: Kernel = Depends(get_kernel)):
    return ok(dump(ApprovalRuleOut, kernel.approval_rules.get(principal, rule_id)))


@router.patch("/{rule_id}")
def update_rule(
    rule_id: UUID,
    body: ApprovalRuleUpdate,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    def action():
        rule = kernel.approval_rules.update(
            principal,
            rule_id,
            name=body.name,
            description=body.description,
            is_active=body.is_active,
            approval_mode=body.approval_mode,
            priority=body.priority,
            conditions=_conditions(body.conditions),
            levels=_levels(body.levels),
        )
        return dump(ApprovalRuleOut, rule)

    return write(kernel, principal, request, action, body)


@router.delete("/{rule_id}")
def archive_rule(
    rule_id: UUID,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(ApprovalRuleOut, kernel.approval_rules.archive(principal, rule_id)),
    )


@router.post("/{rule_id}/restore")
def restore_rule(
    rule_id: UUID,
    request: Request,
    principal: Principal = Depends(_write),
    kernel: Kernel = Depends(get_kernel),
):
    return write(
        kernel, principal, request,
        lambda: dump(ApprovalRuleOut, kernel.approval_rules.restore(principal, rule_id)),
    )
