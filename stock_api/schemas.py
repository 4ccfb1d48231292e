"""
Pydantic request and response models for the HTTP API.

Request models validate shape only (types, required fields, lengths).
Business rules (positive quantities, tenant ownership, state) are enforced
by the kernel so they hold for every caller, not just HTTP.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from stock_kernel.models.approval import ApprovalConditionType, ApprovalMode, ApprovalRecordStatus
from stock_kernel.models.transfer import TransferInitiationType, TransferPriority
from stock_kernel.services.transfer_service import ORDER_NOTES_MAX_LENGTH


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _Response(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Tenants


class TenantCreate(_Request):
    slug: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=200)
    owner_email: str = Field(min_length=3, max_length=255)
    owner_name: str | None = Field(default=None, max_length=200)


# Roles


class RoleCreate(_Request):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    permission_keys: list[str] = Field(default_factory=list)


class RoleUpdate(_Request):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    permission_keys: list[str] | None = None


class PermissionOut(_Response):
    key: str
    description: str | None = None


class RoleOut(_Response):
    id: UUID
    name: str
    description: str | None
    is_system: bool
    is_archived: bool
    archived_at: datetime | None
    permission_keys: list[str]
    created_at: datetime
    updated_at: datetime


# Tenant users


class TenantUserCreate(_Request):
    email: str = Field(min_length=3, max_length=255)
    role_id: UUID
    name: str | None = Field(default=None, max_length=200)
    branch_ids: list[UUID] | None = None


class TenantUserUpdate(_Request):
    role_id: UUID | None = None
    branch_ids: list[UUID] | None = None
    name: str | None = Field(default=None, max_length=200)


# Branches


class BranchCreate(_Request):
    slug: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=200)
    is_active: bool = True


class BranchUpdate(_Request):
    slug: str | None = Field(default=None, min_length=1, max_length=100)
    name: str | None = Field(default=None, min_length=1, max_length=200)
    is_active: bool | None = None


class BranchOut(_Response):
    id: UUID
    slug: str
    name: str
    is_active: bool
    is_archived: bool
    archived_at: datetime | None
    created_at: datetime
    updated_at: datetime


class BranchMemberOut(_Response):
    branch_id: UUID
    user_id: UUID


# Products


class ProductCreate(_Request):
    sku: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=200)
    price_pence: int = 0
    barcode: str | None = Field(default=None, max_length=100)


class ProductUpdate(_Request):
    sku: str | None = Field(default=None, min_length=1, max_length=100)
    name: str | None = Field(default=None, min_length=1, max_length=200)
    price_pence: int | None = None
    barcode: str | None = Field(default=None, max_length=100)


class ProductOut(_Response):
    id: UUID
    sku: str
    name: str
    price_pence: int
    barcode: str | None
    is_archived: bool
    archived_at: datetime | None
    created_at: datetime
    updated_at: datetime


# Stock


class StockReceive(_Request):
    branch_id: UUID
    product_id: UUID
    qty: int
    unit_cost_pence: int | None = None
    source_ref: str | None = Field(default=None, max_length=200)
    reason: str | None = Field(default=None, max_length=500)
    occurred_at: datetime | None = None


class StockAdjust(_Request):
    branch_id: UUID
    product_id: UUID
    qty_delta: int
    unit_cost_pence: int | None = None
    reason: str | None = Field(default=None, max_length=500)


class StockConsume(_Request):
    branch_id: UUID
    product_id: UUID
    qty: int
    reason: str | None = Field(default=None, max_length=500)


# Transfers


class TransferItemIn(_Request):
    product_id: UUID
    qty_requested: int


class TransferCreate(_Request):
    source_branch_id: UUID
    destination_branch_id: UUID
    items: list[TransferItemIn]
    priority: TransferPriority = TransferPriority.NORMAL
    initiation_type: TransferInitiationType = TransferInitiationType.PUSH
    request_notes: str | None = None
    order_notes: str | None = Field(default=None, max_length=ORDER_NOTES_MAX_LENGTH)
    expected_delivery_date: date | None = None
    submit: bool = True


class TransferFromTemplate(_Request):
    items: list[TransferItemIn] | None = None
    priority: TransferPriority = TransferPriority.NORMAL
    initiation_type: TransferInitiationType = TransferInitiationType.PUSH
    request_notes: str | None = None
    order_notes: str | None = Field(default=None, max_length=ORDER_NOTES_MAX_LENGTH)
    expected_delivery_date: date | None = None
    submit: bool = True


class ApprovedItemIn(_Request):
    item_id: UUID
    qty_approved: int


class TransferReview(_Request):
    action: str = Field(pattern="^(approve|reject)$")
    review_notes: str | None = None
    items: list[ApprovedItemIn] | None = None


class ItemQtyIn(_Request):
    item_id: UUID
    qty: int


class TransferMovement(_Request):
    items: list[ItemQtyIn] | None = None


class TransferPriorityUpdate(_Request):
    priority: TransferPriority


class TransferReverse(_Request):
    reversal_reason: str | None = Field(default=None, max_length=ORDER_NOTES_MAX_LENGTH)


class ApprovalDecision(_Request):
    notes: str | None = None


class ApprovalRecordOut(_Response):
    level: int
    level_name: str
    status: ApprovalRecordStatus
    approval_mode: ApprovalMode
    required_role_id: UUID | None
    required_user_id: UUID | None
    approved_by: UUID | None
    approved_at: datetime | None
    notes: str | None


class ApprovalProgressOut(_Response):
    transfer_id: UUID
    requires_approval: bool
    records: list[ApprovalRecordOut]


# Approval rules


class ConditionIn(_Request):
    condition_type: ApprovalConditionType
    threshold: int | None = None
    branch_id: UUID | None = None


class LevelIn(_Request):
    level: int
    name: str = Field(min_length=1, max_length=200)
    required_role_id: UUID | None = None
    required_user_id: UUID | None = None


class ApprovalRuleCreate(_Request):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    is_active: bool = True
    approval_mode: ApprovalMode = ApprovalMode.SEQUENTIAL
    priority: int = 0
    conditions: list[ConditionIn]
    levels: list[LevelIn]


class ApprovalRuleUpdate(_Request):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    is_active: bool | None = None
    approval_mode: ApprovalMode | None = None
    priority: int | None = None
    conditions: list[ConditionIn] | None = None
    levels: list[LevelIn] | None = None


class ConditionOut(_Response):
    condition_type: ApprovalConditionType
    threshold: int | None
    branch_id: UUID | None


class LevelOut(_Response):
    level: int
    name: str
    required_role_id: UUID | None
    required_user_id: UUID | None


class ApprovalRuleOut(_Response):
    id: UUID
    name: str
    description: str | None
    is_active: bool
    approval_mode: ApprovalMode
    priority: int
    is_archived: bool
    archived_at: datetime | None
    conditions: list[ConditionOut]
    levels: list[LevelOut]
    created_at: datetime
    updated_at: datetime


# Templates


class TemplateItemIn(_Request):
    product_id: UUID
    default_qty: int


class TemplateCreate(_Request):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    source_branch_id: UUID
    destination_branch_id: UUID
    items: list[TemplateItemIn]


class TemplateUpdate(_Request):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    source_branch_id: UUID | None = None
    destination_branch_id: UUID | None = None
    items: list[TemplateItemIn] | None = None


class TemplateItemOut(_Response):
    product_id: UUID
    default_qty: int


class TemplateOut(_Response):
    id: UUID
    name: str
    description: str | None
    source_branch_id: UUID
    destination_branch_id: UUID
    created_by: UUID
    is_archived: bool
    archived_at: datetime | None
    items: list[TemplateItemOut]
    created_at: datetime
    updated_at: datetime
