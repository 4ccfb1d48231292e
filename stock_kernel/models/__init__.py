"""Domain models for the stock kernel."""

from stock_kernel.models.approval import (
    ApprovalConditionType,
    ApprovalMode,
    ApprovalRecord,
    ApprovalRecordStatus,
    ApprovalRule,
    ApprovalRuleCondition,
    ApprovalRuleLevel,
)
from stock_kernel.models.audit_event import AuditAction, AuditEntityType, AuditEvent
from stock_kernel.models.branch import Branch
from stock_kernel.models.idempotency import IdempotencyRecord
from stock_kernel.models.product import Product
from stock_kernel.models.role import Permission, Role, role_permissions
from stock_kernel.models.sequence_counter import SequenceCounter
from stock_kernel.models.stock import ProductStock, StockLedgerEntry, StockLot, StockMovementKind
from stock_kernel.models.template import TransferTemplate, TransferTemplateItem
from stock_kernel.models.tenant import Tenant
from stock_kernel.models.transfer import (
    StockTransfer,
    StockTransferItem,
    TransferInitiationType,
    TransferPriority,
    TransferStatus,
)
from stock_kernel.models.user import User, UserBranchMembership, UserTenantMembership

__all__ = [
    "ApprovalConditionType",
    "ApprovalMode",
    "ApprovalRecord",
    "ApprovalRecordStatus",
    "ApprovalRule",
    "ApprovalRuleCondition",
    "ApprovalRuleLevel",
    "AuditAction",
    "AuditEntityType",
    "AuditEvent",
    "Branch",
    "IdempotencyRecord",
    "Permission",
    "Product",
    "ProductStock",
    "Role",
    "role_permissions",
    "SequenceCounter",
    "StockLedgerEntry",
    "StockLot",
    "StockMovementKind",
    "StockTransfer",
    "StockTransferItem",
    "Tenant",
    "TransferInitiationType",
    "TransferPriority",
    "TransferStatus",
    "TransferTemplate",
    "TransferTemplateItem",
    "User",
    "UserBranchMembership",
    "UserTenantMembership",
]
