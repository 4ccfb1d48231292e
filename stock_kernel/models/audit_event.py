"""
Module: stock_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listener).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    AuditEvent IS the audit trail.  Every write in the system (catalog edits,
    stock movements, transfer transitions, role changes, approval rules)
    produces an AuditEvent with before/after snapshots.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString, enum_column


class AuditEntityType(str, Enum):
    PRODUCT = "PRODUCT"
    BRANCH = "BRANCH"
    STOCK_LOT = "STOCK_LOT"
    STOCK_LEDGER = "STOCK_LEDGER"
    PRODUCT_STOCK = "PRODUCT_STOCK"
    USER = "USER"
    ROLE = "ROLE"
    TENANT = "TENANT"
    STOCK_TRANSFER = "STOCK_TRANSFER"
    STOCK_TRANSFER_ITEM = "STOCK_TRANSFER_ITEM"
    APPROVAL_RULE = "APPROVAL_RULE"
    TRANSFER_TEMPLATE = "TRANSFER_TEMPLATE"


class AuditAction(str, Enum):
    """Types of auditable actions.

    Contract: every write path in the services maps to one of these.
    """

    # Generic lifecycle
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    RESTORE = "RESTORE"

    # Stock movements
    STOCK_RECEIVE = "STOCK_RECEIVE"
    STOCK_ADJUST = "STOCK_ADJUST"
    STOCK_CONSUME = "STOCK_CONSUME"
    STOCK_REVERSE = "STOCK_REVERSE"

    # Memberships
    ROLE_ASSIGN = "ROLE_ASSIGN"
    ROLE_REVOKE = "ROLE_REVOKE"

    # Transfer lifecycle
    TRANSFER_REQUEST = "TRANSFER_REQUEST"
    TRANSFER_SUBMIT = "TRANSFER_SUBMIT"
    TRANSFER_APPROVE = "TRANSFER_APPROVE"
    TRANSFER_REJECT = "TRANSFER_REJECT"
    TRANSFER_SHIP = "TRANSFER_SHIP"
    TRANSFER_SHIP_PARTIAL = "TRANSFER_SHIP_PARTIAL"
    TRANSFER_RECEIVE = "TRANSFER_RECEIVE"
    TRANSFER_CANCEL = "TRANSFER_CANCEL"
    TRANSFER_REVERSE = "TRANSFER_REVERSE"
    TRANSFER_APPROVE_LEVEL = "TRANSFER_APPROVE_LEVEL"
    TRANSFER_PRIORITY_CHANGE = "TRANSFER_PRIORITY_CHANGE"

    # Approval rules
    APPROVAL_RULE_CREATE = "APPROVAL_RULE_CREATE"
    APPROVAL_RULE_UPDATE = "APPROVAL_RULE_UPDATE"
    APPROVAL_RULE_DELETE = "APPROVAL_RULE_DELETE"
    APPROVAL_RULE_RESTORE = "APPROVAL_RULE_RESTORE"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.  Each
        row's hash includes the previous row's hash, creating a
        tamper-evident chain.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_tenant", "tenant_id", "occurred_at"),
        Index("idx_audit_action", "action"),
    )

    # Monotonic sequence for ordering
    seq: Mapped[int] = mapped_column(nullable=False, unique=True)

    tenant_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    entity_type: Mapped[AuditEntityType] = mapped_column(
        enum_column(AuditEntityType), nullable=False
    )

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Display label captured at write time (sku, transfer number, ...)
    entity_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    action: Mapped[AuditAction] = mapped_column(enum_column(AuditAction, 50), nullable=False)

    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    correlation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Hash of the canonical before/after payload
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Hash of the previous audit event (null for first event)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action.value} on {self.entity_type.value}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
