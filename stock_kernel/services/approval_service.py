"""
ApprovalEvaluationService -- multi-level approval of stock transfers.

Responsibility:
    Matches a requested transfer against the tenant's approval rules,
    instantiates one PENDING ApprovalRecord per rule level, and signs or
    rejects those levels.

Architecture position:
    Kernel > Services.  Rule matching and level ordering are pure functions
    in domain/approval.py.

Invariants enforced:
    - Only REQUESTED transfers that require multi-level approval accept
      level decisions.
    - A level is decided once: PENDING -> APPROVED | REJECTED | SKIPPED.
    - Level ordering follows the record's approval_mode
      (APPROVAL_ORDER_VIOLATION, 409).
    - When every level is APPROVED the transfer becomes APPROVED with
      qty_approved = qty_requested on every item.

Audit relevance:
    TRANSFER_APPROVE_LEVEL per signed level, TRANSFER_APPROVE when the last
    level completes, TRANSFER_REJECT on a rejected level.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update

from stock_kernel.domain.approval import (
    TransferFacts,
    all_approved,
    blocking_levels,
    select_rule,
)
from stock_kernel.domain.principal import Principal
from stock_kernel.domain.transfer import validate_transition
from stock_kernel.exceptions import (
    ApprovalAlreadyResolvedError,
    ApprovalLevelForbiddenError,
    ApprovalOrderError,
    ApprovalRecordNotFoundError,
    TransferStateError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.approval import ApprovalRecord, ApprovalRecordStatus, ApprovalRule
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.product import Product
from stock_kernel.models.transfer import StockTransfer, TransferStatus
from stock_kernel.services.access_service import AccessService
from stock_kernel.services.base import BaseService, snapshot

logger = get_logger("services.approval")


@dataclass(frozen=True)
class ApprovalProgress:
    transfer_id: UUID
    requires_approval: bool
    records: tuple[ApprovalRecord, ...]


def transfer_snapshot(transfer: StockTransfer) -> dict:
    """Transfer columns plus per-item quantities, for audit payloads."""
    data = snapshot(transfer)
    data["items"] = [
        {
            "id": item.id,
            "product_id": item.product_id,
            "qty_requested": item.qty_requested,
            "qty_approved": item.qty_approved,
            "qty_shipped": item.qty_shipped,
            "qty_received": item.qty_received,
        }
        for item in transfer.items
    ]
    return data


class ApprovalEvaluationService(BaseService):
    def __init__(self, session, auditor, clock=None):
        super().__init__(session, auditor, clock)
        self._access = AccessService(session)

    def _facts(self, transfer: StockTransfer) -> TransferFacts:
        product_ids = {item.product_id for item in transfer.items}
        prices = dict(
            self.session.execute(
                select(Product.id, Product.price_pence).where(Product.id.in_(product_ids))
            ).all()
        )
        return TransferFacts(
            source_branch_id=transfer.source_branch_id,
            destination_branch_id=transfer.destination_branch_id,
            total_qty=sum(item.qty_requested for item in transfer.items),
            total_value_pence=sum(
                item.qty_requested * prices.get(item.product_id, 0) for item in transfer.items
            ),
        )

    def records_for(self, transfer_id: UUID) -> list[ApprovalRecord]:
        return list(
            self.session.execute(
                select(ApprovalRecord)
                .where(ApprovalRecord.transfer_id == transfer_id)
                .order_by(ApprovalRecord.level)
            ).scalars()
        )

    def evaluate(self, principal: Principal, transfer: StockTransfer) -> ApprovalRule | None:
        """
        Attach approval levels to a REQUESTED transfer.

        Returns the matched rule, or None when the transfer goes to
        single-step review.
        """
        rules = self.session.execute(
            select(ApprovalRule).where(
                ApprovalRule.tenant_id == principal.tenant_id,
                ApprovalRule.is_active.is_(True),
                ApprovalRule.is_archived.is_(False),
            )
        ).scalars().all()
        rule = select_rule(rules, self._facts(transfer))
        if rule is None:
            transfer.requires_multi_level_approval = False
            self.session.flush()
            return None

        for level in rule.levels:
            self.session.add(
                ApprovalRecord(
                    tenant_id=principal.tenant_id,
                    transfer_id=transfer.id,
                    rule_id=rule.id,
                    level=level.level,
                    level_name=level.name,
                    status=ApprovalRecordStatus.PENDING,
                    required_role_id=level.required_role_id,
                    required_user_id=level.required_user_id,
                    approval_mode=rule.approval_mode,
                )
            )
        transfer.requires_multi_level_approval = True
        self.session.flush()

        logger.info(
            "approval_rule_matched",
            extra={
                "transfer_id": str(transfer.id),
                "rule_id": str(rule.id),
                "approval_mode": rule.approval_mode.value,
                "levels": len(rule.levels),
            },
        )
        return rule

    def skip_pending(self, transfer_id: UUID) -> int:
        """Mark every PENDING record of the transfer SKIPPED."""
        result = self.session.execute(
            update(ApprovalRecord)
            .where(
                ApprovalRecord.transfer_id == transfer_id,
                ApprovalRecord.status == ApprovalRecordStatus.PENDING,
            )
            .values(status=ApprovalRecordStatus.SKIPPED)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def _decidable(
        self, principal: Principal, transfer_id: UUID, level: int
    ) -> tuple[StockTransfer, ApprovalRecord, list[ApprovalRecord]]:
        transfer = self._get_owned(StockTransfer, transfer_id, principal.tenant_id, "Transfer")
        if not transfer.requires_multi_level_approval:
            raise TransferStateError(
                str(transfer.id), transfer.status.value,
                "Transfer does not require multi-level approval",
            )
        if transfer.status != TransferStatus.REQUESTED:
            raise TransferStateError(
                str(transfer.id), transfer.status.value,
                "Only requested transfers can be approved or rejected",
            )

        records = self.records_for(transfer.id)
        record = next((r for r in records if r.level == level), None)
        if record is None:
            raise ApprovalRecordNotFoundError(str(transfer.id), level)
        if record.status != ApprovalRecordStatus.PENDING:
            raise ApprovalAlreadyResolvedError(str(transfer.id), level, record.status.value)

        if record.required_user_id is not None:
            allowed = record.required_user_id == principal.user_id
        elif record.required_role_id is not None:
            allowed = self._access.has_role(
                principal.tenant_id, principal.user_id, record.required_role_id
            )
        else:
            allowed = False
        if not allowed:
            raise ApprovalLevelForbiddenError(level, str(principal.user_id))
        return transfer, record, records

    def submit_approval(
        self,
        principal: Principal,
        transfer_id: UUID,
        level: int,
        notes: str | None = None,
    ) -> StockTransfer:
        transfer, record, records = self._decidable(principal, transfer_id, level)

        blocked = blocking_levels(
            record.approval_mode, level, {r.level: r.status for r in records}
        )
        if blocked:
            raise ApprovalOrderError(str(transfer.id), level, blocked)

        before = transfer_snapshot(transfer)
        now = self._clock.now()
        record.status = ApprovalRecordStatus.APPROVED
        record.approved_by = principal.user_id
        record.approved_at = now
        record.notes = notes

        if all_approved([r.status for r in records]):
            validate_transition(transfer.id, transfer.status, TransferStatus.APPROVED)
            for item in transfer.items:
                item.qty_approved = item.qty_requested
            transfer.status = TransferStatus.APPROVED
            transfer.reviewed_by = principal.user_id
            transfer.reviewed_at = now
            self.session.flush()
            self._audit(
                principal, AuditEntityType.STOCK_TRANSFER, transfer.id,
                AuditAction.TRANSFER_APPROVE,
                entity_name=transfer.transfer_number,
                before=before, after=transfer_snapshot(transfer),
            )
            logger.info(
                "transfer_approved",
                extra={"transfer_id": str(transfer.id), "final_level": level},
            )
        else:
            self.session.flush()
            self._audit(
                principal, AuditEntityType.STOCK_TRANSFER, transfer.id,
                AuditAction.TRANSFER_APPROVE_LEVEL,
                entity_name=transfer.transfer_number,
                after={"level": level, "level_name": record.level_name, "notes": notes},
            )
            logger.info(
                "approval_level_signed",
                extra={"transfer_id": str(transfer.id), "level": level},
            )
        return transfer

    def reject_approval(
        self,
        principal: Principal,
        transfer_id: UUID,
        level: int,
        notes: str | None = None,
    ) -> StockTransfer:
        transfer, record, _ = self._decidable(principal, transfer_id, level)
        validate_transition(transfer.id, transfer.status, TransferStatus.REJECTED)

        before = transfer_snapshot(transfer)
        now = self._clock.now()
        record.status = ApprovalRecordStatus.REJECTED
        record.approved_by = principal.user_id
        record.approved_at = now
        record.notes = notes
        self.session.flush()
        self.skip_pending(transfer.id)

        transfer.status = TransferStatus.REJECTED
        transfer.reviewed_by = principal.user_id
        transfer.reviewed_at = now
        transfer.review_notes = notes
        self.session.flush()

        self._audit(
            principal, AuditEntityType.STOCK_TRANSFER, transfer.id,
            AuditAction.TRANSFER_REJECT,
            entity_name=transfer.transfer_number,
            before=before, after=transfer_snapshot(transfer),
        )
        logger.info("transfer_rejected", extra={"transfer_id": str(transfer.id), "level": level})
        return transfer

    def get_approval_progress(self, principal: Principal, transfer_id: UUID) -> ApprovalProgress:
        transfer = self._get_owned(StockTransfer, transfer_id, principal.tenant_id, "Transfer")
        self._access.assert_any_branch_access(
            principal.tenant_id,
            principal.user_id,
            [transfer.source_branch_id, transfer.destination_branch_id],
        )
        return ApprovalProgress(
            transfer_id=transfer.id,
            requires_approval=transfer.requires_multi_level_approval,
            records=tuple(self.records_for(transfer.id)),
        )
