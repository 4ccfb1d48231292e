"""
TransferService -- stock transfers between branches of one tenant.

Responsibility:
    Drives a transfer through its lifecycle: create (or create from a
    template), submit, review, ship in one or more batches, receive in one or
    more batches, cancel, reverse, and re-prioritise.

Architecture position:
    Kernel > Services.  The state machine and branch roles live in
    domain/transfer.py; stock movements go through StockService; approval
    levels through ApprovalEvaluationService.

Invariants enforced:
    - Status changes follow TRANSFER_TRANSITIONS.
    - PUSH transfers are initiated by the source branch and reviewed by the
      destination; PULL the other way round.
    - Only the source ships and only the destination receives.
    - 0 <= qty_received <= qty_shipped <= qty_approved <= qty_requested.
    - A transfer is reversed at most once (reversed_by_transfer_id).

Failure modes:
    - InvalidTransferTransitionError / TransferStateError (409) for actions
      not allowed in the current status.
    - InsufficientStockError (409) when the source cannot cover a shipment.
    - BranchAccessDeniedError (403) when the user is not in the branch that
      must act.

Audit relevance:
    Every step writes a STOCK_TRANSFER audit event (TRANSFER_* actions)
    with before/after snapshots, alongside the stock-ledger events of the
    movements it causes.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.fifo import LotAllocation, weighted_average_cost
from stock_kernel.domain.principal import Principal
from stock_kernel.domain.transfer import (
    PRIORITY_EDITABLE_STATUSES,
    format_transfer_number,
    initiating_branch_id,
    reversal_order_notes,
    reviewing_branch_id,
    validate_transition,
)
from stock_kernel.exceptions import (
    BranchAccessDeniedError,
    EmptyTransferError,
    EntityNotFoundError,
    InvalidQuantityError,
    MultiLevelApprovalRequiredError,
    SameBranchTransferError,
    TransferAlreadyReversedError,
    TransferStateError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.product import Product
from stock_kernel.models.stock import StockMovementKind
from stock_kernel.models.template import TransferTemplate
from stock_kernel.models.transfer import (
    StockTransfer,
    StockTransferItem,
    TransferInitiationType,
    TransferPriority,
    TransferStatus,
)
from stock_kernel.services.access_service import AccessService
from stock_kernel.services.approval_service import ApprovalEvaluationService, transfer_snapshot
from stock_kernel.services.base import BaseService
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_service import StockService

logger = get_logger("services.transfer")

ORDER_NOTES_MAX_LENGTH = 2000


@dataclass(frozen=True)
class TransferItemInput:
    product_id: UUID
    qty_requested: int


@dataclass(frozen=True)
class ItemQty:
    """A quantity against one existing transfer item (ship / receive)."""

    item_id: UUID
    qty: int


class ReviewAction:
    APPROVE = "approve"
    REJECT = "reject"


def _transfer_ref(transfer: StockTransfer) -> str:
    return f"Transfer {transfer.transfer_number}"


class TransferService(BaseService):
    def __init__(self, session, auditor, clock=None):
        super().__init__(session, auditor, clock)
        self._access = AccessService(session)
        self._stock = StockService(session, auditor, self._clock)
        self._approvals = ApprovalEvaluationService(session, auditor, self._clock)
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, principal: Principal, transfer_id: UUID) -> StockTransfer:
        return self._get_owned(StockTransfer, transfer_id, principal.tenant_id, "Transfer")

    def _require_member(self, principal: Principal, branch_id: UUID) -> None:
        if not self._access.is_branch_member(principal.tenant_id, principal.user_id, branch_id):
            raise BranchAccessDeniedError(str(branch_id), str(principal.user_id))

    def _require_either_member(self, principal: Principal, transfer: StockTransfer) -> None:
        self._access.assert_any_branch_access(
            principal.tenant_id,
            principal.user_id,
            [transfer.source_branch_id, transfer.destination_branch_id],
        )

    def _next_number(self, tenant_id: UUID) -> str:
        year = self._clock.now().year
        sequence = self._sequences.next_value(
            SequenceService.transfer_sequence_name(tenant_id, year)
        )
        return format_transfer_number(year, sequence)

    def _record(
        self,
        principal: Principal,
        transfer: StockTransfer,
        action: AuditAction,
        before: dict | None = None,
    ) -> None:
        self._audit(
            principal, AuditEntityType.STOCK_TRANSFER, transfer.id, action,
            entity_name=transfer.transfer_number,
            before=before, after=transfer_snapshot(transfer),
        )

    @staticmethod
    def _resolve_lines(transfer: StockTransfer, items: list[ItemQty]) -> list[tuple[StockTransferItem, int]]:
        by_id = {item.id: item for item in transfer.items}
        lines = []
        seen = set()
        for entry in items:
            item = by_id.get(entry.item_id)
            if item is None:
                raise ValidationError(
                    "Item does not belong to this transfer",
                    developer_message=f"item_id={entry.item_id}",
                )
            if entry.item_id in seen:
                raise ValidationError("Each item may appear only once")
            seen.add(entry.item_id)
            lines.append((item, entry.qty))
        return lines

    @staticmethod
    def _merge_items(items: list[TransferItemInput]) -> dict[UUID, int]:
        merged: dict[UUID, int] = defaultdict(int)
        for item in items:
            if item.qty_requested <= 0:
                raise InvalidQuantityError("qty_requested", item.qty_requested, "> 0")
            merged[item.product_id] += item.qty_requested
        return merged

    # ------------------------------------------------------------------
    # Create / submit
    # ------------------------------------------------------------------

    def create_transfer(
        self,
        principal: Principal,
        source_branch_id: UUID,
        destination_branch_id: UUID,
        items: list[TransferItemInput],
        priority: TransferPriority = TransferPriority.NORMAL,
        initiation_type: TransferInitiationType = TransferInitiationType.PUSH,
        request_notes: str | None = None,
        order_notes: str | None = None,
        expected_delivery_date: date | None = None,
        submit: bool = True,
    ) -> StockTransfer:
        if source_branch_id == destination_branch_id:
            raise SameBranchTransferError(str(source_branch_id))
        if not items:
            raise EmptyTransferError()
        if order_notes is not None and len(order_notes) > ORDER_NOTES_MAX_LENGTH:
            raise ValidationError(f"order_notes must be at most {ORDER_NOTES_MAX_LENGTH} characters")
        merged = self._merge_items(items)

        self._access.get_active_branch(principal.tenant_id, source_branch_id)
        self._access.get_active_branch(principal.tenant_id, destination_branch_id)
        initiator = initiating_branch_id(initiation_type, source_branch_id, destination_branch_id)
        self._require_member(principal, initiator)

        found = set(
            self.session.execute(
                select(Product.id).where(
                    Product.tenant_id == principal.tenant_id,
                    Product.id.in_(merged.keys()),
                    Product.is_archived.is_(False),
                )
            ).scalars()
        )
        missing = [pid for pid in merged if pid not in found]
        if missing:
            raise EntityNotFoundError("Product", str(missing[0]))

        now = self._clock.now()
        transfer = StockTransfer(
            tenant_id=principal.tenant_id,
            transfer_number=self._next_number(principal.tenant_id),
            source_branch_id=source_branch_id,
            destination_branch_id=destination_branch_id,
            status=TransferStatus.REQUESTED if submit else TransferStatus.DRAFT,
            priority=priority,
            initiation_type=initiation_type,
            initiated_by_branch_id=initiator,
            request_notes=request_notes,
            order_notes=order_notes,
            expected_delivery_date=expected_delivery_date,
            requested_by=principal.user_id,
            requested_at=now,
            items=[
                StockTransferItem(product_id=product_id, qty_requested=qty, shipment_batches=[])
                for product_id, qty in merged.items()
            ],
        )
        self.session.add(transfer)
        self.session.flush()

        self._record(principal, transfer, AuditAction.TRANSFER_REQUEST)
        if submit:
            self._approvals.evaluate(principal, transfer)

        logger.info(
            "transfer_created",
            extra={
                "transfer_id": str(transfer.id),
                "transfer_number": transfer.transfer_number,
                "status": transfer.status.value,
                "initiation_type": initiation_type.value,
                "item_count": len(merged),
            },
        )
        return transfer

    def create_from_template(
        self,
        principal: Principal,
        template_id: UUID,
        items: list[TransferItemInput] | None = None,
        priority: TransferPriority = TransferPriority.NORMAL,
        initiation_type: TransferInitiationType = TransferInitiationType.PUSH,
        request_notes: str | None = None,
        order_notes: str | None = None,
        expected_delivery_date: date | None = None,
        submit: bool = True,
    ) -> StockTransfer:
        """Create a transfer with the template's branches and default quantities."""
        template = self._get_owned(TransferTemplate, template_id, principal.tenant_id, "Template")
        if template.is_archived:
            raise EntityNotFoundError("Template", str(template_id))
        if items is None:
            items = [TransferItemInput(i.product_id, i.default_qty) for i in template.items]
        return self.create_transfer(
            principal,
            template.source_branch_id,
            template.destination_branch_id,
            items,
            priority=priority,
            initiation_type=initiation_type,
            request_notes=request_notes,
            order_notes=order_notes,
            expected_delivery_date=expected_delivery_date,
            submit=submit,
        )

    def submit_transfer(self, principal: Principal, transfer_id: UUID) -> StockTransfer:
        transfer = self._get(principal, transfer_id)
        self._require_member(principal, transfer.initiated_by_branch_id)
        validate_transition(transfer.id, transfer.status, TransferStatus.REQUESTED)

        before = transfer_snapshot(transfer)
        transfer.status = TransferStatus.REQUESTED
        transfer.requested_at = self._clock.now()
        self.session.flush()

        self._record(principal, transfer, AuditAction.TRANSFER_SUBMIT, before)
        self._approvals.evaluate(principal, transfer)
        logger.info("transfer_submitted", extra={"transfer_id": str(transfer.id)})
        return transfer

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def review_transfer(
        self,
        principal: Principal,
        transfer_id: UUID,
        action: str,
        review_notes: str | None = None,
        approved_items: dict[UUID, int] | None = None,
    ) -> StockTransfer:
        if action not in (ReviewAction.APPROVE, ReviewAction.REJECT):
            raise ValidationError("action must be 'approve' or 'reject'")

        transfer = self._get(principal, transfer_id)
        self._require_member(
            principal,
            reviewing_branch_id(
                transfer.initiation_type,
                transfer.source_branch_id,
                transfer.destination_branch_id,
            ),
        )
        target = TransferStatus.APPROVED if action == ReviewAction.APPROVE else TransferStatus.REJECTED
        validate_transition(transfer.id, transfer.status, target)
        before = transfer_snapshot(transfer)

        if action == ReviewAction.APPROVE:
            if transfer.requires_multi_level_approval:
                raise MultiLevelApprovalRequiredError(str(transfer.id))
            approved_items = dict(approved_items or {})
            unknown = set(approved_items) - {item.id for item in transfer.items}
            if unknown:
                raise ValidationError(
                    "Item does not belong to this transfer",
                    developer_message=f"item_ids={sorted(str(i) for i in unknown)}",
                )
            for item in transfer.items:
                qty = approved_items.get(item.id, item.qty_requested)
                if qty < 0 or qty > item.qty_requested:
                    raise InvalidQuantityError(
                        "qty_approved", qty, f"between 0 and {item.qty_requested}"
                    )
                item.qty_approved = qty
        else:
            self._approvals.skip_pending(transfer.id)

        transfer.status = target
        transfer.reviewed_by = principal.user_id
        transfer.reviewed_at = self._clock.now()
        transfer.review_notes = review_notes
        self.session.flush()

        audit_action = (
            AuditAction.TRANSFER_APPROVE if action == ReviewAction.APPROVE else AuditAction.TRANSFER_REJECT
        )
        self._record(principal, transfer, audit_action, before)
        logger.info(
            "transfer_reviewed",
            extra={"transfer_id": str(transfer.id), "review_action": action},
        )
        return transfer

    # ------------------------------------------------------------------
    # Ship / receive
    # ------------------------------------------------------------------

    def ship_transfer(
        self,
        principal: Principal,
        transfer_id: UUID,
        items: list[ItemQty] | None = None,
    ) -> StockTransfer:
        transfer = self._get(principal, transfer_id)
        self._require_member(principal, transfer.source_branch_id)
        if transfer.status != TransferStatus.APPROVED:
            raise TransferStateError(
                str(transfer.id), transfer.status.value, "Only approved transfers can be shipped"
            )

        if items is None:
            lines = [(item, item.qty_to_ship) for item in transfer.items if item.qty_to_ship > 0]
        else:
            lines = self._resolve_lines(transfer, items)
        if not lines:
            raise ValidationError("Nothing left to ship on this transfer")
        for item, qty in lines:
            if qty <= 0 or qty > item.qty_to_ship:
                raise InvalidQuantityError("qty", qty, f"between 1 and {item.qty_to_ship}")

        before = transfer_snapshot(transfer)
        now = self._clock.now()
        for item, qty in lines:
            result = self._stock.record_decrement(
                principal,
                transfer.source_branch_id,
                item.product_id,
                qty,
                kind=StockMovementKind.CONSUMPTION,
                action=AuditAction.STOCK_CONSUME,
                reason=_transfer_ref(transfer),
                occurred_at=now,
            )
            batch = {
                "batch_number": len(item.shipment_batches) + 1,
                "qty": qty,
                "shipped_at": now.isoformat(),
                "shipped_by_user_id": str(principal.user_id),
                "lots_consumed": [
                    {"lot_id": str(a.lot_id), "qty": a.qty, "unit_cost_pence": a.unit_cost_pence}
                    for a in result.allocations
                ],
            }
            # JSON column: reassign so the change is flushed
            item.shipment_batches = [*item.shipment_batches, batch]
            item.qty_shipped += qty
            item.avg_unit_cost_pence = weighted_average_cost(
                LotAllocation(UUID(lot["lot_id"]), lot["qty"], lot["unit_cost_pence"])
                for b in item.shipment_batches
                for lot in b["lots_consumed"]
            )

        fully_shipped = all(
            item.qty_shipped >= item.qty_approved
            for item in transfer.items
            if item.qty_approved > 0
        )
        transfer.shipped_by = principal.user_id
        transfer.shipped_at = now
        if fully_shipped:
            validate_transition(transfer.id, transfer.status, TransferStatus.SHIPPED)
            transfer.status = TransferStatus.SHIPPED
        self.session.flush()

        action = AuditAction.TRANSFER_SHIP if fully_shipped else AuditAction.TRANSFER_SHIP_PARTIAL
        self._record(principal, transfer, action, before)
        logger.info(
            "transfer_shipped",
            extra={
                "transfer_id": str(transfer.id),
                "fully_shipped": fully_shipped,
                "units": sum(qty for _, qty in lines),
            },
        )
        return transfer

    def receive_transfer(
        self,
        principal: Principal,
        transfer_id: UUID,
        items: list[ItemQty] | None = None,
    ) -> StockTransfer:
        transfer = self._get(principal, transfer_id)
        self._require_member(principal, transfer.destination_branch_id)
        if transfer.status not in (TransferStatus.SHIPPED, TransferStatus.PARTIALLY_RECEIVED):
            raise TransferStateError(
                str(transfer.id), transfer.status.value,
                "Only shipped transfers can be received",
            )

        if items is None:
            lines = [(item, item.qty_to_receive) for item in transfer.items if item.qty_to_receive > 0]
        else:
            lines = self._resolve_lines(transfer, items)
        if not lines:
            raise ValidationError("Nothing left to receive on this transfer")
        for item, qty in lines:
            if qty <= 0 or qty > item.qty_to_receive:
                raise InvalidQuantityError("qty", qty, f"between 1 and {item.qty_to_receive}")

        before = transfer_snapshot(transfer)
        now = self._clock.now()
        for item, qty in lines:
            self._stock.record_receipt(
                principal,
                transfer.destination_branch_id,
                item.product_id,
                qty,
                unit_cost_pence=item.avg_unit_cost_pence,
                source_ref=_transfer_ref(transfer),
                reason=_transfer_ref(transfer),
                occurred_at=now,
            )
            item.qty_received += qty

        complete = all(item.qty_received >= item.qty_shipped for item in transfer.items)
        target = TransferStatus.COMPLETED if complete else TransferStatus.PARTIALLY_RECEIVED
        if target != transfer.status:
            validate_transition(transfer.id, transfer.status, target)
            transfer.status = target
        if complete:
            transfer.completed_at = now
        self.session.flush()

        self._record(principal, transfer, AuditAction.TRANSFER_RECEIVE, before)
        logger.info(
            "transfer_received",
            extra={"transfer_id": str(transfer.id), "status": transfer.status.value},
        )
        return transfer

    # ------------------------------------------------------------------
    # Cancel / priority
    # ------------------------------------------------------------------

    def cancel_transfer(self, principal: Principal, transfer_id: UUID) -> StockTransfer:
        transfer = self._get(principal, transfer_id)
        if transfer.requested_by != principal.user_id:
            self._require_either_member(principal, transfer)
        validate_transition(transfer.id, transfer.status, TransferStatus.CANCELLED)
        if any(item.qty_shipped > 0 for item in transfer.items):
            raise TransferStateError(
                str(transfer.id), transfer.status.value,
                "Cannot cancel a transfer that has started shipping",
            )

        before = transfer_snapshot(transfer)
        self._approvals.skip_pending(transfer.id)
        transfer.status = TransferStatus.CANCELLED
        self.session.flush()

        self._record(principal, transfer, AuditAction.TRANSFER_CANCEL, before)
        logger.info("transfer_cancelled", extra={"transfer_id": str(transfer.id)})
        return transfer

    def update_priority(
        self, principal: Principal, transfer_id: UUID, priority: TransferPriority
    ) -> StockTransfer:
        transfer = self._get(principal, transfer_id)
        self._require_either_member(principal, transfer)
        if transfer.status not in PRIORITY_EDITABLE_STATUSES:
            raise TransferStateError(
                str(transfer.id), transfer.status.value,
                "Priority can only change before the transfer ships",
            )

        before = transfer_snapshot(transfer)
        transfer.priority = priority
        self.session.flush()

        self._record(principal, transfer, AuditAction.TRANSFER_PRIORITY_CHANGE, before)
        return transfer

    # ------------------------------------------------------------------
    # Reverse
    # ------------------------------------------------------------------

    def reverse_transfer(
        self,
        principal: Principal,
        transfer_id: UUID,
        reversal_reason: str | None = None,
    ) -> StockTransfer:
        """
        Undo a completed transfer and return the new reversal transfer.

        Stock received at the destination is consumed FIFO there; the lots the
        original shipment drew from at the source get their quantity back, so
        they keep their original FIFO age.
        """
        transfer = self._get(principal, transfer_id)
        if transfer.reversed_by_transfer_id is not None:
            raise TransferAlreadyReversedError(
                str(transfer.id), str(transfer.reversed_by_transfer_id)
            )
        self._require_member(principal, transfer.destination_branch_id)
        validate_transition(transfer.id, transfer.status, TransferStatus.REVERSED)

        before = transfer_snapshot(transfer)
        now = self._clock.now()
        reason = f"Reversal of {transfer.transfer_number}"
        reversal_items = []
        source_restores: list[tuple[UUID, int]] = []

        for item in transfer.items:
            if item.qty_received <= 0:
                continue
            result = self._stock.record_decrement(
                principal,
                transfer.destination_branch_id,
                item.product_id,
                item.qty_received,
                kind=StockMovementKind.REVERSAL,
                action=AuditAction.STOCK_REVERSE,
                reason=reason,
                occurred_at=now,
            )
            lots_consumed = [
                {"lot_id": str(a.lot_id), "qty": a.qty, "unit_cost_pence": a.unit_cost_pence}
                for a in result.allocations
            ]
            reversal_items.append(
                StockTransferItem(
                    product_id=item.product_id,
                    qty_requested=item.qty_received,
                    qty_approved=item.qty_received,
                    qty_shipped=item.qty_received,
                    qty_received=item.qty_received,
                    avg_unit_cost_pence=weighted_average_cost(
                        LotAllocation(a.lot_id, a.qty, a.unit_cost_pence) for a in result.allocations
                    ),
                    shipment_batches=[
                        {
                            "batch_number": 1,
                            "qty": item.qty_received,
                            "shipped_at": now.isoformat(),
                            "shipped_by_user_id": str(principal.user_id),
                            "lots_consumed": lots_consumed,
                        }
                    ],
                )
            )

            restored: dict[str, int] = defaultdict(int)
            for batch in item.shipment_batches:
                for lot in batch["lots_consumed"]:
                    restored[lot["lot_id"]] += lot["qty"]
            source_restores.extend((UUID(lot_id), qty) for lot_id, qty in restored.items())

        if not reversal_items:
            raise TransferStateError(
                str(transfer.id), transfer.status.value, "Nothing was received on this transfer"
            )
        self._stock.record_restore(principal, transfer.source_branch_id, source_restores, reason)

        reversal = StockTransfer(
            tenant_id=principal.tenant_id,
            transfer_number=self._next_number(principal.tenant_id),
            source_branch_id=transfer.destination_branch_id,
            destination_branch_id=transfer.source_branch_id,
            status=TransferStatus.COMPLETED,
            priority=transfer.priority,
            initiation_type=TransferInitiationType.PUSH,
            initiated_by_branch_id=transfer.destination_branch_id,
            order_notes=reversal_order_notes(transfer.transfer_number, reversal_reason),
            requested_by=principal.user_id,
            requested_at=now,
            reviewed_by=principal.user_id,
            reviewed_at=now,
            shipped_by=principal.user_id,
            shipped_at=now,
            completed_at=now,
            is_reversal=True,
            reversal_of_id=transfer.id,
            reversal_reason=reversal_reason,
            items=reversal_items,
        )
        self.session.add(reversal)
        self.session.flush()

        transfer.reversed_by_transfer_id = reversal.id
        transfer.status = TransferStatus.REVERSED
        self.session.flush()

        self._record(principal, reversal, AuditAction.TRANSFER_REVERSE)
        self._record(principal, transfer, AuditAction.TRANSFER_REVERSE, before)
        logger.info(
            "transfer_reversed",
            extra={
                "transfer_id": str(transfer.id),
                "reversal_id": str(reversal.id),
                "reversal_number": reversal.transfer_number,
            },
        )
        return reversal
