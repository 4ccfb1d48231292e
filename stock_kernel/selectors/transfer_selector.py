"""
Module: stock_kernel.selectors.transfer_selector
Responsibility: Read models for stock transfers: one transfer with items and
    approval records, and the filtered, paginated transfer list.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - A user only sees transfers touching a branch they belong to.
    - Priority sort is by rank (URGENT > HIGH > NORMAL > LOW), then
      requested_at desc.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import case, func, or_, select

from stock_kernel.domain.pagination import Page, SortDirection
from stock_kernel.domain.principal import Principal
from stock_kernel.domain.transfer import PRIORITY_RANK
from stock_kernel.exceptions import BranchAccessDeniedError, EntityNotFoundError, ValidationError
from stock_kernel.models.approval import ApprovalMode, ApprovalRecord, ApprovalRecordStatus
from stock_kernel.models.transfer import (
    StockTransfer,
    TransferInitiationType,
    TransferPriority,
    TransferStatus,
)
from stock_kernel.selectors.base import BaseSelector, SortKey, paginate, parse_datetime
from stock_kernel.services.access_service import AccessService

_PRIORITY_ORDER = case(
    *[(StockTransfer.priority == priority, rank) for priority, rank in PRIORITY_RANK.items()],
    else_=0,
)

TRANSFER_SORT_FIELDS = ("requested_at", "updated_at", "transfer_number", "status", "priority")


@dataclass(frozen=True)
class TransferRef:
    id: UUID
    transfer_number: str


@dataclass(frozen=True)
class TransferItemView:
    id: UUID
    product_id: UUID
    qty_requested: int
    qty_approved: int
    qty_shipped: int
    qty_received: int
    avg_unit_cost_pence: int | None
    shipment_batches: tuple


@dataclass(frozen=True)
class ApprovalRecordView:
    level: int
    level_name: str
    status: ApprovalRecordStatus
    approval_mode: ApprovalMode
    required_role_id: UUID | None
    required_user_id: UUID | None
    approved_by: UUID | None
    approved_at: datetime | None
    notes: str | None


@dataclass(frozen=True)
class TransferView:
    id: UUID
    transfer_number: str
    source_branch_id: UUID
    destination_branch_id: UUID
    status: TransferStatus
    priority: TransferPriority
    initiation_type: TransferInitiationType
    initiated_by_branch_id: UUID
    request_notes: str | None
    order_notes: str | None
    expected_delivery_date: date | None
    requested_by: UUID
    requested_at: datetime
    reviewed_by: UUID | None
    reviewed_at: datetime | None
    review_notes: str | None
    shipped_by: UUID | None
    shipped_at: datetime | None
    completed_at: datetime | None
    requires_multi_level_approval: bool
    is_reversal: bool
    reversal_reason: str | None
    reversal_of: TransferRef | None
    reversed_by: TransferRef | None
    created_at: datetime
    updated_at: datetime
    items: tuple[TransferItemView, ...] = ()
    approval_records: tuple[ApprovalRecordView, ...] = ()


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


class TransferSelector(BaseSelector):
    def __init__(self, session):
        super().__init__(session)
        self._access = AccessService(session)

    def _ref(self, transfer_id: UUID | None) -> TransferRef | None:
        if transfer_id is None:
            return None
        number = self.session.execute(
            select(StockTransfer.transfer_number).where(StockTransfer.id == transfer_id)
        ).scalar_one_or_none()
        return TransferRef(transfer_id, number) if number else None

    def _view(self, transfer: StockTransfer, detailed: bool = True) -> TransferView:
        items = ()
        records = ()
        reversal_of = reversed_by = None
        if detailed:
            items = tuple(
                TransferItemView(
                    id=i.id,
                    product_id=i.product_id,
                    qty_requested=i.qty_requested,
                    qty_approved=i.qty_approved,
                    qty_shipped=i.qty_shipped,
                    qty_received=i.qty_received,
                    avg_unit_cost_pence=i.avg_unit_cost_pence,
                    shipment_batches=tuple(i.shipment_batches or ()),
                )
                for i in transfer.items
            )
            records = tuple(
                ApprovalRecordView(
                    level=r.level,
                    level_name=r.level_name,
                    status=r.status,
                    approval_mode=r.approval_mode,
                    required_role_id=r.required_role_id,
                    required_user_id=r.required_user_id,
                    approved_by=r.approved_by,
                    approved_at=r.approved_at,
                    notes=r.notes,
                )
                for r in self.session.execute(
                    select(ApprovalRecord)
                    .where(ApprovalRecord.transfer_id == transfer.id)
                    .order_by(ApprovalRecord.level)
                ).scalars()
            )
            reversal_of = self._ref(transfer.reversal_of_id)
            reversed_by = self._ref(transfer.reversed_by_transfer_id)

        return TransferView(
            id=transfer.id,
            transfer_number=transfer.transfer_number,
            source_branch_id=transfer.source_branch_id,
            destination_branch_id=transfer.destination_branch_id,
            status=transfer.status,
            priority=transfer.priority,
            initiation_type=transfer.initiation_type,
            initiated_by_branch_id=transfer.initiated_by_branch_id,
            request_notes=transfer.request_notes,
            order_notes=transfer.order_notes,
            expected_delivery_date=transfer.expected_delivery_date,
            requested_by=transfer.requested_by,
            requested_at=transfer.requested_at,
            reviewed_by=transfer.reviewed_by,
            reviewed_at=transfer.reviewed_at,
            review_notes=transfer.review_notes,
            shipped_by=transfer.shipped_by,
            shipped_at=transfer.shipped_at,
            completed_at=transfer.completed_at,
            requires_multi_level_approval=transfer.requires_multi_level_approval,
            is_reversal=transfer.is_reversal,
            reversal_reason=transfer.reversal_reason,
            reversal_of=reversal_of,
            reversed_by=reversed_by,
            created_at=transfer.created_at,
            updated_at=transfer.updated_at,
            items=items,
            approval_records=records,
        )

    def get(self, principal: Principal, transfer_id: UUID) -> TransferView:
        transfer = self.session.execute(
            select(StockTransfer).where(
                StockTransfer.id == transfer_id,
                StockTransfer.tenant_id == principal.tenant_id,
            )
        ).scalar_one_or_none()
        if transfer is None:
            raise EntityNotFoundError("Transfer", str(transfer_id))
        self._access.assert_any_branch_access(
            principal.tenant_id,
            principal.user_id,
            [transfer.source_branch_id, transfer.destination_branch_id],
        )
        return self._view(transfer)

    def describe(self, transfer: StockTransfer) -> TransferView:
        """Detail view of a transfer row the caller has already been authorized for."""
        return self._view(transfer)

    def _sort_keys(self, sort_by: str, descending: bool) -> list[SortKey]:
        id_key = SortKey(StockTransfer.id, lambda t: t.id, descending=descending, parse=UUID)
        if sort_by == "priority":
            return [
                SortKey(_PRIORITY_ORDER, lambda t: PRIORITY_RANK[t.priority], descending=descending, parse=int),
                SortKey(StockTransfer.requested_at, lambda t: t.requested_at,
                        descending=True, parse=parse_datetime),
                SortKey(StockTransfer.id, lambda t: t.id, descending=True, parse=UUID),
            ]
        if sort_by == "status":
            return [
                SortKey(StockTransfer.status, lambda t: t.status, descending=descending, parse=TransferStatus),
                id_key,
            ]
        if sort_by == "transfer_number":
            return [
                SortKey(StockTransfer.transfer_number, lambda t: t.transfer_number, descending=descending),
                id_key,
            ]
        column = getattr(StockTransfer, sort_by)
        return [
            SortKey(column, lambda t: getattr(t, sort_by), descending=descending, parse=parse_datetime),
            id_key,
        ]

    def list(
        self,
        principal: Principal,
        branch_id: UUID | None = None,
        direction: str | None = None,
        statuses: list[TransferStatus] | None = None,
        initiation_type: TransferInitiationType | None = None,
        priority: TransferPriority | None = None,
        q: str | None = None,
        requested_from: date | None = None,
        requested_to: date | None = None,
        shipped_from: date | None = None,
        shipped_to: date | None = None,
        expected_delivery_from: date | None = None,
        expected_delivery_to: date | None = None,
        sort_by: str = "requested_at",
        sort_dir: SortDirection = SortDirection.DESC,
        limit: int | None = None,
        cursor: str | None = None,
        include_total: bool = False,
    ) -> Page:
        if sort_by not in TRANSFER_SORT_FIELDS:
            raise ValidationError(f"sort_by must be one of: {', '.join(TRANSFER_SORT_FIELDS)}")
        if direction not in (None, "inbound", "outbound"):
            raise ValidationError("direction must be 'inbound' or 'outbound'")

        if branch_id is not None:
            if not self._access.is_branch_member(principal.tenant_id, principal.user_id, branch_id):
                raise BranchAccessDeniedError(str(branch_id), str(principal.user_id))
            scope = {branch_id}
        else:
            scope = self._access.branch_ids_for(principal.tenant_id, principal.user_id)

        stmt = select(StockTransfer).where(StockTransfer.tenant_id == principal.tenant_id)
        if direction == "inbound":
            stmt = stmt.where(StockTransfer.destination_branch_id.in_(scope))
        elif direction == "outbound":
            stmt = stmt.where(StockTransfer.source_branch_id.in_(scope))
        else:
            stmt = stmt.where(
                or_(
                    StockTransfer.source_branch_id.in_(scope),
                    StockTransfer.destination_branch_id.in_(scope),
                )
            )
        if statuses:
            stmt = stmt.where(StockTransfer.status.in_(statuses))
        if initiation_type is not None:
            stmt = stmt.where(StockTransfer.initiation_type == initiation_type)
        if priority is not None:
            stmt = stmt.where(StockTransfer.priority == priority)
        if q:
            stmt = stmt.where(func.lower(StockTransfer.transfer_number).contains(q.strip().lower()))
        if requested_from is not None:
            stmt = stmt.where(StockTransfer.requested_at >= _day_start(requested_from))
        if requested_to is not None:
            stmt = stmt.where(StockTransfer.requested_at < _day_start(requested_to) + timedelta(days=1))
        if shipped_from is not None:
            stmt = stmt.where(StockTransfer.shipped_at >= _day_start(shipped_from))
        if shipped_to is not None:
            stmt = stmt.where(StockTransfer.shipped_at < _day_start(shipped_to) + timedelta(days=1))
        if expected_delivery_from is not None:
            stmt = stmt.where(StockTransfer.expected_delivery_date >= expected_delivery_from)
        if expected_delivery_to is not None:
            stmt = stmt.where(StockTransfer.expected_delivery_date <= expected_delivery_to)

        total = None
        if include_total:
            total = self.session.execute(
                select(func.count()).select_from(stmt.subquery())
            ).scalar_one()

        rows, has_next, next_cursor = paginate(
            self.session,
            stmt,
            self._sort_keys(sort_by, sort_dir == SortDirection.DESC),
            limit,
            cursor,
        )
        return Page(
            items=tuple(self._view(t, detailed=False) for t in rows),
            has_next_page=has_next,
            next_cursor=next_cursor,
            applied={
                "branch_id": branch_id,
                "direction": direction,
                "statuses": [s.value for s in statuses] if statuses else None,
                "initiation_type": initiation_type.value if initiation_type else None,
                "priority": priority.value if priority else None,
                "q": q,
                "sort_by": sort_by,
                "sort_dir": sort_dir.value,
            },
            total=total,
        )
