"""
Module: stock_kernel.domain.transfer
Responsibility: The stock transfer state machine and the branch-role rules
    (who initiates, who reviews, who ships, who receives).
Architecture position: Kernel > Domain.  Zero I/O.  Imports enum types from
    models/transfer.py only.

Invariants enforced:
    - Status changes are limited to TRANSFER_TRANSITIONS; REJECTED, CANCELLED
      and REVERSED are terminal.
"""

from types import MappingProxyType
from uuid import UUID

from stock_kernel.exceptions import InvalidTransferTransitionError
from stock_kernel.models.transfer import (
    TransferInitiationType,
    TransferPriority,
    TransferStatus,
)

TRANSFER_TRANSITIONS: MappingProxyType = MappingProxyType(
    {
        TransferStatus.DRAFT: frozenset({TransferStatus.REQUESTED, TransferStatus.CANCELLED}),
        TransferStatus.REQUESTED: frozenset(
            {TransferStatus.APPROVED, TransferStatus.REJECTED, TransferStatus.CANCELLED}
        ),
        TransferStatus.APPROVED: frozenset({TransferStatus.SHIPPED, TransferStatus.CANCELLED}),
        TransferStatus.SHIPPED: frozenset(
            {TransferStatus.PARTIALLY_RECEIVED, TransferStatus.COMPLETED}
        ),
        TransferStatus.PARTIALLY_RECEIVED: frozenset({TransferStatus.COMPLETED}),
        TransferStatus.COMPLETED: frozenset({TransferStatus.REVERSED}),
        TransferStatus.REJECTED: frozenset(),
        TransferStatus.CANCELLED: frozenset(),
        TransferStatus.REVERSED: frozenset(),
    }
)

# Transfers still moving through the pipeline
ACTIVE_STATUSES: frozenset[TransferStatus] = frozenset(
    {
        TransferStatus.REQUESTED,
        TransferStatus.APPROVED,
        TransferStatus.SHIPPED,
        TransferStatus.PARTIALLY_RECEIVED,
    }
)

# Statuses in which the priority may still change
PRIORITY_EDITABLE_STATUSES: frozenset[TransferStatus] = frozenset(
    {TransferStatus.DRAFT, TransferStatus.REQUESTED, TransferStatus.APPROVED}
)

PRIORITY_RANK = MappingProxyType(
    {
        TransferPriority.URGENT: 4,
        TransferPriority.HIGH: 3,
        TransferPriority.NORMAL: 2,
        TransferPriority.LOW: 1,
    }
)


def can_transition(from_status: TransferStatus, to_status: TransferStatus) -> bool:
    return to_status in TRANSFER_TRANSITIONS.get(from_status, frozenset())


def validate_transition(transfer_id, from_status: TransferStatus, to_status: TransferStatus) -> None:
    """Raise InvalidTransferTransitionError unless the move is allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransferTransitionError(
            str(transfer_id), from_status.value, to_status.value
        )


def initiating_branch_id(
    initiation_type: TransferInitiationType, source_branch_id: UUID, destination_branch_id: UUID
) -> UUID:
    """PUSH is initiated by the source, PULL by the destination."""
    if initiation_type == TransferInitiationType.PULL:
        return destination_branch_id
    return source_branch_id


def reviewing_branch_id(
    initiation_type: TransferInitiationType, source_branch_id: UUID, destination_branch_id: UUID
) -> UUID:
    """The branch that did not initiate reviews."""
    if initiation_type == TransferInitiationType.PULL:
        return source_branch_id
    return destination_branch_id


def format_transfer_number(year: int, sequence: int) -> str:
    return f"TRF-{year}-{sequence:04d}"


def reversal_order_notes(transfer_number: str, reason: str | None) -> str | None:
    if not reason:
        return None
    return f"Reversal of {transfer_number}: {reason}"
