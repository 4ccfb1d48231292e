"""Transfer status transitions and branch-role rules."""

from uuid import uuid4

import pytest

from stock_kernel.domain.transfer import (
    TRANSFER_TRANSITIONS,
    can_transition,
    format_transfer_number,
    initiating_branch_id,
    reversal_order_notes,
    reviewing_branch_id,
    validate_transition,
)
from stock_kernel.exceptions import InvalidTransferTransitionError
from stock_kernel.models.transfer import TransferInitiationType, TransferStatus


class TestTransitions:
    """The lifecycle graph."""

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (TransferStatus.DRAFT, TransferStatus.REQUESTED),
            (TransferStatus.REQUESTED, TransferStatus.APPROVED),
            (TransferStatus.REQUESTED, TransferStatus.REJECTED),
            (TransferStatus.APPROVED, TransferStatus.SHIPPED),
            (TransferStatus.SHIPPED, TransferStatus.PARTIALLY_RECEIVED),
            (TransferStatus.PARTIALLY_RECEIVED, TransferStatus.COMPLETED),
            (TransferStatus.COMPLETED, TransferStatus.REVERSED),
            (TransferStatus.APPROVED, TransferStatus.CANCELLED),
        ],
    )
    def test_allowed(self, from_status, to_status):
        assert can_transition(from_status, to_status)
        validate_transition(uuid4(), from_status, to_status)

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            (TransferStatus.REQUESTED, TransferStatus.SHIPPED),
            (TransferStatus.SHIPPED, TransferStatus.CANCELLED),
            (TransferStatus.COMPLETED, TransferStatus.CANCELLED),
            (TransferStatus.DRAFT, TransferStatus.APPROVED),
        ],
    )
    def test_forbidden(self, from_status, to_status):
        assert not can_transition(from_status, to_status)
        with pytest.raises(InvalidTransferTransitionError) as exc_info:
            validate_transition(uuid4(), from_status, to_status)
        assert exc_info.value.http_status == 409

    @pytest.mark.parametrize(
        "status", [TransferStatus.REJECTED, TransferStatus.CANCELLED, TransferStatus.REVERSED]
    )
    def test_terminal_statuses_have_no_exits(self, status):
        assert TRANSFER_TRANSITIONS[status] == frozenset()

    def test_every_status_has_an_entry(self):
        assert set(TRANSFER_TRANSITIONS) == set(TransferStatus)


class TestBranchRoles:
    """PUSH is driven by the source, PULL by the destination."""

    def test_push(self):
        source, destination = uuid4(), uuid4()
        assert initiating_branch_id(TransferInitiationType.PUSH, source, destination) == source
        assert reviewing_branch_id(TransferInitiationType.PUSH, source, destination) == destination

    def test_pull(self):
        source, destination = uuid4(), uuid4()
        assert initiating_branch_id(TransferInitiationType.PULL, source, destination) == destination
        assert reviewing_branch_id(TransferInitiationType.PULL, source, destination) == source


class TestNumbering:
    def test_transfer_number_zero_padded(self):
        assert format_transfer_number(2025, 7) == "TRF-2025-0007"
        assert format_transfer_number(2025, 12345) == "TRF-2025-12345"

    def test_reversal_notes(self):
        assert reversal_order_notes("TRF-2025-0001", "damaged") == "Reversal of TRF-2025-0001: damaged"
        assert reversal_order_notes("TRF-2025-0001", None) is None
