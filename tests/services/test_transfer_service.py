"""
TransferService: the full transfer lifecycle.

North ships to South unless a test says otherwise; the owner belongs to
both branches.  Tests that need a branch-restricted actor create one with
``make_user``.
"""

import pytest

from stock_kernel.exceptions import (
    BranchAccessDeniedError,
    EmptyTransferError,
    EntityNotFoundError,
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransferTransitionError,
    SameBranchTransferError,
    TransferAlreadyReversedError,
    TransferStateError,
    ValidationError,
)
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.transfer import (
    TransferInitiationType,
    TransferPriority,
    TransferStatus,
)
from stock_kernel.services.template_service import TemplateItemInput
from stock_kernel.services.transfer_service import ItemQty, TransferItemInput


@pytest.fixture
def stocked(north, widget, gadget, receive):
    """North holds 10 widgets (two lots) and 5 gadgets."""
    receive(north, widget, 4, unit_cost_pence=100)
    receive(north, widget, 6, unit_cost_pence=200)
    receive(north, gadget, 5, unit_cost_pence=1000)


@pytest.fixture
def requested(owner, north, south, widget, transfer_service):
    """A REQUESTED push of 5 widgets from North to South."""
    return transfer_service.create_transfer(
        owner, north.id, south.id, [TransferItemInput(widget.id, 5)]
    )


def _levels(stock_selector, owner, branch, product):
    return stock_selector.get_stock_levels(owner, branch.id, product.id).qty_on_hand


class TestCreateTransfer:
    def test_numbered_and_requested(self, requested, deterministic_clock):
        year = deterministic_clock.now().year
        assert requested.transfer_number == f"TRF-{year}-0001"
        assert requested.status == TransferStatus.REQUESTED
        assert requested.priority == TransferPriority.NORMAL
        assert requested.requires_multi_level_approval is False

    def test_numbers_increase(self, owner, north, south, widget, requested, transfer_service):
        second = transfer_service.create_transfer(
            owner, north.id, south.id, [TransferItemInput(widget.id, 1)]
        )
        assert second.transfer_number.endswith("-0002")

    def test_draft_when_not_submitted(self, owner, north, south, widget, transfer_service):
        draft = transfer_service.create_transfer(
            owner, north.id, south.id, [TransferItemInput(widget.id, 1)], submit=False
        )
        assert draft.status == TransferStatus.DRAFT

        submitted = transfer_service.submit_transfer(owner, draft.id)
        assert submitted.status == TransferStatus.REQUESTED

    def test_duplicate_products_merged(self, owner, north, south, widget, transfer_service):
        transfer = transfer_service.create_transfer(
            owner, north.id, south.id,
            [TransferItemInput(widget.id, 2), TransferItemInput(widget.id, 3)],
        )
        assert [(i.product_id, i.qty_requested) for i in transfer.items] == [(widget.id, 5)]

    def test_same_branch_rejected(self, owner, north, widget, transfer_service):
        with pytest.raises(SameBranchTransferError):
            transfer_service.create_transfer(owner, north.id, north.id, [TransferItemInput(widget.id, 1)])

    def test_empty_rejected(self, owner, north, south, transfer_service):
        with pytest.raises(EmptyTransferError):
            transfer_service.create_transfer(owner, north.id, south.id, [])

    def test_non_positive_qty_rejected(self, owner, north, south, widget, transfer_service):
        with pytest.raises(InvalidQuantityError):
            transfer_service.create_transfer(owner, north.id, south.id, [TransferItemInput(widget.id, 0)])

    def test_long_order_notes_rejected(self, owner, north, south, widget, transfer_service):
        with pytest.raises(ValidationError):
            transfer_service.create_transfer(
                owner, north.id, south.id, [TransferItemInput(widget.id, 1)], order_notes="x" * 2001
            )

    def test_push_requires_source_membership(self, north, south, widget, make_user, transfer_service):
        south_clerk = make_user("south@acme.test", "ADMIN", branch_ids=[south.id])
        with pytest.raises(BranchAccessDeniedError):
            transfer_service.create_transfer(
                south_clerk, north.id, south.id, [TransferItemInput(widget.id, 1)]
            )

    def test_pull_initiated_by_destination(self, north, south, widget, make_user, transfer_service):
        south_clerk = make_user("south@acme.test", "ADMIN", branch_ids=[south.id])
        transfer = transfer_service.create_transfer(
            south_clerk, north.id, south.id, [TransferItemInput(widget.id, 1)],
            initiation_type=TransferInitiationType.PULL,
        )
        assert transfer.initiated_by_branch_id == south.id

    def test_archived_product_rejected(self, owner, north, south, widget, product_service, transfer_service):
        product_service.archive(owner, widget.id)
        with pytest.raises(EntityNotFoundError):
            transfer_service.create_transfer(owner, north.id, south.id, [TransferItemInput(widget.id, 1)])

    def test_audited(self, requested, auditor_service):
        trace = auditor_service.trace(AuditEntityType.STOCK_TRANSFER, requested.id)
        assert trace.actions == (AuditAction.TRANSFER_REQUEST,)


class TestReviewTransfer:
    def test_approve_defaults_to_requested_qty(self, owner, requested, transfer_service):
        transfer = transfer_service.review_transfer(owner, requested.id, "approve", review_notes="ok")

        assert transfer.status == TransferStatus.APPROVED
        assert transfer.items[0].qty_approved == 5
        assert transfer.reviewed_by == owner.user_id
        assert transfer.review_notes == "ok"

    def test_approve_reduced_qty(self, owner, requested, transfer_service):
        item_id = requested.items[0].id
        transfer = transfer_service.review_transfer(owner, requested.id, "approve", approved_items={item_id: 3})
        assert transfer.items[0].qty_approved == 3

    def test_approved_qty_above_requested_rejected(self, owner, requested, transfer_service):
        with pytest.raises(InvalidQuantityError):
            transfer_service.review_transfer(
                owner, requested.id, "approve", approved_items={requested.items[0].id: 6}
            )

    def test_reject(self, owner, requested, transfer_service):
        transfer = transfer_service.review_transfer(owner, requested.id, "reject", review_notes="no room")
        assert transfer.status == TransferStatus.REJECTED

    def test_unknown_action(self, owner, requested, transfer_service):
        with pytest.raises(ValidationError):
            transfer_service.review_transfer(owner, requested.id, "maybe")

    def test_reviewer_must_belong_to_destination(self, north, requested, make_user, transfer_service):
        north_clerk = make_user("north@acme.test", "ADMIN", branch_ids=[north.id])
        with pytest.raises(BranchAccessDeniedError):
            transfer_service.review_transfer(north_clerk, requested.id, "approve")

    def test_cannot_review_twice(self, owner, requested, transfer_service):
        transfer_service.review_transfer(owner, requested.id, "reject")
        with pytest.raises(InvalidTransferTransitionError):
            transfer_service.review_transfer(owner, requested.id, "approve")


class TestShipAndReceive:
    def test_full_cycle_moves_stock_at_cost(self, session, owner, north, south, widget, stocked,
                                            requested, transfer_service, stock_selector):
        transfer_service.review_transfer(owner, requested.id, "approve")

        shipped = transfer_service.ship_transfer(owner, requested.id)
        item = shipped.items[0]
        assert shipped.status == TransferStatus.SHIPPED
        assert item.qty_shipped == 5
        # 4 @ 100 + 1 @ 200 = 600 / 5 = 120
        assert item.avg_unit_cost_pence == 120
        assert len(item.shipment_batches) == 1
        assert [lot["qty"] for lot in item.shipment_batches[0]["lots_consumed"]] == [4, 1]
        assert _levels(stock_selector, owner, north, widget) == 5

        received = transfer_service.receive_transfer(owner, requested.id)
        assert received.status == TransferStatus.COMPLETED
        assert received.completed_at is not None
        levels = stock_selector.get_stock_levels(owner, south.id, widget.id)
        assert levels.qty_on_hand == 5
        assert [lot.unit_cost_pence for lot in levels.lots] == [120]

    def test_partial_ship_keeps_approved(self, owner, stocked, requested, transfer_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        item_id = requested.items[0].id

        transfer = transfer_service.ship_transfer(owner, requested.id, [ItemQty(item_id, 2)])
        assert transfer.status == TransferStatus.APPROVED
        assert transfer.items[0].qty_to_ship == 3

        transfer = transfer_service.ship_transfer(owner, requested.id)
        assert transfer.status == TransferStatus.SHIPPED
        assert [b["batch_number"] for b in transfer.items[0].shipment_batches] == [1, 2]

    def test_partial_ship_audited(self, owner, stocked, requested, transfer_service, auditor_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        transfer_service.ship_transfer(owner, requested.id, [ItemQty(requested.items[0].id, 1)])

        trace = auditor_service.trace(AuditEntityType.STOCK_TRANSFER, requested.id)
        assert trace.last_action == AuditAction.TRANSFER_SHIP_PARTIAL

    def test_partial_receive(self, owner, stocked, requested, transfer_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        transfer_service.ship_transfer(owner, requested.id)
        item_id = requested.items[0].id

        transfer = transfer_service.receive_transfer(owner, requested.id, [ItemQty(item_id, 2)])
        assert transfer.status == TransferStatus.PARTIALLY_RECEIVED

        transfer = transfer_service.receive_transfer(owner, requested.id, [ItemQty(item_id, 3)])
        assert transfer.status == TransferStatus.COMPLETED

    def test_ship_requires_approval(self, owner, stocked, requested, transfer_service):
        with pytest.raises(TransferStateError):
            transfer_service.ship_transfer(owner, requested.id)

    def test_ship_more_than_approved_rejected(self, owner, stocked, requested, transfer_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        with pytest.raises(InvalidQuantityError):
            transfer_service.ship_transfer(owner, requested.id, [ItemQty(requested.items[0].id, 6)])

    def test_ship_without_stock(self, owner, requested, transfer_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        with pytest.raises(InsufficientStockError):
            transfer_service.ship_transfer(owner, requested.id)

    def test_receive_before_ship_rejected(self, owner, stocked, requested, transfer_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        with pytest.raises(TransferStateError):
            transfer_service.receive_transfer(owner, requested.id)

    def test_receiver_must_belong_to_destination(self, north, stocked, owner, requested, make_user,
                                                 transfer_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        transfer_service.ship_transfer(owner, requested.id)
        north_clerk = make_user("north@acme.test", "ADMIN", branch_ids=[north.id])

        with pytest.raises(BranchAccessDeniedError):
            transfer_service.receive_transfer(north_clerk, requested.id)

    def test_foreign_item_rejected(self, owner, north, south, gadget, stocked, requested, transfer_service):
        other = transfer_service.create_transfer(owner, north.id, south.id, [TransferItemInput(gadget.id, 1)])
        transfer_service.review_transfer(owner, requested.id, "approve")

        with pytest.raises(ValidationError):
            transfer_service.ship_transfer(owner, requested.id, [ItemQty(other.items[0].id, 1)])


class TestCancelAndPriority:
    def test_cancel_requested(self, owner, requested, transfer_service):
        assert transfer_service.cancel_transfer(owner, requested.id).status == TransferStatus.CANCELLED

    def test_requester_may_cancel_without_membership(self, owner, north, south, widget, make_user,
                                                     branch_service, transfer_service):
        clerk = make_user("clerk@acme.test", "ADMIN", branch_ids=[north.id])
        transfer = transfer_service.create_transfer(clerk, north.id, south.id, [TransferItemInput(widget.id, 1)])
        branch_service.remove_member(owner, north.id, clerk.user_id)

        assert transfer_service.cancel_transfer(clerk, transfer.id).status == TransferStatus.CANCELLED

    def test_outsider_cannot_cancel(self, requested, make_user, transfer_service):
        outsider = make_user("outsider@acme.test", "ADMIN")
        with pytest.raises(BranchAccessDeniedError):
            transfer_service.cancel_transfer(outsider, requested.id)

    def test_cannot_cancel_after_partial_ship(self, owner, stocked, requested, transfer_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        transfer_service.ship_transfer(owner, requested.id, [ItemQty(requested.items[0].id, 1)])

        with pytest.raises(TransferStateError):
            transfer_service.cancel_transfer(owner, requested.id)

    def test_cannot_cancel_shipped(self, owner, stocked, requested, transfer_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        transfer_service.ship_transfer(owner, requested.id)

        with pytest.raises(InvalidTransferTransitionError):
            transfer_service.cancel_transfer(owner, requested.id)

    def test_priority_change(self, owner, requested, transfer_service, auditor_service):
        transfer = transfer_service.update_priority(owner, requested.id, TransferPriority.URGENT)

        assert transfer.priority == TransferPriority.URGENT
        trace = auditor_service.trace(AuditEntityType.STOCK_TRANSFER, requested.id)
        assert trace.last_action == AuditAction.TRANSFER_PRIORITY_CHANGE

    def test_priority_frozen_after_ship(self, owner, stocked, requested, transfer_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        transfer_service.ship_transfer(owner, requested.id)
        with pytest.raises(TransferStateError):
            transfer_service.update_priority(owner, requested.id, TransferPriority.LOW)


class TestReverseTransfer:
    @pytest.fixture
    def completed(self, owner, stocked, requested, transfer_service):
        transfer_service.review_transfer(owner, requested.id, "approve")
        transfer_service.ship_transfer(owner, requested.id)
        return transfer_service.receive_transfer(owner, requested.id)

    def test_reverse_restores_source_lots(self, session, owner, north, south, widget, completed,
                                          transfer_service, stock_selector):
        reversal = transfer_service.reverse_transfer(owner, completed.id, reversal_reason="wrong branch")

        assert reversal.is_reversal is True
        assert reversal.reversal_of_id == completed.id
        assert reversal.status == TransferStatus.COMPLETED
        assert (reversal.source_branch_id, reversal.destination_branch_id) == (south.id, north.id)
        assert reversal.order_notes == f"Reversal of {completed.transfer_number}: wrong branch"

        session.refresh(completed)
        assert completed.status == TransferStatus.REVERSED
        assert completed.reversed_by_transfer_id == reversal.id

        assert _levels(stock_selector, owner, south, widget) == 0
        north_levels = stock_selector.get_stock_levels(owner, north.id, widget.id)
        assert north_levels.qty_on_hand == 10
        # original lots got their units back rather than a new lot being created
        assert [(lot.qty_received, lot.qty_remaining) for lot in north_levels.lots] == [(4, 4), (6, 6)]

    def test_second_reversal_rejected(self, owner, completed, transfer_service):
        transfer_service.reverse_transfer(owner, completed.id)
        with pytest.raises(TransferAlreadyReversedError):
            transfer_service.reverse_transfer(owner, completed.id)

    def test_reversal_can_itself_be_reversed(self, session, owner, north, south, widget, completed,
                                             transfer_service, stock_selector):
        reversal = transfer_service.reverse_transfer(owner, completed.id)
        redo = transfer_service.reverse_transfer(owner, reversal.id)

        session.refresh(reversal)
        assert reversal.status == TransferStatus.REVERSED
        assert reversal.reversed_by_transfer_id == redo.id
        assert redo.status == TransferStatus.COMPLETED
        assert redo.is_reversal is True
        assert redo.reversal_of_id == reversal.id
        assert (redo.source_branch_id, redo.destination_branch_id) == (north.id, south.id)

        assert _levels(stock_selector, owner, north, widget) == 5
        assert _levels(stock_selector, owner, south, widget) == 5

    def test_only_completed_can_be_reversed(self, owner, requested, transfer_service):
        with pytest.raises(InvalidTransferTransitionError):
            transfer_service.reverse_transfer(owner, requested.id)

    def test_requires_destination_membership(self, north, completed, make_user, transfer_service):
        north_clerk = make_user("north@acme.test", "ADMIN", branch_ids=[north.id])
        with pytest.raises(BranchAccessDeniedError):
            transfer_service.reverse_transfer(north_clerk, completed.id)

    def test_fails_when_destination_consumed_stock(self, owner, south, widget, completed,
                                                    stock_service, transfer_service):
        stock_service.consume_stock(owner, south.id, widget.id, 1)
        with pytest.raises(InsufficientStockError):
            transfer_service.reverse_transfer(owner, completed.id)


class TestCreateFromTemplate:
    def test_uses_template_defaults(self, owner, north, south, widget, gadget, template_service,
                                    transfer_service):
        template = template_service.create(
            owner, "Weekly top-up", north.id, south.id,
            [TemplateItemInput(widget.id, 3), TemplateItemInput(gadget.id, 1)],
        )
        transfer = transfer_service.create_from_template(owner, template.id)

        assert (transfer.source_branch_id, transfer.destination_branch_id) == (north.id, south.id)
        assert sorted(i.qty_requested for i in transfer.items) == [1, 3]

    def test_archived_template_rejected(self, owner, north, south, widget, template_service,
                                        transfer_service):
        template = template_service.create(owner, "Old", north.id, south.id, [TemplateItemInput(widget.id, 1)])
        template_service.archive(owner, template.id)

        with pytest.raises(EntityNotFoundError):
            transfer_service.create_from_template(owner, template.id)
