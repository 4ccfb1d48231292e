"""
Approval rules and multi-level approval of transfers.

The standard rule fires on transfers of more than 3 units and asks an ADMIN
(level 1) and then an OWNER (level 2) to sign.
"""

from uuid import uuid4

import pytest

from stock_kernel.domain.pagination import ArchiveFilter
from stock_kernel.exceptions import (
    AlreadyArchivedError,
    ApprovalAlreadyResolvedError,
    ApprovalLevelForbiddenError,
    ApprovalOrderError,
    ApprovalRecordNotFoundError,
    ApprovalRuleValidationError,
    BranchAccessDeniedError,
    MultiLevelApprovalRequiredError,
    TransferStateError,
)
from stock_kernel.models.approval import (
    ApprovalConditionType,
    ApprovalMode,
    ApprovalRecordStatus,
)
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.transfer import TransferStatus
from stock_kernel.services.approval_rule_service import ConditionInput, LevelInput
from stock_kernel.services.transfer_service import TransferItemInput


def _levels(tenant):
    return [
        LevelInput(1, "Manager", required_role_id=tenant.role_ids["ADMIN"]),
        LevelInput(2, "Owner", required_role_id=tenant.role_ids["OWNER"]),
    ]


@pytest.fixture
def rule_factory(tenant, owner, approval_rule_service):
    def _make(mode=ApprovalMode.SEQUENTIAL, threshold=3, priority=0, name="Large transfers"):
        return approval_rule_service.create(
            owner,
            name,
            [ConditionInput(ApprovalConditionType.TOTAL_QTY_THRESHOLD, threshold=threshold)],
            _levels(tenant),
            approval_mode=mode,
            priority=priority,
        )

    return _make


@pytest.fixture
def manager(make_user, north, south):
    return make_user("manager@acme.test", "ADMIN", branch_ids=[north.id, south.id])


@pytest.fixture
def large_transfer(owner, north, south, widget, transfer_service):
    def _make(qty=5):
        return transfer_service.create_transfer(
            owner, north.id, south.id, [TransferItemInput(widget.id, qty)]
        )

    return _make


class TestEvaluate:
    def test_matching_rule_attaches_pending_levels(self, rule_factory, large_transfer, approval_service):
        rule_factory()
        transfer = large_transfer()

        assert transfer.requires_multi_level_approval is True
        records = approval_service.records_for(transfer.id)
        assert [(r.level, r.level_name, r.status) for r in records] == [
            (1, "Manager", ApprovalRecordStatus.PENDING),
            (2, "Owner", ApprovalRecordStatus.PENDING),
        ]

    def test_threshold_is_strict(self, rule_factory, large_transfer):
        rule_factory(threshold=5)
        assert large_transfer(qty=5).requires_multi_level_approval is False

    def test_inactive_rule_ignored(self, tenant, owner, approval_rule_service, large_transfer):
        approval_rule_service.create(
            owner, "Dormant",
            [ConditionInput(ApprovalConditionType.TOTAL_QTY_THRESHOLD, threshold=0)],
            _levels(tenant),
            is_active=False,
        )
        assert large_transfer().requires_multi_level_approval is False

    def test_highest_priority_rule_wins(self, rule_factory, large_transfer, approval_service):
        rule_factory(name="Low", priority=1)
        high = rule_factory(name="High", priority=10)

        transfer = large_transfer()
        assert {r.rule_id for r in approval_service.records_for(transfer.id)} == {high.id}

    def test_single_step_review_blocked(self, owner, rule_factory, large_transfer, transfer_service):
        rule_factory()
        transfer = large_transfer()
        with pytest.raises(MultiLevelApprovalRequiredError):
            transfer_service.review_transfer(owner, transfer.id, "approve")


class TestSubmitApproval:
    def test_sequential_levels_complete_transfer(self, owner, manager, rule_factory, large_transfer,
                                                 approval_service, auditor_service):
        rule_factory()
        transfer = large_transfer()

        after_first = approval_service.submit_approval(manager, transfer.id, 1, notes="fine")
        assert after_first.status == TransferStatus.REQUESTED

        approved = approval_service.submit_approval(owner, transfer.id, 2)
        assert approved.status == TransferStatus.APPROVED
        assert approved.items[0].qty_approved == 5
        assert approved.reviewed_by == owner.user_id

        actions = auditor_service.trace(AuditEntityType.STOCK_TRANSFER, transfer.id).actions
        assert actions[-2:] == (AuditAction.TRANSFER_APPROVE_LEVEL, AuditAction.TRANSFER_APPROVE)

    def test_sequential_order_enforced(self, owner, rule_factory, large_transfer, approval_service):
        rule_factory()
        transfer = large_transfer()
        with pytest.raises(ApprovalOrderError):
            approval_service.submit_approval(owner, transfer.id, 2)

    def test_parallel_any_order(self, owner, manager, rule_factory, large_transfer, approval_service):
        rule_factory(mode=ApprovalMode.PARALLEL)
        transfer = large_transfer()

        approval_service.submit_approval(owner, transfer.id, 2)
        approved = approval_service.submit_approval(manager, transfer.id, 1)
        assert approved.status == TransferStatus.APPROVED

    def test_hybrid_first_level_then_any_order(self, tenant, owner, manager, approval_rule_service,
                                               large_transfer, approval_service):
        approval_rule_service.create(
            owner,
            "Hybrid",
            [ConditionInput(ApprovalConditionType.TOTAL_QTY_THRESHOLD, threshold=3)],
            _levels(tenant) + [LevelInput(3, "Finance", required_role_id=tenant.role_ids["OWNER"])],
            approval_mode=ApprovalMode.HYBRID,
        )
        transfer = large_transfer()

        with pytest.raises(ApprovalOrderError):
            approval_service.submit_approval(owner, transfer.id, 3)

        approval_service.submit_approval(manager, transfer.id, 1)
        after_third = approval_service.submit_approval(owner, transfer.id, 3)
        assert after_third.status == TransferStatus.REQUESTED

        approved = approval_service.submit_approval(owner, transfer.id, 2)
        assert approved.status == TransferStatus.APPROVED
        assert [r.status for r in approval_service.records_for(transfer.id)] == [
            ApprovalRecordStatus.APPROVED
        ] * 3

    def test_wrong_role_forbidden(self, owner, rule_factory, large_transfer, approval_service):
        rule_factory(mode=ApprovalMode.PARALLEL)
        transfer = large_transfer()
        with pytest.raises(ApprovalLevelForbiddenError):
            approval_service.submit_approval(owner, transfer.id, 1)

    def test_level_decided_once(self, manager, rule_factory, large_transfer, approval_service):
        rule_factory()
        transfer = large_transfer()
        approval_service.submit_approval(manager, transfer.id, 1)
        with pytest.raises(ApprovalAlreadyResolvedError):
            approval_service.submit_approval(manager, transfer.id, 1)

    def test_unknown_level(self, manager, rule_factory, large_transfer, approval_service):
        rule_factory()
        transfer = large_transfer()
        with pytest.raises(ApprovalRecordNotFoundError):
            approval_service.submit_approval(manager, transfer.id, 3)

    def test_transfer_without_levels(self, owner, large_transfer, approval_service):
        transfer = large_transfer()
        with pytest.raises(TransferStateError):
            approval_service.submit_approval(owner, transfer.id, 1)


class TestRejectApproval:
    def test_reject_skips_remaining_levels(self, manager, rule_factory, large_transfer, approval_service):
        rule_factory(mode=ApprovalMode.PARALLEL)
        transfer = large_transfer()

        rejected = approval_service.reject_approval(manager, transfer.id, 1, notes="too many")

        assert rejected.status == TransferStatus.REJECTED
        assert rejected.review_notes == "too many"
        statuses = [r.status for r in approval_service.records_for(transfer.id)]
        assert statuses == [ApprovalRecordStatus.REJECTED, ApprovalRecordStatus.SKIPPED]

    def test_cancel_skips_pending(self, owner, rule_factory, large_transfer, approval_service,
                                  transfer_service):
        rule_factory()
        transfer = large_transfer()
        transfer_service.cancel_transfer(owner, transfer.id)

        statuses = {r.status for r in approval_service.records_for(transfer.id)}
        assert statuses == {ApprovalRecordStatus.SKIPPED}


class TestApprovalProgress:
    def test_progress(self, owner, manager, rule_factory, large_transfer, approval_service):
        rule_factory()
        transfer = large_transfer()
        approval_service.submit_approval(manager, transfer.id, 1)

        progress = approval_service.get_approval_progress(owner, transfer.id)
        assert progress.requires_approval is True
        assert [r.status for r in progress.records] == [
            ApprovalRecordStatus.APPROVED,
            ApprovalRecordStatus.PENDING,
        ]
        assert progress.records[0].approved_by == manager.user_id

    def test_outsider_denied(self, rule_factory, large_transfer, make_user, approval_service):
        transfer = large_transfer()
        outsider = make_user("outsider@acme.test", "ADMIN")
        with pytest.raises(BranchAccessDeniedError):
            approval_service.get_approval_progress(outsider, transfer.id)


class TestApprovalRuleService:
    def test_needs_condition_and_level(self, tenant, owner, approval_rule_service):
        with pytest.raises(ApprovalRuleValidationError):
            approval_rule_service.create(owner, "Empty", [], _levels(tenant))
        with pytest.raises(ApprovalRuleValidationError):
            approval_rule_service.create(
                owner, "No levels",
                [ConditionInput(ApprovalConditionType.TOTAL_QTY_THRESHOLD, threshold=1)], [],
            )

    def test_levels_must_be_contiguous(self, tenant, owner, approval_rule_service):
        with pytest.raises(ApprovalRuleValidationError):
            approval_rule_service.create(
                owner, "Gap",
                [ConditionInput(ApprovalConditionType.TOTAL_QTY_THRESHOLD, threshold=1)],
                [
                    LevelInput(1, "One", required_role_id=tenant.role_ids["ADMIN"]),
                    LevelInput(3, "Three", required_role_id=tenant.role_ids["OWNER"]),
                ],
            )

    def test_level_needs_approver(self, owner, approval_rule_service):
        with pytest.raises(ApprovalRuleValidationError):
            approval_rule_service.create(
                owner, "Nobody",
                [ConditionInput(ApprovalConditionType.TOTAL_QTY_THRESHOLD, threshold=1)],
                [LevelInput(1, "Anyone")],
            )

    def test_threshold_required(self, tenant, owner, approval_rule_service):
        with pytest.raises(ApprovalRuleValidationError):
            approval_rule_service.create(
                owner, "No threshold",
                [ConditionInput(ApprovalConditionType.TOTAL_VALUE_THRESHOLD)],
                _levels(tenant),
            )

    def test_unknown_branch_rejected(self, tenant, owner, approval_rule_service):
        with pytest.raises(ApprovalRuleValidationError):
            approval_rule_service.create(
                owner, "Ghost branch",
                [ConditionInput(ApprovalConditionType.SOURCE_BRANCH, branch_id=uuid4())],
                _levels(tenant),
            )

    def test_update_replaces_levels(self, tenant, owner, rule_factory, approval_rule_service):
        rule = rule_factory()
        updated = approval_rule_service.update(
            owner, rule.id,
            levels=[LevelInput(1, "Owner only", required_user_id=owner.user_id)],
        )
        assert [(lvl.level, lvl.name) for lvl in updated.levels] == [(1, "Owner only")]

    def test_archive_restore_and_list(self, owner, rule_factory, approval_rule_service):
        rule = rule_factory()
        approval_rule_service.archive(owner, rule.id)
        with pytest.raises(AlreadyArchivedError):
            approval_rule_service.archive(owner, rule.id)

        assert approval_rule_service.list(owner).items == ()
        archived = approval_rule_service.list(owner, archived=ArchiveFilter.ARCHIVED_ONLY)
        assert [r.id for r in archived.items] == [rule.id]

        approval_rule_service.restore(owner, rule.id)
        assert [r.id for r in approval_rule_service.list(owner).items] == [rule.id]

    def test_audited(self, owner, rule_factory, auditor_service):
        rule = rule_factory()
        trace = auditor_service.trace(AuditEntityType.APPROVAL_RULE, rule.id)
        assert trace.actions == (AuditAction.APPROVAL_RULE_CREATE,)
