"""
Approval rule matching and level ordering.

Rules and conditions are plain namespaces; the domain functions only read
attributes.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from stock_kernel.domain.approval import (
    TransferFacts,
    all_approved,
    blocking_levels,
    condition_matches,
    select_rule,
)
from stock_kernel.models.approval import (
    ApprovalConditionType,
    ApprovalMode,
    ApprovalRecordStatus,
)

NORTH = uuid4()
SOUTH = uuid4()
T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)

APPROVED = ApprovalRecordStatus.APPROVED
PENDING = ApprovalRecordStatus.PENDING


def _facts(total_qty: int = 10, total_value_pence: int = 1000) -> TransferFacts:
    return TransferFacts(
        source_branch_id=NORTH,
        destination_branch_id=SOUTH,
        total_qty=total_qty,
        total_value_pence=total_value_pence,
    )


def _condition(condition_type, threshold=None, branch_id=None):
    return SimpleNamespace(condition_type=condition_type, threshold=threshold, branch_id=branch_id)


def _rule(name, conditions, priority=0, created_offset=0, is_active=True, is_archived=False):
    return SimpleNamespace(
        name=name,
        conditions=conditions,
        priority=priority,
        created_at=T0 + timedelta(seconds=created_offset),
        is_active=is_active,
        is_archived=is_archived,
    )


class TestConditionMatches:
    """Each condition type in isolation."""

    def test_qty_threshold_is_strict(self):
        condition = _condition(ApprovalConditionType.TOTAL_QTY_THRESHOLD, threshold=10)
        assert not condition_matches(condition, _facts(total_qty=10))
        assert condition_matches(condition, _facts(total_qty=11))

    def test_value_threshold_is_strict(self):
        condition = _condition(ApprovalConditionType.TOTAL_VALUE_THRESHOLD, threshold=5000)
        assert not condition_matches(condition, _facts(total_value_pence=5000))
        assert condition_matches(condition, _facts(total_value_pence=5001))

    def test_branch_conditions(self):
        assert condition_matches(_condition(ApprovalConditionType.SOURCE_BRANCH, branch_id=NORTH), _facts())
        assert not condition_matches(_condition(ApprovalConditionType.SOURCE_BRANCH, branch_id=SOUTH), _facts())
        assert condition_matches(
            _condition(ApprovalConditionType.DESTINATION_BRANCH, branch_id=SOUTH), _facts()
        )

    def test_product_category_always_matches(self):
        assert condition_matches(_condition(ApprovalConditionType.PRODUCT_CATEGORY), _facts())


class TestSelectRule:
    """The first matching rule by priority desc, then age, wins."""

    def test_all_conditions_must_match(self):
        rule = _rule(
            "big-from-north",
            [
                _condition(ApprovalConditionType.TOTAL_QTY_THRESHOLD, threshold=5),
                _condition(ApprovalConditionType.SOURCE_BRANCH, branch_id=SOUTH),
            ],
        )
        assert select_rule([rule], _facts(total_qty=50)) is None

    def test_higher_priority_wins(self):
        low = _rule("low", [_condition(ApprovalConditionType.TOTAL_QTY_THRESHOLD, threshold=1)], priority=1)
        high = _rule("high", [_condition(ApprovalConditionType.TOTAL_QTY_THRESHOLD, threshold=1)], priority=5)
        assert select_rule([low, high], _facts()).name == "high"

    def test_equal_priority_oldest_wins(self):
        newer = _rule("newer", [_condition(ApprovalConditionType.PRODUCT_CATEGORY)], created_offset=10)
        older = _rule("older", [_condition(ApprovalConditionType.PRODUCT_CATEGORY)], created_offset=0)
        assert select_rule([newer, older], _facts()).name == "older"

    def test_inactive_and_archived_rules_ignored(self):
        inactive = _rule("inactive", [_condition(ApprovalConditionType.PRODUCT_CATEGORY)], is_active=False)
        archived = _rule("archived", [_condition(ApprovalConditionType.PRODUCT_CATEGORY)], is_archived=True)
        assert select_rule([inactive, archived], _facts()) is None


class TestBlockingLevels:
    """Order constraints per approval mode."""

    def test_sequential_blocks_on_any_lower_pending(self):
        statuses = {1: APPROVED, 2: PENDING, 3: PENDING}
        assert blocking_levels(ApprovalMode.SEQUENTIAL, 3, statuses) == [2]
        assert blocking_levels(ApprovalMode.SEQUENTIAL, 2, statuses) == []

    def test_sequential_first_level_never_blocked(self):
        assert blocking_levels(ApprovalMode.SEQUENTIAL, 1, {1: PENDING, 2: PENDING}) == []

    def test_parallel_never_blocks(self):
        assert blocking_levels(ApprovalMode.PARALLEL, 3, {1: PENDING, 2: PENDING, 3: PENDING}) == []

    def test_hybrid_requires_level_one_first(self):
        statuses = {1: PENDING, 2: PENDING, 3: PENDING}
        assert blocking_levels(ApprovalMode.HYBRID, 3, statuses) == [1]

    def test_hybrid_any_order_after_level_one(self):
        statuses = {1: APPROVED, 2: PENDING, 3: PENDING}
        assert blocking_levels(ApprovalMode.HYBRID, 3, statuses) == []


class TestAllApproved:
    @pytest.mark.parametrize(
        "statuses,expected",
        [
            ([APPROVED, APPROVED], True),
            ([APPROVED, PENDING], False),
            ([], False),
        ],
    )
    def test_all_approved(self, statuses, expected):
        assert all_approved(statuses) is expected
