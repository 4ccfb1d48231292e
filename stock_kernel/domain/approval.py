"""
Module: stock_kernel.domain.approval
Responsibility: Pure approval-rule matching and level-ordering checks.
Architecture position: Kernel > Domain.  Zero I/O.  Works on any objects
    exposing the attributes named below (ORM rows or test doubles); imports
    enum types from models/approval.py only.

Invariants enforced:
    - A rule matches only when ALL of its conditions match.
    - The first matching rule by (priority desc, created_at asc) wins.
    - SEQUENTIAL levels sign strictly in order; HYBRID requires level 1 first;
      PARALLEL imposes no order.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence
from uuid import UUID

from stock_kernel.models.approval import (
    ApprovalConditionType,
    ApprovalMode,
    ApprovalRecordStatus,
)


@dataclass(frozen=True)
class TransferFacts:
    """The transfer attributes approval conditions look at."""

    source_branch_id: UUID
    destination_branch_id: UUID
    total_qty: int
    total_value_pence: int


def condition_matches(condition, facts: TransferFacts) -> bool:
    """
    Evaluate one condition (``condition_type``, ``threshold``, ``branch_id``).

    Threshold conditions are strict: the total must exceed the threshold.
    PRODUCT_CATEGORY and unrecognised types always match.
    """
    condition_type = condition.condition_type
    threshold = condition.threshold or 0

    if condition_type == ApprovalConditionType.TOTAL_QTY_THRESHOLD:
        return facts.total_qty > threshold
    if condition_type == ApprovalConditionType.TOTAL_VALUE_THRESHOLD:
        return facts.total_value_pence > threshold
    if condition_type == ApprovalConditionType.SOURCE_BRANCH:
        return facts.source_branch_id == condition.branch_id
    if condition_type == ApprovalConditionType.DESTINATION_BRANCH:
        return facts.destination_branch_id == condition.branch_id
    return True


def rule_matches(rule, facts: TransferFacts) -> bool:
    return all(condition_matches(c, facts) for c in rule.conditions)


def select_rule(rules: Iterable, facts: TransferFacts):
    """
    Return the winning rule for ``facts`` or None.

    Inactive and archived rules never match.
    """
    candidates = [r for r in rules if r.is_active and not r.is_archived]
    candidates.sort(key=lambda r: (-r.priority, r.created_at))
    for rule in candidates:
        if rule_matches(rule, facts):
            return rule
    return None


def blocking_levels(
    mode: ApprovalMode,
    level: int,
    statuses: Mapping[int, ApprovalRecordStatus],
) -> list[int]:
    """
    Levels that must be APPROVED before ``level`` may be signed.

    Returns an empty list when ``level`` may proceed.
    """
    if mode == ApprovalMode.PARALLEL:
        return []
    if mode == ApprovalMode.HYBRID:
        if level == 1:
            return []
        first = statuses.get(1)
        if first is not None and first != ApprovalRecordStatus.APPROVED:
            return [1]
        return []
    return sorted(
        lvl
        for lvl, status in statuses.items()
        if lvl < level and status != ApprovalRecordStatus.APPROVED
    )


def all_approved(statuses: Sequence[ApprovalRecordStatus]) -> bool:
    return bool(statuses) and all(s == ApprovalRecordStatus.APPROVED for s in statuses)
