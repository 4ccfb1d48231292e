"""
ApprovalRuleService -- tenant approval rules for stock transfers.

Responsibility:
    CRUD plus archive/restore of approval rules with their conditions and
    levels.  Evaluation lives in ApprovalEvaluationService.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - A rule has at least one condition and at least one level.
    - Levels are numbered 1..n without gaps; each names a role or a user.
    - Threshold conditions carry a threshold >= 0; branch conditions carry a
      branch_id.  Every referenced branch, role and user is in the tenant.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.pagination import ArchiveFilter, Page, SortDirection
from stock_kernel.domain.principal import Principal
from stock_kernel.exceptions import (
    AlreadyArchivedError,
    ApprovalRuleValidationError,
    NotArchivedError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.approval import (
    ApprovalConditionType,
    ApprovalMode,
    ApprovalRule,
    ApprovalRuleCondition,
    ApprovalRuleLevel,
)
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.branch import Branch
from stock_kernel.models.role import Role
from stock_kernel.models.user import UserTenantMembership
from stock_kernel.selectors.base import SortKey, paginate, parse_datetime
from stock_kernel.services.base import BaseService, snapshot

logger = get_logger("services.approval_rule")

_THRESHOLD_TYPES = frozenset(
    {ApprovalConditionType.TOTAL_QTY_THRESHOLD, ApprovalConditionType.TOTAL_VALUE_THRESHOLD}
)
_BRANCH_TYPES = frozenset(
    {ApprovalConditionType.SOURCE_BRANCH, ApprovalConditionType.DESTINATION_BRANCH}
)

RULE_SORT_FIELDS = {
    "priority": (ApprovalRule.priority, lambda r: r.priority, int),
    "name": (ApprovalRule.name, lambda r: r.name, str),
    "created_at": (ApprovalRule.created_at, lambda r: r.created_at, parse_datetime),
}


@dataclass(frozen=True)
class ConditionInput:
    condition_type: ApprovalConditionType
    threshold: int | None = None
    branch_id: UUID | None = None


@dataclass(frozen=True)
class LevelInput:
    level: int
    name: str
    required_role_id: UUID | None = None
    required_user_id: UUID | None = None


def _rule_snapshot(rule: ApprovalRule) -> dict:
    data = snapshot(rule)
    data["conditions"] = [
        {"condition_type": c.condition_type, "threshold": c.threshold, "branch_id": c.branch_id}
        for c in rule.conditions
    ]
    data["levels"] = [
        {
            "level": lvl.level,
            "name": lvl.name,
            "required_role_id": lvl.required_role_id,
            "required_user_id": lvl.required_user_id,
        }
        for lvl in rule.levels
    ]
    return data


class ApprovalRuleService(BaseService):
    def _validate_conditions(self, tenant_id: UUID, conditions: list[ConditionInput]) -> None:
        if not conditions:
            raise ApprovalRuleValidationError("At least one condition is required")
        branch_ids = set()
        for condition in conditions:
            if condition.condition_type in _THRESHOLD_TYPES:
                if condition.threshold is None or condition.threshold < 0:
                    raise ApprovalRuleValidationError(
                        f"{condition.condition_type.value} requires a threshold >= 0"
                    )
            elif condition.condition_type in _BRANCH_TYPES:
                if condition.branch_id is None:
                    raise ApprovalRuleValidationError(
                        f"{condition.condition_type.value} requires a branch_id"
                    )
                branch_ids.add(condition.branch_id)
        if branch_ids:
            found = set(
                self.session.execute(
                    select(Branch.id).where(Branch.tenant_id == tenant_id, Branch.id.in_(branch_ids))
                ).scalars()
            )
            if found != branch_ids:
                raise ApprovalRuleValidationError("Condition references an unknown branch")

    def _validate_levels(self, tenant_id: UUID, levels: list[LevelInput]) -> None:
        if not levels:
            raise ApprovalRuleValidationError("At least one approval level is required")
        numbers = sorted(lvl.level for lvl in levels)
        if numbers != list(range(1, len(levels) + 1)):
            raise ApprovalRuleValidationError("Approval levels must be sequential starting at 1")

        role_ids = set()
        user_ids = set()
        for lvl in levels:
            if not (lvl.name or "").strip():
                raise ApprovalRuleValidationError(f"Level {lvl.level} requires a name")
            if lvl.required_role_id is None and lvl.required_user_id is None:
                raise ApprovalRuleValidationError(
                    f"Level {lvl.level} requires a role or a user"
                )
            if lvl.required_role_id is not None:
                role_ids.add(lvl.required_role_id)
            if lvl.required_user_id is not None:
                user_ids.add(lvl.required_user_id)

        if role_ids:
            found = set(
                self.session.execute(
                    select(Role.id).where(Role.tenant_id == tenant_id, Role.id.in_(role_ids))
                ).scalars()
            )
            if found != role_ids:
                raise ApprovalRuleValidationError("Level references an unknown role")
        if user_ids:
            found = set(
                self.session.execute(
                    select(UserTenantMembership.user_id).where(
                        UserTenantMembership.tenant_id == tenant_id,
                        UserTenantMembership.user_id.in_(user_ids),
                    )
                ).scalars()
            )
            if found != user_ids:
                raise ApprovalRuleValidationError("Level references an unknown user")

    @staticmethod
    def _build_conditions(conditions: list[ConditionInput]) -> list[ApprovalRuleCondition]:
        return [
            ApprovalRuleCondition(
                position=i,
                condition_type=c.condition_type,
                threshold=c.threshold,
                branch_id=c.branch_id,
            )
            for i, c in enumerate(conditions)
        ]

    @staticmethod
    def _build_levels(levels: list[LevelInput]) -> list[ApprovalRuleLevel]:
        return [
            ApprovalRuleLevel(
                level=lvl.level,
                name=lvl.name.strip(),
                required_role_id=lvl.required_role_id,
                required_user_id=lvl.required_user_id,
            )
            for lvl in sorted(levels, key=lambda lvl: lvl.level)
        ]

    def get(self, principal: Principal, rule_id: UUID) -> ApprovalRule:
        return self._get_owned(ApprovalRule, rule_id, principal.tenant_id, "ApprovalRule")

    def create(
        self,
        principal: Principal,
        name: str,
        conditions: list[ConditionInput],
        levels: list[LevelInput],
        description: str | None = None,
        is_active: bool = True,
        approval_mode: ApprovalMode = ApprovalMode.SEQUENTIAL,
        priority: int = 0,
    ) -> ApprovalRule:
        name = (name or "").strip()
        if not name:
            raise ApprovalRuleValidationError("Rule name is required")
        self._validate_conditions(principal.tenant_id, conditions)
        self._validate_levels(principal.tenant_id, levels)

        rule = ApprovalRule(
            tenant_id=principal.tenant_id,
            name=name,
            description=description,
            is_active=is_active,
            approval_mode=approval_mode,
            priority=priority,
            conditions=self._build_conditions(conditions),
            levels=self._build_levels(levels),
        )
        self.session.add(rule)
        self.session.flush()

        self._audit(
            principal, AuditEntityType.APPROVAL_RULE, rule.id, AuditAction.APPROVAL_RULE_CREATE,
            entity_name=rule.name, after=_rule_snapshot(rule),
        )
        logger.info(
            "approval_rule_created",
            extra={"rule_id": str(rule.id), "approval_mode": approval_mode.value},
        )
        return rule

    def update(
        self,
        principal: Principal,
        rule_id: UUID,
        name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
        approval_mode: ApprovalMode | None = None,
        priority: int | None = None,
        conditions: list[ConditionInput] | None = None,
        levels: list[LevelInput] | None = None,
    ) -> ApprovalRule:
        rule = self.get(principal, rule_id)
        before = _rule_snapshot(rule)

        if name is not None:
            name = name.strip()
            if not name:
                raise ApprovalRuleValidationError("Rule name is required")
            rule.name = name
        if description is not None:
            rule.description = description
        if is_active is not None:
            rule.is_active = is_active
        if approval_mode is not None:
            rule.approval_mode = approval_mode
        if priority is not None:
            rule.priority = priority
        if conditions is not None:
            self._validate_conditions(principal.tenant_id, conditions)
            rule.conditions = []
            self.session.flush()
            rule.conditions = self._build_conditions(conditions)
        if levels is not None:
            self._validate_levels(principal.tenant_id, levels)
            # old levels must be gone before new ones reuse (rule_id, level)
            rule.levels = []
            self.session.flush()
            rule.levels = self._build_levels(levels)
        self.session.flush()

        self._audit(
            principal, AuditEntityType.APPROVAL_RULE, rule.id, AuditAction.APPROVAL_RULE_UPDATE,
            entity_name=rule.name, before=before, after=_rule_snapshot(rule),
        )
        return rule

    def archive(self, principal: Principal, rule_id: UUID) -> ApprovalRule:
        rule = self.get(principal, rule_id)
        if rule.is_archived:
            raise AlreadyArchivedError("ApprovalRule", str(rule.id))

        before = _rule_snapshot(rule)
        rule.is_archived = True
        rule.archived_at = self._clock.now()
        self.session.flush()

        self._audit(
            principal, AuditEntityType.APPROVAL_RULE, rule.id, AuditAction.APPROVAL_RULE_DELETE,
            entity_name=rule.name, before=before, after=_rule_snapshot(rule),
        )
        return rule

    def restore(self, principal: Principal, rule_id: UUID) -> ApprovalRule:
        rule = self.get(principal, rule_id)
        if not rule.is_archived:
            raise NotArchivedError("ApprovalRule", str(rule.id))

        before = _rule_snapshot(rule)
        rule.is_archived = False
        rule.archived_at = None
        self.session.flush()

        self._audit(
            principal, AuditEntityType.APPROVAL_RULE, rule.id, AuditAction.APPROVAL_RULE_RESTORE,
            entity_name=rule.name, before=before, after=_rule_snapshot(rule),
        )
        return rule

    def list(
        self,
        principal: Principal,
        archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
        is_active: bool | None = None,
        sort_by: str = "priority",
        sort_dir: SortDirection = SortDirection.DESC,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page:
        if sort_by not in RULE_SORT_FIELDS:
            raise ApprovalRuleValidationError(
                f"sort_by must be one of: {', '.join(sorted(RULE_SORT_FIELDS))}"
            )
        stmt = select(ApprovalRule).where(ApprovalRule.tenant_id == principal.tenant_id)
        if archived == ArchiveFilter.ACTIVE_ONLY:
            stmt = stmt.where(ApprovalRule.is_archived.is_(False))
        elif archived == ArchiveFilter.ARCHIVED_ONLY:
            stmt = stmt.where(ApprovalRule.is_archived.is_(True))
        if is_active is not None:
            stmt = stmt.where(ApprovalRule.is_active.is_(is_active))

        column, getter, parse = RULE_SORT_FIELDS[sort_by]
        descending = sort_dir == SortDirection.DESC
        rows, has_next, next_cursor = paginate(
            self.session,
            stmt,
            [
                SortKey(column, getter, descending=descending, parse=parse),
                SortKey(ApprovalRule.id, lambda r: r.id, descending=descending, parse=UUID),
            ],
            limit,
            cursor,
        )
        return Page(
            items=tuple(rows),
            has_next_page=has_next,
            next_cursor=next_cursor,
            applied={
                "archived": archived.value,
                "is_active": is_active,
                "sort_by": sort_by,
                "sort_dir": sort_dir.value,
            },
        )
