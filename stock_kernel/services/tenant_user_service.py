"""
TenantUserService -- users inside a tenant: membership, role and branches.

Responsibility:
    Lists, adds, updates, archives and restores tenant users.  Role changes
    are audited as ROLE_REVOKE / ROLE_ASSIGN pairs.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - Only an OWNER may grant the OWNER role (OwnerRoleAssignmentError, 403).
    - A tenant always keeps at least one active OWNER: demoting or archiving
      the last one raises LastOwnerError (409).
    - Branch memberships only reference branches of the same tenant.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, or_, select

from stock_kernel.domain.pagination import ArchiveFilter, Page
from stock_kernel.domain.principal import Principal
from stock_kernel.domain.rbac import OWNER_ROLE
from stock_kernel.exceptions import (
    AlreadyArchivedError,
    DuplicateNameError,
    EntityNotFoundError,
    LastOwnerError,
    NotArchivedError,
    OwnerRoleAssignmentError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.branch import Branch
from stock_kernel.models.role import Role
from stock_kernel.models.user import User, UserBranchMembership, UserTenantMembership
from stock_kernel.selectors.base import SortKey, paginate, parse_datetime
from stock_kernel.services.base import BaseService
from stock_kernel.services.tenant_service import TenantService

logger = get_logger("services.tenant_user")


@dataclass(frozen=True)
class TenantUserView:
    user_id: UUID
    email: str
    name: str | None
    role_id: UUID
    role_name: str
    is_archived: bool
    archived_at: datetime | None
    branch_ids: tuple[UUID, ...]
    joined_at: datetime


def _is_owner_role(role: Role) -> bool:
    return role.is_system and role.name == OWNER_ROLE


class TenantUserService(BaseService):
    def _view(self, membership: UserTenantMembership) -> TenantUserView:
        branch_ids = tuple(
            sorted(
                self.session.execute(
                    select(UserBranchMembership.branch_id).where(
                        UserBranchMembership.tenant_id == membership.tenant_id,
                        UserBranchMembership.user_id == membership.user_id,
                    )
                ).scalars(),
                key=str,
            )
        )
        return TenantUserView(
            user_id=membership.user_id,
            email=membership.user.email,
            name=membership.user.name,
            role_id=membership.role_id,
            role_name=membership.role.name,
            is_archived=membership.is_archived,
            archived_at=membership.archived_at,
            branch_ids=branch_ids,
            joined_at=membership.created_at,
        )

    def _membership(self, tenant_id: UUID, user_id: UUID) -> UserTenantMembership:
        membership = self.session.execute(
            select(UserTenantMembership).where(
                UserTenantMembership.tenant_id == tenant_id,
                UserTenantMembership.user_id == user_id,
            )
        ).scalar_one_or_none()
        if membership is None:
            raise EntityNotFoundError("User", str(user_id))
        return membership

    def _role(self, tenant_id: UUID, role_id: UUID) -> Role:
        role = self.session.execute(
            select(Role).where(
                Role.id == role_id,
                Role.tenant_id == tenant_id,
                Role.is_archived.is_(False),
            )
        ).scalar_one_or_none()
        if role is None:
            raise ValidationError("Invalid role", developer_message="Role not found for this tenant.")
        return role

    def _active_owner_count(self, tenant_id: UUID) -> int:
        return self.session.execute(
            select(func.count(UserTenantMembership.id))
            .join(Role, Role.id == UserTenantMembership.role_id)
            .where(
                UserTenantMembership.tenant_id == tenant_id,
                UserTenantMembership.is_archived.is_(False),
                Role.is_system.is_(True),
                Role.name == OWNER_ROLE,
            )
        ).scalar_one()

    def _guard_owner_grant(self, principal: Principal, role: Role) -> None:
        if _is_owner_role(role) and principal.role_name != OWNER_ROLE:
            raise OwnerRoleAssignmentError(str(principal.user_id))

    def _guard_last_owner(self, membership: UserTenantMembership) -> None:
        if (
            not membership.is_archived
            and _is_owner_role(membership.role)
            and self._active_owner_count(membership.tenant_id) <= 1
        ):
            raise LastOwnerError(str(membership.tenant_id), str(membership.user_id))

    def _set_branches(self, tenant_id: UUID, user_id: UUID, branch_ids: list[UUID]) -> None:
        wanted = set(branch_ids)
        if wanted:
            found = set(
                self.session.execute(
                    select(Branch.id).where(Branch.tenant_id == tenant_id, Branch.id.in_(wanted))
                ).scalars()
            )
            if found != wanted:
                raise ValidationError(
                    "Invalid branches",
                    developer_message="One or more branches do not belong to this tenant.",
                )
        self.session.execute(
            delete(UserBranchMembership).where(
                UserBranchMembership.tenant_id == tenant_id,
                UserBranchMembership.user_id == user_id,
            )
        )
        for branch_id in sorted(wanted, key=str):
            self.session.add(
                UserBranchMembership(user_id=user_id, tenant_id=tenant_id, branch_id=branch_id)
            )
        self.session.flush()

    def list_users(
        self,
        principal: Principal,
        archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
        q: str | None = None,
        role_id: UUID | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page:
        stmt = (
            select(UserTenantMembership)
            .join(User, User.id == UserTenantMembership.user_id)
            .where(UserTenantMembership.tenant_id == principal.tenant_id)
        )
        if archived == ArchiveFilter.ACTIVE_ONLY:
            stmt = stmt.where(UserTenantMembership.is_archived.is_(False))
        elif archived == ArchiveFilter.ARCHIVED_ONLY:
            stmt = stmt.where(UserTenantMembership.is_archived.is_(True))
        if q:
            pattern = f"%{q.strip()}%"
            stmt = stmt.where(or_(User.email.ilike(pattern), User.name.ilike(pattern)))
        if role_id is not None:
            stmt = stmt.where(UserTenantMembership.role_id == role_id)

        rows, has_next, next_cursor = paginate(
            self.session,
            stmt,
            [
                SortKey(UserTenantMembership.created_at, lambda m: m.created_at, parse=parse_datetime),
                SortKey(UserTenantMembership.id, lambda m: m.id, parse=UUID),
            ],
            limit,
            cursor,
        )
        return Page(
            items=tuple(self._view(m) for m in rows),
            has_next_page=has_next,
            next_cursor=next_cursor,
            applied={"archived": archived.value, "q": q, "role_id": role_id},
        )

    def get_user(self, principal: Principal, user_id: UUID) -> TenantUserView:
        return self._view(self._membership(principal.tenant_id, user_id))

    def add_user(
        self,
        principal: Principal,
        email: str,
        role_id: UUID,
        name: str | None = None,
        branch_ids: list[UUID] | None = None,
    ) -> TenantUserView:
        role = self._role(principal.tenant_id, role_id)
        self._guard_owner_grant(principal, role)

        tenants = TenantService(self.session, self._auditor, self._clock)
        user, created = tenants.get_or_create_user(email, name)
        existing = self.session.execute(
            select(UserTenantMembership.id).where(
                UserTenantMembership.tenant_id == principal.tenant_id,
                UserTenantMembership.user_id == user.id,
            )
        ).first()
        if existing is not None:
            raise DuplicateNameError("User", user.email)

        membership = UserTenantMembership(
            user_id=user.id, tenant_id=principal.tenant_id, role_id=role.id
        )
        self.session.add(membership)
        self.session.flush()
        self._set_branches(principal.tenant_id, user.id, branch_ids or [])

        if created:
            self._audit(
                principal, AuditEntityType.USER, user.id, AuditAction.CREATE,
                entity_name=user.email, after={"id": user.id, "email": user.email, "name": user.name},
            )
        self._audit(
            principal, AuditEntityType.USER, user.id, AuditAction.ROLE_ASSIGN,
            entity_name=user.email, after={"role_id": role.id, "role_name": role.name},
        )
        logger.info(
            "tenant_user_added",
            extra={"user_id": str(user.id), "role_name": role.name, "user_created": created},
        )
        self.session.refresh(membership)
        return self._view(membership)

    def update_user(
        self,
        principal: Principal,
        user_id: UUID,
        role_id: UUID | None = None,
        branch_ids: list[UUID] | None = None,
        name: str | None = None,
    ) -> TenantUserView:
        membership = self._membership(principal.tenant_id, user_id)
        before = self._view(membership)

        if role_id is not None and role_id != membership.role_id:
            new_role = self._role(principal.tenant_id, role_id)
            self._guard_owner_grant(principal, new_role)
            if not _is_owner_role(new_role):
                self._guard_last_owner(membership)

            old_role = membership.role
            membership.role_id = new_role.id
            membership.role = new_role
            self.session.flush()

            self._audit(
                principal, AuditEntityType.USER, user_id, AuditAction.ROLE_REVOKE,
                entity_name=before.email,
                before={"role_id": old_role.id, "role_name": old_role.name},
            )
            self._audit(
                principal, AuditEntityType.USER, user_id, AuditAction.ROLE_ASSIGN,
                entity_name=before.email,
                after={"role_id": new_role.id, "role_name": new_role.name},
            )

        if name is not None:
            membership.user.name = name
            self.session.flush()

        if branch_ids is not None:
            self._set_branches(principal.tenant_id, user_id, branch_ids)

        after = self._view(membership)
        if name is not None or branch_ids is not None:
            self._audit(
                principal, AuditEntityType.USER, user_id, AuditAction.UPDATE,
                entity_name=after.email,
                before={"name": before.name, "branch_ids": list(before.branch_ids)},
                after={"name": after.name, "branch_ids": list(after.branch_ids)},
            )
        return after

    def archive_user(self, principal: Principal, user_id: UUID) -> TenantUserView:
        membership = self._membership(principal.tenant_id, user_id)
        if membership.is_archived:
            raise AlreadyArchivedError("User", str(user_id))
        self._guard_last_owner(membership)

        membership.is_archived = True
        membership.archived_at = self._clock.now()
        self.session.flush()

        self._audit(
            principal, AuditEntityType.USER, user_id, AuditAction.DELETE,
            entity_name=membership.user.email,
            before={"is_archived": False}, after={"is_archived": True},
        )
        return self._view(membership)

    def restore_user(self, principal: Principal, user_id: UUID) -> TenantUserView:
        membership = self._membership(principal.tenant_id, user_id)
        if not membership.is_archived:
            raise NotArchivedError("User", str(user_id))

        membership.is_archived = False
        membership.archived_at = None
        self.session.flush()

        self._audit(
            principal, AuditEntityType.USER, user_id, AuditAction.RESTORE,
            entity_name=membership.user.email,
            before={"is_archived": True}, after={"is_archived": False},
        )
        return self._view(membership)
