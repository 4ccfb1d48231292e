"""
AccessService -- tenant membership, permission and branch-membership checks.

Responsibility:
    Resolves who a user is inside a tenant (role and permission keys) and
    answers the authorization questions every other service asks.

Architecture position:
    Kernel > Services.  Read-only: never adds, flushes or commits.

Failure modes:
    - AuthenticationError: no active membership in the tenant.
    - PermissionDeniedError: permission key not held.
    - EntityNotFoundError: branch outside the tenant, or archived/inactive.
    - BranchAccessDeniedError: user is not a member of the branch.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.principal import Principal
from stock_kernel.exceptions import (
    AuthenticationError,
    BranchAccessDeniedError,
    EntityNotFoundError,
    PermissionDeniedError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.branch import Branch
from stock_kernel.models.user import UserBranchMembership, UserTenantMembership

logger = get_logger("services.access")


class AccessService:
    """
    Authorization checks for one session.

    Guarantees:
        - Archived memberships grant nothing.
        - Branch checks require the branch to be active in the tenant AND
          the user to hold a branch membership; tenant role does not bypass
          branch membership.
    """

    def __init__(self, session: Session):
        self.session = session

    def membership(self, tenant_id: UUID, user_id: UUID) -> UserTenantMembership:
        row = self.session.execute(
            select(UserTenantMembership).where(
                UserTenantMembership.tenant_id == tenant_id,
                UserTenantMembership.user_id == user_id,
                UserTenantMembership.is_archived.is_(False),
            )
        ).scalar_one_or_none()
        if row is None:
            logger.info(
                "membership_missing",
                extra={"tenant_id": str(tenant_id), "user_id": str(user_id)},
            )
            raise AuthenticationError()
        return row

    def permissions_for(self, tenant_id: UUID, user_id: UUID) -> frozenset[str]:
        return frozenset(self.membership(tenant_id, user_id).role.permission_keys)

    def principal_for(self, tenant_id: UUID, user_id: UUID) -> Principal:
        membership = self.membership(tenant_id, user_id)
        return Principal(
            tenant_id=tenant_id,
            user_id=user_id,
            role_id=membership.role_id,
            role_name=membership.role.name,
            permissions=frozenset(membership.role.permission_keys),
        )

    def require_permission(self, tenant_id: UUID, user_id: UUID, key: str) -> None:
        if key not in self.permissions_for(tenant_id, user_id):
            raise PermissionDeniedError(permission=key)

    def has_role(self, tenant_id: UUID, user_id: UUID, role_id: UUID) -> bool:
        return self.session.execute(
            select(UserTenantMembership.id).where(
                UserTenantMembership.tenant_id == tenant_id,
                UserTenantMembership.user_id == user_id,
                UserTenantMembership.role_id == role_id,
                UserTenantMembership.is_archived.is_(False),
            )
        ).first() is not None

    def is_branch_member(self, tenant_id: UUID, user_id: UUID, branch_id: UUID) -> bool:
        return self.session.execute(
            select(UserBranchMembership.id).where(
                UserBranchMembership.tenant_id == tenant_id,
                UserBranchMembership.user_id == user_id,
                UserBranchMembership.branch_id == branch_id,
            )
        ).first() is not None

    def branch_ids_for(self, tenant_id: UUID, user_id: UUID) -> set[UUID]:
        return set(
            self.session.execute(
                select(UserBranchMembership.branch_id).where(
                    UserBranchMembership.tenant_id == tenant_id,
                    UserBranchMembership.user_id == user_id,
                )
            ).scalars()
        )

    def get_active_branch(self, tenant_id: UUID, branch_id: UUID) -> Branch:
        branch = self.session.execute(
            select(Branch).where(
                Branch.id == branch_id,
                Branch.tenant_id == tenant_id,
                Branch.is_active.is_(True),
                Branch.is_archived.is_(False),
            )
        ).scalar_one_or_none()
        if branch is None:
            raise EntityNotFoundError("Branch", str(branch_id))
        return branch

    def assert_branch_access(self, tenant_id: UUID, user_id: UUID, branch_id: UUID) -> Branch:
        branch = self.get_active_branch(tenant_id, branch_id)
        if not self.is_branch_member(tenant_id, user_id, branch_id):
            raise BranchAccessDeniedError(str(branch_id), str(user_id))
        return branch

    def assert_any_branch_access(self, tenant_id: UUID, user_id: UUID, branch_ids) -> None:
        """Pass when the user belongs to at least one of ``branch_ids``."""
        branch_ids = list(branch_ids)
        if self.branch_ids_for(tenant_id, user_id).intersection(branch_ids):
            return
        raise BranchAccessDeniedError(str(branch_ids[0]), str(user_id))
