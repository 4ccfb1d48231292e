"""
BranchService -- branches of a tenant and who works at them.

Responsibility:
    Creates, updates, archives and restores branches; manages branch
    memberships, which gate every stock and transfer operation on a branch.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - slug is unique per tenant.
    - Archiving a branch also deactivates it; inactive branches refuse stock
      and transfer operations (AccessService.get_active_branch).
"""

import re
from uuid import UUID

from sqlalchemy import or_, select

from stock_kernel.domain.pagination import ArchiveFilter, Page, SortDirection
from stock_kernel.domain.principal import Principal
from stock_kernel.exceptions import (
    AlreadyArchivedError,
    DuplicateNameError,
    EntityNotFoundError,
    NotArchivedError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.branch import Branch
from stock_kernel.models.user import UserBranchMembership, UserTenantMembership
from stock_kernel.selectors.base import SortKey, paginate
from stock_kernel.services.base import BaseService, snapshot

logger = get_logger("services.branch")

_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]{0,99}$")


class BranchService(BaseService):
    def _assert_slug_free(self, tenant_id: UUID, slug: str, exclude_id: UUID | None = None) -> None:
        stmt = select(Branch.id).where(Branch.tenant_id == tenant_id, Branch.slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(Branch.id != exclude_id)
        if self.session.execute(stmt).first() is not None:
            raise DuplicateNameError("Branch", slug)

    @staticmethod
    def _clean_slug(slug: str) -> str:
        slug = (slug or "").strip().lower()
        if not _SLUG_RE.match(slug):
            raise ValidationError(
                "Branch slug must be lowercase letters, digits and hyphens",
                developer_message=f"slug={slug!r}",
            )
        return slug

    def get(self, principal: Principal, branch_id: UUID) -> Branch:
        return self._get_owned(Branch, branch_id, principal.tenant_id, "Branch")

    def list(
        self,
        principal: Principal,
        archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
        q: str | None = None,
        sort_dir: SortDirection = SortDirection.ASC,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page:
        stmt = select(Branch).where(Branch.tenant_id == principal.tenant_id)
        if archived == ArchiveFilter.ACTIVE_ONLY:
            stmt = stmt.where(Branch.is_archived.is_(False))
        elif archived == ArchiveFilter.ARCHIVED_ONLY:
            stmt = stmt.where(Branch.is_archived.is_(True))
        if q:
            pattern = f"%{q.strip()}%"
            stmt = stmt.where(or_(Branch.name.ilike(pattern), Branch.slug.ilike(pattern)))

        descending = sort_dir == SortDirection.DESC
        rows, has_next, next_cursor = paginate(
            self.session,
            stmt,
            [
                SortKey(Branch.name, lambda b: b.name, descending=descending),
                SortKey(Branch.id, lambda b: b.id, descending=descending, parse=UUID),
            ],
            limit,
            cursor,
        )
        return Page(
            items=tuple(rows),
            has_next_page=has_next,
            next_cursor=next_cursor,
            applied={"archived": archived.value, "q": q, "sort_dir": sort_dir.value},
        )

    def create(self, principal: Principal, slug: str, name: str, is_active: bool = True) -> Branch:
        slug = self._clean_slug(slug)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Branch name is required")
        self._assert_slug_free(principal.tenant_id, slug)

        branch = Branch(tenant_id=principal.tenant_id, slug=slug, name=name, is_active=is_active)
        self.session.add(branch)
        self.session.flush()

        self._audit(
            principal, AuditEntityType.BRANCH, branch.id, AuditAction.CREATE,
            entity_name=branch.name, after=snapshot(branch),
        )
        logger.info("branch_created", extra={"branch_id": str(branch.id), "slug": slug})
        return branch

    def update(
        self,
        principal: Principal,
        branch_id: UUID,
        slug: str | None = None,
        name: str | None = None,
        is_active: bool | None = None,
    ) -> Branch:
        branch = self.get(principal, branch_id)
        before = snapshot(branch)

        if slug is not None:
            slug = self._clean_slug(slug)
            self._assert_slug_free(principal.tenant_id, slug, exclude_id=branch.id)
            branch.slug = slug
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Branch name is required")
            branch.name = name
        if is_active is not None:
            if is_active and branch.is_archived:
                raise ValidationError("Restore the branch before activating it")
            branch.is_active = is_active
        self.session.flush()

        self._audit(
            principal, AuditEntityType.BRANCH, branch.id, AuditAction.UPDATE,
            entity_name=branch.name, before=before, after=snapshot(branch),
        )
        return branch

    def archive(self, principal: Principal, branch_id: UUID) -> Branch:
        branch = self.get(principal, branch_id)
        if branch.is_archived:
            raise AlreadyArchivedError("Branch", str(branch.id))

        before = snapshot(branch)
        branch.is_archived = True
        branch.is_active = False
        branch.archived_at = self._clock.now()
        self.session.flush()

        self._audit(
            principal, AuditEntityType.BRANCH, branch.id, AuditAction.DELETE,
            entity_name=branch.name, before=before, after=snapshot(branch),
        )
        logger.info("branch_archived", extra={"branch_id": str(branch.id)})
        return branch

    def restore(self, principal: Principal, branch_id: UUID) -> Branch:
        branch = self.get(principal, branch_id)
        if not branch.is_archived:
            raise NotArchivedError("Branch", str(branch.id))

        before = snapshot(branch)
        branch.is_archived = False
        branch.is_active = True
        branch.archived_at = None
        self.session.flush()

        self._audit(
            principal, AuditEntityType.BRANCH, branch.id, AuditAction.RESTORE,
            entity_name=branch.name, before=before, after=snapshot(branch),
        )
        return branch

    def _assert_tenant_member(self, tenant_id: UUID, user_id: UUID) -> None:
        found = self.session.execute(
            select(UserTenantMembership.id).where(
                UserTenantMembership.tenant_id == tenant_id,
                UserTenantMembership.user_id == user_id,
            )
        ).first()
        if found is None:
            raise EntityNotFoundError("User", str(user_id))

    def add_member(self, principal: Principal, branch_id: UUID, user_id: UUID) -> UserBranchMembership:
        """Attach a tenant user to a branch.  Adding an existing member is a no-op."""
        branch = self.get(principal, branch_id)
        self._assert_tenant_member(principal.tenant_id, user_id)

        existing = self.session.execute(
            select(UserBranchMembership).where(
                UserBranchMembership.branch_id == branch.id,
                UserBranchMembership.user_id == user_id,
            )
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        membership = UserBranchMembership(
            user_id=user_id, tenant_id=principal.tenant_id, branch_id=branch.id
        )
        self.session.add(membership)
        self.session.flush()

        self._audit(
            principal, AuditEntityType.BRANCH, branch.id, AuditAction.UPDATE,
            entity_name=branch.name, after={"member_added": user_id},
        )
        return membership

    def remove_member(self, principal: Principal, branch_id: UUID, user_id: UUID) -> None:
        branch = self.get(principal, branch_id)
        membership = self.session.execute(
            select(UserBranchMembership).where(
                UserBranchMembership.branch_id == branch.id,
                UserBranchMembership.user_id == user_id,
            )
        ).scalar_one_or_none()
        if membership is None:
            raise EntityNotFoundError("BranchMembership", str(user_id))

        self.session.delete(membership)
        self.session.flush()

        self._audit(
            principal, AuditEntityType.BRANCH, branch.id, AuditAction.UPDATE,
            entity_name=branch.name, before={"member_removed": user_id},
        )
