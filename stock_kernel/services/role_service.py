"""
RoleService -- tenant roles and their permission sets.

Responsibility:
    Lists permissions and roles; creates, updates, archives and restores
    custom roles.  Every write is audited with before/after snapshots.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - System roles (is_system) are never edited or archived.
    - A role still assigned to an active membership cannot be archived.
    - Only catalog permission keys can be granted.
"""

from uuid import UUID

from sqlalchemy import func, select

from stock_kernel.domain.pagination import ArchiveFilter, Page
from stock_kernel.domain.principal import Principal
from stock_kernel.domain.rbac import unknown_permission_keys
from stock_kernel.exceptions import (
    AlreadyArchivedError,
    DuplicateNameError,
    NotArchivedError,
    RoleInUseError,
    SystemRoleImmutableError,
    UnknownPermissionError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.role import Permission, Role
from stock_kernel.models.user import UserTenantMembership
from stock_kernel.selectors.base import SortKey, paginate
from stock_kernel.services.base import BaseService, snapshot

logger = get_logger("services.role")


def _role_snapshot(role: Role) -> dict:
    data = snapshot(role)
    data["permission_keys"] = role.permission_keys
    return data


class RoleService(BaseService):
    def list_permissions(self) -> list[Permission]:
        return list(
            self.session.execute(select(Permission).order_by(Permission.key)).scalars()
        )

    def list_roles(
        self,
        principal: Principal,
        archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
        q: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page:
        stmt = select(Role).where(Role.tenant_id == principal.tenant_id)
        if archived == ArchiveFilter.ACTIVE_ONLY:
            stmt = stmt.where(Role.is_archived.is_(False))
        elif archived == ArchiveFilter.ARCHIVED_ONLY:
            stmt = stmt.where(Role.is_archived.is_(True))
        if q:
            stmt = stmt.where(Role.name.ilike(f"%{q.strip()}%"))

        rows, has_next, next_cursor = paginate(
            self.session,
            stmt,
            [
                SortKey(Role.name, lambda r: r.name),
                SortKey(Role.id, lambda r: r.id, parse=UUID),
            ],
            limit,
            cursor,
        )
        return Page(
            items=tuple(rows),
            has_next_page=has_next,
            next_cursor=next_cursor,
            applied={"archived": archived.value, "q": q},
        )

    def get_role(self, principal: Principal, role_id: UUID) -> Role:
        return self._get_owned(Role, role_id, principal.tenant_id, "Role")

    def _resolve_permissions(self, keys: list[str]) -> list[Permission]:
        unknown = unknown_permission_keys(keys)
        if unknown:
            raise UnknownPermissionError(unknown)
        if not keys:
            return []
        return list(
            self.session.execute(
                select(Permission).where(Permission.key.in_(set(keys))).order_by(Permission.key)
            ).scalars()
        )

    def _assert_name_free(self, tenant_id: UUID, name: str, exclude_id: UUID | None = None) -> None:
        stmt = select(Role.id).where(Role.tenant_id == tenant_id, Role.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Role.id != exclude_id)
        if self.session.execute(stmt).first() is not None:
            raise DuplicateNameError("Role", name)

    def create_role(
        self,
        principal: Principal,
        name: str,
        permission_keys: list[str],
        description: str | None = None,
    ) -> Role:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Role name is required")
        self._assert_name_free(principal.tenant_id, name)

        role = Role(
            tenant_id=principal.tenant_id,
            name=name,
            description=description,
            is_system=False,
            permissions=self._resolve_permissions(permission_keys),
        )
        self.session.add(role)
        self.session.flush()

        self._audit(
            principal, AuditEntityType.ROLE, role.id, AuditAction.CREATE,
            entity_name=role.name, after=_role_snapshot(role),
        )
        logger.info("role_created", extra={"role_id": str(role.id), "role_name": role.name})
        return role

    def update_role(
        self,
        principal: Principal,
        role_id: UUID,
        name: str | None = None,
        description: str | None = None,
        permission_keys: list[str] | None = None,
    ) -> Role:
        role = self.get_role(principal, role_id)
        if role.is_system:
            raise SystemRoleImmutableError(str(role.id), role.name)

        before = _role_snapshot(role)
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Role name is required")
            self._assert_name_free(principal.tenant_id, name, exclude_id=role.id)
            role.name = name
        if description is not None:
            role.description = description
        if permission_keys is not None:
            role.permissions = self._resolve_permissions(permission_keys)
        self.session.flush()

        self._audit(
            principal, AuditEntityType.ROLE, role.id, AuditAction.UPDATE,
            entity_name=role.name, before=before, after=_role_snapshot(role),
        )
        return role

    def _active_member_count(self, role_id: UUID) -> int:
        return self.session.execute(
            select(func.count(UserTenantMembership.id)).where(
                UserTenantMembership.role_id == role_id,
                UserTenantMembership.is_archived.is_(False),
            )
        ).scalar_one()

    def archive_role(self, principal: Principal, role_id: UUID) -> Role:
        role = self.get_role(principal, role_id)
        if role.is_system:
            raise SystemRoleImmutableError(str(role.id), role.name)
        if role.is_archived:
            raise AlreadyArchivedError("Role", str(role.id))
        members = self._active_member_count(role.id)
        if members:
            raise RoleInUseError(str(role.id), members)

        before = _role_snapshot(role)
        role.is_archived = True
        role.archived_at = self._clock.now()
        self.session.flush()

        self._audit(
            principal, AuditEntityType.ROLE, role.id, AuditAction.DELETE,
            entity_name=role.name, before=before, after=_role_snapshot(role),
        )
        return role

    def restore_role(self, principal: Principal, role_id: UUID) -> Role:
        role = self.get_role(principal, role_id)
        if not role.is_archived:
            raise NotArchivedError("Role", str(role.id))

        before = _role_snapshot(role)
        role.is_archived = False
        role.archived_at = None
        self.session.flush()

        self._audit(
            principal, AuditEntityType.ROLE, role.id, AuditAction.RESTORE,
            entity_name=role.name, before=before, after=_role_snapshot(role),
        )
        return role
