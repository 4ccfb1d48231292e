"""
TenantService -- tenant bootstrap.

Responsibility:
    Creates a tenant together with the permission catalog rows, the four
    system roles, and the first OWNER membership.

Architecture position:
    Kernel > Services.  The only write path that runs without a Principal
    (there is no tenant to act in yet); the owner user is recorded as actor.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.principal import Principal
from stock_kernel.domain.rbac import (
    OWNER_ROLE,
    PERMISSION_CATALOG,
    SYSTEM_ROLE_DESCRIPTIONS,
    SYSTEM_ROLES,
)
from stock_kernel.exceptions import DuplicateNameError, ValidationError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.role import Permission, Role
from stock_kernel.models.tenant import Tenant
from stock_kernel.models.user import User, UserTenantMembership
from stock_kernel.services.base import BaseService, snapshot

logger = get_logger("services.tenant")


@dataclass(frozen=True)
class TenantBootstrap:
    tenant_id: UUID
    owner_user_id: UUID
    role_ids: dict[str, UUID]


def normalize_email(email: str) -> str:
    return email.strip().lower()


class TenantService(BaseService):
    def ensure_permissions(self) -> dict[str, Permission]:
        """Insert any catalog keys missing from the permissions table."""
        existing = {
            p.key: p for p in self.session.execute(select(Permission)).scalars()
        }
        for key, description in PERMISSION_CATALOG.items():
            if key not in existing:
                permission = Permission(key=key, description=description)
                self.session.add(permission)
                existing[key] = permission
        self.session.flush()
        return existing

    def get_or_create_user(self, email: str, name: str | None = None) -> tuple[User, bool]:
        email = normalize_email(email)
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required")
        user = self.session.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()
        if user is not None:
            return user, False
        user = User(email=email, name=name)
        self.session.add(user)
        self.session.flush()
        return user, True

    def create_tenant(
        self,
        slug: str,
        name: str,
        owner_email: str,
        owner_name: str | None = None,
    ) -> TenantBootstrap:
        """
        Create a tenant, seed its system roles and attach the owner.

        Raises:
            DuplicateNameError: If the slug is taken.
        """
        slug = slug.strip().lower()
        taken = self.session.execute(select(Tenant.id).where(Tenant.slug == slug)).first()
        if taken is not None:
            raise DuplicateNameError("Tenant", slug)

        tenant = Tenant(slug=slug, name=name.strip())
        self.session.add(tenant)
        self.session.flush()

        permissions = self.ensure_permissions()
        roles: dict[str, Role] = {}
        for role_name, keys in SYSTEM_ROLES.items():
            role = Role(
                tenant_id=tenant.id,
                name=role_name,
                description=SYSTEM_ROLE_DESCRIPTIONS[role_name],
                is_system=True,
                permissions=[permissions[k] for k in sorted(keys)],
            )
            self.session.add(role)
            roles[role_name] = role
        self.session.flush()

        owner, created = self.get_or_create_user(owner_email, owner_name)
        self.session.add(
            UserTenantMembership(
                user_id=owner.id,
                tenant_id=tenant.id,
                role_id=roles[OWNER_ROLE].id,
            )
        )
        self.session.flush()

        actor = Principal(tenant_id=tenant.id, user_id=owner.id)
        self._audit(
            actor, AuditEntityType.TENANT, tenant.id, AuditAction.CREATE,
            entity_name=tenant.slug, after=snapshot(tenant),
        )
        if created:
            self._audit(
                actor, AuditEntityType.USER, owner.id, AuditAction.CREATE,
                entity_name=owner.email, after=snapshot(owner),
            )
        self._audit(
            actor, AuditEntityType.USER, owner.id, AuditAction.ROLE_ASSIGN,
            entity_name=owner.email,
            after={"role_id": roles[OWNER_ROLE].id, "role_name": OWNER_ROLE},
        )

        logger.info(
            "tenant_created",
            extra={"tenant_id": str(tenant.id), "slug": tenant.slug, "owner_user_id": str(owner.id)},
        )

        return TenantBootstrap(
            tenant_id=tenant.id,
            owner_user_id=owner.id,
            role_ids={role_name: role.id for role_name, role in roles.items()},
        )
