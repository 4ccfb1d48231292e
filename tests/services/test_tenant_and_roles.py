"""
Tenant bootstrap, role management and principal resolution.
"""

from uuid import uuid4

import pytest

from stock_kernel.domain.rbac import ALL_PERMISSIONS
from stock_kernel.exceptions import (
    AlreadyArchivedError,
    AuthenticationError,
    DuplicateNameError,
    NotArchivedError,
    RoleInUseError,
    SystemRoleImmutableError,
    UnknownPermissionError,
    ValidationError,
)
from stock_kernel.models.audit_event import AuditAction, AuditEntityType


class TestCreateTenant:
    """Bootstrap of a new tenant."""

    def test_seeds_system_roles_and_owner(self, tenant, owner):
        assert set(tenant.role_ids) == {"OWNER", "ADMIN", "EDITOR", "VIEWER"}
        assert owner.role_name == "OWNER"
        assert owner.permissions == ALL_PERMISSIONS

    def test_duplicate_slug_rejected(self, tenant, tenant_service):
        with pytest.raises(DuplicateNameError):
            tenant_service.create_tenant(slug="ACME", name="Other", owner_email="x@y.test")

    def test_invalid_owner_email_rejected(self, tenant_service):
        with pytest.raises(ValidationError):
            tenant_service.create_tenant(slug="beta", name="Beta", owner_email="not-an-email")

    def test_existing_user_reused_across_tenants(self, tenant, tenant_service):
        other = tenant_service.create_tenant(
            slug="beta", name="Beta", owner_email="  OWNER@acme.test "
        )
        assert other.owner_user_id == tenant.owner_user_id
        assert other.tenant_id != tenant.tenant_id

    def test_audited(self, tenant, auditor_service):
        trace = auditor_service.trace(AuditEntityType.TENANT, tenant.tenant_id)
        assert trace.actions == (AuditAction.CREATE,)


class TestAccessService:
    """Resolving who is acting."""

    def test_unknown_user_is_unauthenticated(self, tenant, access_service):
        with pytest.raises(AuthenticationError):
            access_service.principal_for(tenant.tenant_id, uuid4())

    def test_archived_membership_grants_nothing(self, tenant, make_user, tenant_user_service,
                                                owner, access_service):
        clerk = make_user("clerk@acme.test", "VIEWER")
        tenant_user_service.archive_user(owner, clerk.user_id)

        with pytest.raises(AuthenticationError):
            access_service.principal_for(tenant.tenant_id, clerk.user_id)


class TestRoleService:
    """Custom roles."""

    def test_list_permissions_is_full_catalog(self, tenant, role_service):
        keys = [p.key for p in role_service.list_permissions()]
        assert keys == sorted(ALL_PERMISSIONS)

    def test_create_role(self, owner, role_service):
        role = role_service.create_role(owner, "Auditor", ["stock:read", "reports:view"])
        assert role.is_system is False
        assert sorted(role.permission_keys) == ["reports:view", "stock:read"]

    def test_unknown_permission_rejected(self, owner, role_service):
        with pytest.raises(UnknownPermissionError):
            role_service.create_role(owner, "Bad", ["stock:read", "stock:teleport"])

    def test_duplicate_name_rejected(self, owner, role_service):
        with pytest.raises(DuplicateNameError):
            role_service.create_role(owner, "VIEWER", [])

    def test_system_roles_immutable(self, tenant, owner, role_service):
        with pytest.raises(SystemRoleImmutableError):
            role_service.update_role(owner, tenant.role_ids["EDITOR"], name="Writer")
        with pytest.raises(SystemRoleImmutableError):
            role_service.archive_role(owner, tenant.role_ids["VIEWER"])

    def test_update_replaces_permissions(self, owner, role_service):
        role = role_service.create_role(owner, "Counter", ["stock:read"])
        updated = role_service.update_role(owner, role.id, permission_keys=["stock:read", "stock:allocate"])
        assert sorted(updated.permission_keys) == ["stock:allocate", "stock:read"]

    def test_role_in_use_cannot_be_archived(self, owner, role_service, tenant_user_service, make_user):
        role = role_service.create_role(owner, "Counter", ["stock:read"])
        counter = make_user("counter@acme.test", "VIEWER")
        tenant_user_service.update_user(owner, counter.user_id, role_id=role.id)

        with pytest.raises(RoleInUseError):
            role_service.archive_role(owner, role.id)

    def test_archive_and_restore(self, owner, role_service):
        role = role_service.create_role(owner, "Temp", [])
        role_service.archive_role(owner, role.id)
        with pytest.raises(AlreadyArchivedError):
            role_service.archive_role(owner, role.id)

        page = role_service.list_roles(owner)
        assert "Temp" not in [r.name for r in page.items]

        role_service.restore_role(owner, role.id)
        with pytest.raises(NotArchivedError):
            role_service.restore_role(owner, role.id)

    def test_list_roles_sorted_by_name(self, owner, role_service):
        page = role_service.list_roles(owner)
        names = [r.name for r in page.items]
        assert names == sorted(names)
        assert page.has_next_page is False
