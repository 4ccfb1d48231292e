"""AuditSelector: the tenant audit timeline, single events and activity feeds."""

from datetime import timedelta
from uuid import uuid4

import pytest

from stock_kernel.exceptions import EntityNotFoundError, PermissionDeniedError, ValidationError
from stock_kernel.models.audit_event import AuditAction, AuditEntityType


@pytest.fixture
def edited_widget(owner, widget, product_service, deterministic_clock):
    """The widget, renamed one minute after it was created."""
    deterministic_clock.advance(60)
    product_service.update(owner, widget.id, name="Widget Mk II")
    return widget


@pytest.fixture
def globex_owner(tenant_service, access_service):
    bootstrap = tenant_service.create_tenant(
        slug="globex", name="Globex", owner_email="hank@globex.test", owner_name="Hank"
    )
    return access_service.principal_for(bootstrap.tenant_id, bootstrap.owner_user_id)


class TestListEvents:
    def test_newest_first(self, owner, edited_widget, audit_selector):
        page = audit_selector.list_events(
            owner, entity_type=AuditEntityType.PRODUCT, entity_id=edited_widget.id
        )

        assert [e.action for e in page.items] == [AuditAction.UPDATE, AuditAction.CREATE]
        assert page.items[0].entity_name == "Widget Mk II"
        assert page.applied["entity_type"] == "PRODUCT"

    def test_same_instant_ordered_by_seq(self, owner, widget, gadget, audit_selector):
        page = audit_selector.list_events(owner, entity_type=AuditEntityType.PRODUCT)
        assert [e.entity_id for e in page.items] == [gadget.id, widget.id]
        assert page.items[0].seq > page.items[1].seq

    def test_action_and_actor_filters(self, owner, edited_widget, make_user, product_service,
                                      audit_selector):
        admin = make_user("admin@acme.test", "ADMIN")
        gizmo = product_service.create(admin, sku="GIZ-001", name="Gizmo", price_pence=10)

        updates = audit_selector.list_events(owner, action=AuditAction.UPDATE)
        assert [e.entity_id for e in updates.items] == [edited_widget.id]

        by_admin = audit_selector.list_events(
            owner, actor_id=admin.user_id, entity_type=AuditEntityType.PRODUCT
        )
        assert [e.entity_id for e in by_admin.items] == [gizmo.id]

    def test_occurred_range_is_inclusive(self, owner, edited_widget, audit_selector, deterministic_clock):
        renamed_at = deterministic_clock.now()

        page = audit_selector.list_events(
            owner, entity_type=AuditEntityType.PRODUCT, occurred_from=renamed_at, occurred_to=renamed_at
        )
        assert [e.action for e in page.items] == [AuditAction.UPDATE]

        earlier = audit_selector.list_events(
            owner, entity_type=AuditEntityType.PRODUCT, occurred_to=renamed_at - timedelta(seconds=1)
        )
        assert [e.action for e in earlier.items] == [AuditAction.CREATE]

    def test_range_must_be_ordered(self, owner, audit_selector, deterministic_clock):
        now = deterministic_clock.now()
        with pytest.raises(ValidationError):
            audit_selector.list_events(owner, occurred_from=now, occurred_to=now - timedelta(days=1))

    def test_cursor_and_total(self, owner, edited_widget, audit_selector):
        first = audit_selector.list_events(
            owner, entity_type=AuditEntityType.PRODUCT, limit=1, include_total=True
        )
        assert first.total == 2
        assert first.has_next_page is True

        second = audit_selector.list_events(
            owner, entity_type=AuditEntityType.PRODUCT, limit=1, cursor=first.next_cursor
        )
        assert [e.action for e in second.items] == [AuditAction.CREATE]
        assert second.has_next_page is False
        assert second.total is None

    def test_admin_may_read(self, widget, make_user, audit_selector):
        admin = make_user("admin@acme.test", "ADMIN")
        assert audit_selector.list_events(admin, entity_id=widget.id).items

    def test_viewer_denied(self, make_user, audit_selector):
        viewer = make_user("viewer@acme.test", "VIEWER")
        with pytest.raises(PermissionDeniedError):
            audit_selector.list_events(viewer)

    def test_other_tenant_sees_nothing(self, widget, globex_owner, audit_selector):
        assert audit_selector.list_events(globex_owner, entity_id=widget.id).items == ()


class TestGetEvent:
    def test_fetch(self, owner, widget, audit_selector):
        created = audit_selector.list_events(owner, entity_id=widget.id).items[0]

        event = audit_selector.get_event(owner, created.id)
        assert event.action == AuditAction.CREATE
        assert event.actor_id == owner.user_id
        assert event.after["sku"] == "WID-001"

    def test_other_tenant_is_not_found(self, owner, widget, globex_owner, audit_selector):
        created = audit_selector.list_events(owner, entity_id=widget.id).items[0]
        with pytest.raises(EntityNotFoundError):
            audit_selector.get_event(globex_owner, created.id)

    def test_unknown(self, owner, audit_selector):
        with pytest.raises(EntityNotFoundError):
            audit_selector.get_event(owner, uuid4())


class TestEntityEvents:
    def test_history_of_one_entity(self, owner, edited_widget, gadget, audit_selector):
        page = audit_selector.entity_events(owner, AuditEntityType.PRODUCT, edited_widget.id)
        assert {e.entity_id for e in page.items} == {edited_widget.id}
        assert len(page.items) == 2

    def test_action_filter(self, owner, edited_widget, audit_selector):
        page = audit_selector.entity_events(
            owner, AuditEntityType.PRODUCT, edited_widget.id, action=AuditAction.CREATE
        )
        assert [e.action for e in page.items] == [AuditAction.CREATE]


class TestActivityFeeds:
    def test_role_activity(self, owner, role_service, audit_selector):
        role = role_service.create_role(owner, name="Auditor", permission_keys=["stock:read"])
        role_service.update_role(owner, role.id, permission_keys=["stock:read", "reports:view"])

        page = audit_selector.role_activity(owner, role.id, include_total=True)
        assert [e.action for e in page.items] == [AuditAction.UPDATE, AuditAction.CREATE]
        assert page.total == 2

    def test_role_activity_needs_roles_read(self, tenant, make_user, audit_selector):
        viewer = make_user("viewer@acme.test", "VIEWER")
        with pytest.raises(PermissionDeniedError):
            audit_selector.role_activity(viewer, tenant.role_ids["VIEWER"])

    def test_role_from_other_tenant(self, tenant, globex_owner, audit_selector):
        with pytest.raises(EntityNotFoundError):
            audit_selector.role_activity(globex_owner, tenant.role_ids["ADMIN"])

    def test_product_activity_for_viewer(self, edited_widget, make_user, audit_selector):
        viewer = make_user("viewer@acme.test", "VIEWER")
        page = audit_selector.product_activity(viewer, edited_widget.id)
        assert [e.action for e in page.items] == [AuditAction.UPDATE, AuditAction.CREATE]

    def test_unknown_product(self, owner, audit_selector):
        with pytest.raises(EntityNotFoundError):
            audit_selector.product_activity(owner, uuid4())
