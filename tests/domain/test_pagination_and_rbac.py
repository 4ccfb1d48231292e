"""Keyset cursor encoding, limit clamping and the permission catalog."""

import pytest

from stock_kernel.domain.pagination import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    clamp_limit,
    decode_cursor,
    encode_cursor,
)
from stock_kernel.domain.principal import Principal
from stock_kernel.domain.rbac import (
    ADMIN_ROLE,
    ALL_PERMISSIONS,
    EDITOR_ROLE,
    OWNER_ROLE,
    SYSTEM_ROLES,
    VIEWER_ROLE,
    unknown_permission_keys,
)
from stock_kernel.exceptions import ValidationError


class TestCursor:
    """Opaque cursors."""

    def test_decode_reverses_encode(self):
        key = ["2025-01-01T12:00:00+00:00", "8c1e6a55-0000-4000-8000-000000000001"]
        assert decode_cursor(encode_cursor(key)) == key

    def test_cursor_is_url_safe(self):
        cursor = encode_cursor(["a/b+c?", 42])
        assert "=" not in cursor
        assert "/" not in cursor
        assert "+" not in cursor

    @pytest.mark.parametrize("garbage", ["not-base64!!", "e30", "eyJrIjogMX0"])
    def test_malformed_cursor_rejected(self, garbage):
        # "e30" is {} and "eyJrIjogMX0" is {"k": 1}
        with pytest.raises(ValidationError):
            decode_cursor(garbage)


class TestClampLimit:
    def test_default_when_missing(self):
        assert clamp_limit(None) == DEFAULT_LIMIT

    def test_capped_at_maximum(self):
        assert clamp_limit(MAX_LIMIT + 50) == MAX_LIMIT

    def test_floor_of_one(self):
        assert clamp_limit(0) == 1


class TestSystemRoles:
    """Built-in role definitions."""

    def test_owner_holds_everything(self):
        assert SYSTEM_ROLES[OWNER_ROLE] == ALL_PERMISSIONS

    def test_admin_lacks_role_and_tenant_management(self):
        assert SYSTEM_ROLES[ADMIN_ROLE] == ALL_PERMISSIONS - {"roles:manage", "tenant:manage"}

    def test_editor_can_consume_but_not_transfer(self):
        editor = SYSTEM_ROLES[EDITOR_ROLE]
        assert "stock:allocate" in editor
        assert "stock:write" not in editor

    def test_viewer_is_read_only(self):
        assert SYSTEM_ROLES[VIEWER_ROLE] == frozenset({"products:read", "stock:read"})

    def test_every_role_key_is_in_catalog(self):
        for keys in SYSTEM_ROLES.values():
            assert keys <= ALL_PERMISSIONS

    def test_unknown_keys_sorted(self):
        assert unknown_permission_keys(["stock:read", "z:z", "a:a"]) == ["a:a", "z:z"]


class TestPrincipal:
    def test_has(self):
        principal = Principal(tenant_id=None, user_id=None, permissions=frozenset({"stock:read"}))
        assert principal.has("stock:read")
        assert not principal.has("stock:write")
