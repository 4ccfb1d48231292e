"""
Module: stock_kernel.domain.rbac
Responsibility: The permission catalog and the built-in system role
    definitions.  Pure data; TenantService seeds rows from it.
Architecture position: Kernel > Domain.  Zero I/O.

Invariants enforced:
    - Every key a role can hold is listed in PERMISSION_CATALOG.
    - OWNER holds every key.
"""

from types import MappingProxyType

PERMISSION_CATALOG = MappingProxyType(
    {
        "products:read": "View products",
        "products:write": "Create, update and archive products",
        "users:manage": "Manage tenant users and their roles",
        "roles:read": "View roles and permissions",
        "roles:manage": "Create, update and archive roles",
        "tenant:manage": "Manage tenant settings",
        "branches:manage": "Create, update and archive branches",
        "stock:read": "View stock levels, ledger and transfers",
        "stock:write": "Receive and adjust stock, create and process transfers",
        "stock:allocate": "Consume stock",
        "reports:view": "View transfer analytics",
    }
)

ALL_PERMISSIONS: frozenset[str] = frozenset(PERMISSION_CATALOG)

OWNER_ROLE = "OWNER"
ADMIN_ROLE = "ADMIN"
EDITOR_ROLE = "EDITOR"
VIEWER_ROLE = "VIEWER"

SYSTEM_ROLES = MappingProxyType(
    {
        OWNER_ROLE: ALL_PERMISSIONS,
        ADMIN_ROLE: ALL_PERMISSIONS - {"roles:manage", "tenant:manage"},
        EDITOR_ROLE: frozenset(
            {"products:read", "products:write", "stock:read", "stock:allocate"}
        ),
        VIEWER_ROLE: frozenset({"products:read", "stock:read"}),
    }
)

SYSTEM_ROLE_DESCRIPTIONS = MappingProxyType(
    {
        OWNER_ROLE: "Full access, including roles and tenant settings",
        ADMIN_ROLE: "Full access except roles and tenant settings",
        EDITOR_ROLE: "Edit products and consume stock",
        VIEWER_ROLE: "Read-only access to products and stock",
    }
)


def unknown_permission_keys(keys) -> list[str]:
    """Keys not present in the catalog, sorted."""
    return sorted(set(keys) - ALL_PERMISSIONS)
