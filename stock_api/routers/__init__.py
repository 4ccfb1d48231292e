"""Route modules, one per resource; ``ALL_ROUTERS`` is mounted by create_app."""

from stock_api.routers import (
    analytics,
    approval_rules,
    audit,
    branches,
    health,
    products,
    roles,
    stock,
    templates,
    tenant_users,
    tenants,
    transfers,
)

ALL_ROUTERS = (
    health.router,
    tenants.router,
    roles.router,
    tenant_users.router,
    branches.router,
    products.router,
    stock.router,
    transfers.router,
    approval_rules.router,
    templates.router,
    analytics.router,
    audit.router,
)
