"""
Pytest fixtures for the stock kernel test suite.

Provides:
- A fresh in-memory SQLite database per test (tables + immutability listeners)
- A deterministic clock and every kernel service wired to it
- Factory fixtures for a seeded tenant: owner principal, two branches,
  products, extra users and stock receipts
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from stock_kernel.db.engine import (
    create_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from stock_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_kernel.selectors.analytics_selector import AnalyticsSelector
from stock_kernel.selectors.audit_selector import AuditSelector
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.selectors.transfer_selector import TransferSelector
from stock_kernel.services.access_service import AccessService
from stock_kernel.services.approval_rule_service import ApprovalRuleService
from stock_kernel.services.approval_service import ApprovalEvaluationService
from stock_kernel.services.auditor_service import AuditorService
from stock_kernel.services.branch_service import BranchService
from stock_kernel.services.idempotency_service import IdempotencyService
from stock_kernel.services.product_service import ProductService
from stock_kernel.services.role_service import RoleService
from stock_kernel.services.stock_service import StockService
from stock_kernel.services.template_service import TemplateService
from stock_kernel.services.tenant_service import TenantService
from stock_kernel.services.tenant_user_service import TenantUserService
from stock_kernel.services.transfer_service import TransferService

TEST_NOW = datetime(2025, 3, 10, 9, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, stock_service):
            stock_service.receive_stock(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_received" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    """A private in-memory SQLite database with every table created."""
    eng = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    register_immutability_listeners()
    yield eng
    unregister_immutability_listeners()
    reset_engine()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    """Session for one test; services only flush, nothing is committed."""
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(TEST_NOW)


# =============================================================================
# Services and selectors
# =============================================================================


@pytest.fixture
def auditor_service(session, deterministic_clock) -> AuditorService:
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def access_service(session) -> AccessService:
    return AccessService(session)


@pytest.fixture
def tenant_service(session, auditor_service, deterministic_clock) -> TenantService:
    return TenantService(session, auditor_service, deterministic_clock)


@pytest.fixture
def role_service(session, auditor_service, deterministic_clock) -> RoleService:
    return RoleService(session, auditor_service, deterministic_clock)


@pytest.fixture
def tenant_user_service(session, auditor_service, deterministic_clock) -> TenantUserService:
    return TenantUserService(session, auditor_service, deterministic_clock)


@pytest.fixture
def branch_service(session, auditor_service, deterministic_clock) -> BranchService:
    return BranchService(session, auditor_service, deterministic_clock)


@pytest.fixture
def product_service(session, auditor_service, deterministic_clock) -> ProductService:
    return ProductService(session, auditor_service, deterministic_clock)


@pytest.fixture
def stock_service(session, auditor_service, deterministic_clock) -> StockService:
    return StockService(session, auditor_service, deterministic_clock)


@pytest.fixture
def transfer_service(session, auditor_service, deterministic_clock) -> TransferService:
    return TransferService(session, auditor_service, deterministic_clock)


@pytest.fixture
def approval_service(session, auditor_service, deterministic_clock) -> ApprovalEvaluationService:
    return ApprovalEvaluationService(session, auditor_service, deterministic_clock)


@pytest.fixture
def approval_rule_service(session, auditor_service, deterministic_clock) -> ApprovalRuleService:
    return ApprovalRuleService(session, auditor_service, deterministic_clock)


@pytest.fixture
def template_service(session, auditor_service, deterministic_clock) -> TemplateService:
    return TemplateService(session, auditor_service, deterministic_clock)


@pytest.fixture
def idempotency_service(session, deterministic_clock) -> IdempotencyService:
    return IdempotencyService(session, deterministic_clock, ttl_minutes=60)


@pytest.fixture
def stock_selector(session) -> StockSelector:
    return StockSelector(session)


@pytest.fixture
def transfer_selector(session) -> TransferSelector:
    return TransferSelector(session)


@pytest.fixture
def analytics_selector(session) -> AnalyticsSelector:
    return AnalyticsSelector(session)


@pytest.fixture
def audit_selector(session) -> AuditSelector:
    return AuditSelector(session)


# =============================================================================
# Seeded tenant
# =============================================================================


@pytest.fixture
def tenant(tenant_service):
    """TenantBootstrap for tenant 'acme' with owner owner@acme.test."""
    return tenant_service.create_tenant(
        slug="acme", name="Acme Ltd", owner_email="owner@acme.test", owner_name="Olive Owner"
    )


@pytest.fixture
def owner(tenant, access_service):
    """Principal of the tenant's OWNER."""
    return access_service.principal_for(tenant.tenant_id, tenant.owner_user_id)


@pytest.fixture
def north(owner, branch_service):
    """Active branch 'north'; the owner is a member."""
    branch = branch_service.create(owner, slug="north", name="North Store")
    branch_service.add_member(owner, branch.id, owner.user_id)
    return branch


@pytest.fixture
def south(owner, branch_service):
    """Active branch 'south'; the owner is a member."""
    branch = branch_service.create(owner, slug="south", name="South Store")
    branch_service.add_member(owner, branch.id, owner.user_id)
    return branch


@pytest.fixture
def widget(owner, product_service):
    return product_service.create(owner, sku="WID-001", name="Widget", price_pence=250)


@pytest.fixture
def gadget(owner, product_service):
    return product_service.create(owner, sku="GAD-001", name="Gadget", price_pence=1200)


@pytest.fixture
def make_user(tenant, owner, tenant_user_service, access_service):
    """
    Factory: add a tenant user and return their Principal.

    Usage::

        clerk = make_user("clerk@acme.test", "EDITOR", branch_ids=[north.id])
    """

    def _make(email: str, role_name: str = "ADMIN", branch_ids=None):
        view = tenant_user_service.add_user(
            owner,
            email=email,
            role_id=tenant.role_ids[role_name],
            branch_ids=list(branch_ids or []),
        )
        return access_service.principal_for(tenant.tenant_id, view.user_id)

    return _make


@pytest.fixture
def receive(owner, stock_service, deterministic_clock):
    """
    Factory: receive stock as the owner, one minute apart per call so FIFO
    order follows call order.
    """

    def _receive(branch, product, qty, unit_cost_pence=None):
        deterministic_clock.advance(60)
        return stock_service.receive_stock(
            owner, branch.id, product.id, qty, unit_cost_pence=unit_cost_pence
        )

    return _receive
