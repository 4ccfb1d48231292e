"""
Request-scoped dependencies: database session, principal, permissions.

The principal is resolved from ``X-User-Id`` and ``X-Tenant-Id``; an
upstream gateway is trusted to have authenticated the caller.  Missing or
malformed headers, or no active membership in the tenant, are 401.
"""

from functools import cached_property
from typing import Generator
from uuid import UUID

from fastapi import Depends, Query, Request
from sqlalchemy.orm import Session

from stock_config import Settings
from stock_kernel.db.engine import session_scope
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.principal import Principal
from stock_kernel.exceptions import AuthenticationError, PermissionDeniedError
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

USER_HEADER = "X-User-Id"
TENANT_HEADER = "X-Tenant-Id"


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", None) or SystemClock()


def get_session() -> Generator[Session, None, None]:
    with session_scope() as session:
        yield session


def _header_uuid(request: Request, name: str) -> UUID:
    raw = request.headers.get(name)
    if not raw:
        raise AuthenticationError(developer_message=f"Missing {name} header")
    try:
        return UUID(raw)
    except ValueError as exc:
        raise AuthenticationError(developer_message=f"Malformed {name} header") from exc


def get_principal(request: Request, session: Session = Depends(get_session)) -> Principal:
    tenant_id = _header_uuid(request, TENANT_HEADER)
    user_id = _header_uuid(request, USER_HEADER)
    return AccessService(session).principal_for(tenant_id, user_id)


def require_permission(key: str):
    """Dependency factory: the principal, provided it holds ``key``."""

    def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has(key):
            raise PermissionDeniedError(permission=key)
        return principal

    return dependency


def require_any_permission(*keys: str):
    """Dependency factory: the principal, provided it holds at least one of ``keys``."""

    def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if not any(principal.has(key) for key in keys):
            raise PermissionDeniedError(permission=" or ".join(keys))
        return principal

    return dependency


class Kernel:
    """
    Services and selectors bound to one request's session.

    All services share a single AuditorService so the hash chain is
    extended in order within the request.
    """

    def __init__(self, session: Session, clock: Clock, settings: Settings):
        self.session = session
        self.clock = clock
        self.settings = settings
        self.auditor = AuditorService(session, clock)

    def _service(self, cls):
        return cls(self.session, self.auditor, self.clock)

    @cached_property
    def tenants(self) -> TenantService:
        return self._service(TenantService)

    @cached_property
    def roles(self) -> RoleService:
        return self._service(RoleService)

    @cached_property
    def users(self) -> TenantUserService:
        return self._service(TenantUserService)

    @cached_property
    def branches(self) -> BranchService:
        return self._service(BranchService)

    @cached_property
    def products(self) -> ProductService:
        return self._service(ProductService)

    @cached_property
    def stock(self) -> StockService:
        return self._service(StockService)

    @cached_property
    def transfers(self) -> TransferService:
        return self._service(TransferService)

    @cached_property
    def approvals(self) -> ApprovalEvaluationService:
        return self._service(ApprovalEvaluationService)

    @cached_property
    def approval_rules(self) -> ApprovalRuleService:
        return self._service(ApprovalRuleService)

    @cached_property
    def templates(self) -> TemplateService:
        return self._service(TemplateService)

    @cached_property
    def idempotency(self) -> IdempotencyService:
        return IdempotencyService(
            self.session, self.clock, ttl_minutes=self.settings.idempotency_ttl_minutes
        )

    @cached_property
    def stock_selector(self) -> StockSelector:
        return StockSelector(self.session)

    @cached_property
    def transfer_selector(self) -> TransferSelector:
        return TransferSelector(self.session)

    @cached_property
    def analytics(self) -> AnalyticsSelector:
        return AnalyticsSelector(self.session)

    @cached_property
    def audit(self) -> AuditSelector:
        return AuditSelector(self.session)


def get_kernel(
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> Kernel:
    return Kernel(session, clock, settings)


def page_limit(
    limit: int | None = Query(None, ge=1),
    settings: Settings = Depends(get_app_settings),
) -> int:
    """The ``limit`` query parameter, defaulted and capped from settings."""
    if limit is None:
        return settings.default_page_size
    return min(limit, settings.max_page_size)
