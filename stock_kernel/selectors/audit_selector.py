"""
Module: stock_kernel.selectors.audit_selector
Responsibility: Tenant-scoped reads of the audit trail: the filtered event
    timeline, single events, one entity's history, and the activity feeds
    shown on role and product pages.
Architecture position: Kernel > Selectors.  Reads AuditEvent rows written by
    AuditorService; never touches the hash chain.

Invariants enforced:
    - A principal only ever sees events of its own tenant; an event id from
      another tenant is reported as not found.
    - Newest first by (occurred_at, seq); seq breaks ties between events
      written at the same instant.
    - occurred_from and occurred_to are both inclusive.

Failure modes:
    - PermissionDeniedError: the timeline needs ``users:manage`` or
      ``tenant:manage``; role activity needs ``roles:read``; product
      activity needs ``products:read``.
    - EntityNotFoundError: unknown event, role or product.
    - ValidationError: occurred_to before occurred_from, or a bad cursor.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, select

from stock_kernel.domain.pagination import Page
from stock_kernel.domain.principal import Principal
from stock_kernel.exceptions import EntityNotFoundError, PermissionDeniedError, ValidationError
from stock_kernel.models.audit_event import AuditAction, AuditEntityType, AuditEvent
from stock_kernel.models.product import Product
from stock_kernel.models.role import Role
from stock_kernel.selectors.base import BaseSelector, SortKey, paginate, parse_datetime

AUDIT_READ_PERMISSIONS = ("users:manage", "tenant:manage")

_NEWEST_FIRST = [
    SortKey(AuditEvent.occurred_at, lambda e: e.occurred_at, descending=True, parse=parse_datetime),
    SortKey(AuditEvent.seq, lambda e: e.seq, descending=True, parse=int),
]


@dataclass(frozen=True)
class AuditEventView:
    id: UUID
    seq: int
    entity_type: AuditEntityType
    entity_id: UUID
    entity_name: str | None
    action: AuditAction
    actor_id: UUID | None
    occurred_at: datetime
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    correlation_id: str | None


def _view(event: AuditEvent) -> AuditEventView:
    return AuditEventView(
        id=event.id,
        seq=event.seq,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        entity_name=event.entity_name,
        action=event.action,
        actor_id=event.actor_id,
        occurred_at=event.occurred_at,
        before=event.before,
        after=event.after,
        correlation_id=event.correlation_id,
    )


class AuditSelector(BaseSelector):
    """
    Read side of the audit trail.

    Contract:
        Every listing returns a ``Page`` of ``AuditEventView`` whose
        ``applied`` echoes the effective filters.
    """

    @staticmethod
    def _require_any(principal: Principal, *keys: str) -> None:
        if not any(principal.has(key) for key in keys):
            raise PermissionDeniedError(permission=" or ".join(keys))

    def _page(
        self,
        stmt: Select,
        applied: dict[str, Any],
        limit: int | None,
        cursor: str | None,
        include_total: bool = False,
    ) -> Page:
        total = None
        if include_total:
            total = self.session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        rows, has_next, next_cursor = paginate(self.session, stmt, _NEWEST_FIRST, limit, cursor)
        return Page(
            items=tuple(_view(e) for e in rows),
            has_next_page=has_next,
            next_cursor=next_cursor,
            applied=applied,
            total=total,
        )

    @staticmethod
    def _filtered(
        tenant_id: UUID,
        entity_type: AuditEntityType | None,
        entity_id: UUID | None,
        action: AuditAction | None,
        actor_id: UUID | None,
        occurred_from: datetime | None,
        occurred_to: datetime | None,
    ) -> tuple[Select, dict[str, Any]]:
        if occurred_from is not None and occurred_to is not None and occurred_to < occurred_from:
            raise ValidationError("occurred_to cannot be before occurred_from")

        stmt = select(AuditEvent).where(AuditEvent.tenant_id == tenant_id)
        if entity_type is not None:
            stmt = stmt.where(AuditEvent.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditEvent.entity_id == entity_id)
        if action is not None:
            stmt = stmt.where(AuditEvent.action == action)
        if actor_id is not None:
            stmt = stmt.where(AuditEvent.actor_id == actor_id)
        if occurred_from is not None:
            stmt = stmt.where(AuditEvent.occurred_at >= occurred_from)
        if occurred_to is not None:
            stmt = stmt.where(AuditEvent.occurred_at <= occurred_to)

        applied = {
            "entity_type": entity_type.value if entity_type else None,
            "entity_id": entity_id,
            "action": action.value if action else None,
            "actor_id": actor_id,
            "occurred_from": occurred_from,
            "occurred_to": occurred_to,
        }
        return stmt, applied

    def list_events(
        self,
        principal: Principal,
        entity_type: AuditEntityType | None = None,
        entity_id: UUID | None = None,
        action: AuditAction | None = None,
        actor_id: UUID | None = None,
        occurred_from: datetime | None = None,
        occurred_to: datetime | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        include_total: bool = False,
    ) -> Page:
        """The tenant's audit timeline, newest first."""
        self._require_any(principal, *AUDIT_READ_PERMISSIONS)
        stmt, applied = self._filtered(
            principal.tenant_id, entity_type, entity_id, action, actor_id, occurred_from, occurred_to
        )
        return self._page(stmt, applied, limit, cursor, include_total)

    def get_event(self, principal: Principal, event_id: UUID) -> AuditEventView:
        self._require_any(principal, *AUDIT_READ_PERMISSIONS)
        event = self.session.execute(
            select(AuditEvent).where(AuditEvent.id == event_id, AuditEvent.tenant_id == principal.tenant_id)
        ).scalar_one_or_none()
        if event is None:
            raise EntityNotFoundError("AuditEvent", str(event_id))
        return _view(event)

    def entity_events(
        self,
        principal: Principal,
        entity_type: AuditEntityType,
        entity_id: UUID,
        action: AuditAction | None = None,
        actor_id: UUID | None = None,
        occurred_from: datetime | None = None,
        occurred_to: datetime | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page:
        """History of one entity; the timeline narrowed to a single (type, id)."""
        self._require_any(principal, *AUDIT_READ_PERMISSIONS)
        stmt, applied = self._filtered(
            principal.tenant_id, entity_type, entity_id, action, actor_id, occurred_from, occurred_to
        )
        return self._page(stmt, applied, limit, cursor)

    def _activity(
        self,
        principal: Principal,
        entity_type: AuditEntityType,
        entity_id: UUID,
        actor_id: UUID | None,
        occurred_from: datetime | None,
        occurred_to: datetime | None,
        limit: int | None,
        cursor: str | None,
        include_total: bool,
    ) -> Page:
        stmt, applied = self._filtered(
            principal.tenant_id, entity_type, entity_id, None, actor_id, occurred_from, occurred_to
        )
        return self._page(stmt, applied, limit, cursor, include_total)

    def role_activity(
        self,
        principal: Principal,
        role_id: UUID,
        actor_id: UUID | None = None,
        occurred_from: datetime | None = None,
        occurred_to: datetime | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        include_total: bool = False,
    ) -> Page:
        self._require_any(principal, "roles:read")
        role = self.session.execute(
            select(Role.id).where(Role.id == role_id, Role.tenant_id == principal.tenant_id)
        ).scalar_one_or_none()
        if role is None:
            raise EntityNotFoundError("Role", str(role_id))
        return self._activity(
            principal, AuditEntityType.ROLE, role_id, actor_id,
            occurred_from, occurred_to, limit, cursor, include_total,
        )

    def product_activity(
        self,
        principal: Principal,
        product_id: UUID,
        actor_id: UUID | None = None,
        occurred_from: datetime | None = None,
        occurred_to: datetime | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        include_total: bool = False,
    ) -> Page:
        self._require_any(principal, "products:read")
        product = self.session.execute(
            select(Product.id).where(Product.id == product_id, Product.tenant_id == principal.tenant_id)
        ).scalar_one_or_none()
        if product is None:
            raise EntityNotFoundError("Product", str(product_id))
        return self._activity(
            principal, AuditEntityType.PRODUCT, product_id, actor_id,
            occurred_from, occurred_to, limit, cursor, include_total,
        )
