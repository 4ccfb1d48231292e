"""
BaseService -- abstract base for all kernel write services.

Responsibility:
    Common constructor (session, auditor, clock), tenant-scoped lookups, and
    the audit helper every write service uses.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction
      and never commit or rollback themselves.
    - Tenant isolation: ``_get_owned`` treats a row of another tenant exactly
      like a missing row (EntityNotFoundError, 404).
"""

from abc import ABC
from typing import Any
from uuid import UUID

from sqlalchemy import inspect, select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.principal import Principal
from stock_kernel.exceptions import EntityNotFoundError
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.services.auditor_service import AuditorService

_SNAPSHOT_EXCLUDE = frozenset({"created_at", "updated_at"})


def snapshot(obj, exclude: frozenset[str] = _SNAPSHOT_EXCLUDE) -> dict[str, Any]:
    """Column values of an ORM row, for audit before/after payloads."""
    return {
        attr.key: getattr(obj, attr.key)
        for attr in inspect(obj).mapper.column_attrs
        if attr.key not in exclude
    }


class BaseService(ABC):
    """
    Abstract base class for kernel write services.

    Contract:
        Accepts a SQLAlchemy ``Session`` and an ``AuditorService`` from the
        caller and uses ``session.flush()`` to persist changes within the
        active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide list/read models -- those belong in selectors/.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ):
        self.session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()

    def _get_owned(self, model, entity_id: UUID, tenant_id: UUID, label: str):
        """Load a tenant-scoped row or raise EntityNotFoundError."""
        row = self.session.execute(
            select(model).where(model.id == entity_id, model.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if row is None:
            raise EntityNotFoundError(label, str(entity_id))
        return row

    def _audit(
        self,
        principal: Principal,
        entity_type: AuditEntityType,
        entity_id: UUID,
        action: AuditAction,
        entity_name: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ):
        return self._auditor.record(
            tenant_id=principal.tenant_id,
            actor_id=principal.user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            entity_name=entity_name,
            before=before,
            after=after,
        )
