"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every write in the
    kernel, each carrying before/after snapshots of the entity.  Provides
    chain validation for tamper detection and trace queries for review.

Architecture position:
    Kernel > Services -- imperative shell, called by every write service
    (catalog, stock, transfers, approvals, roles, memberships, templates).

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - Audit chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.  Every audit event carries a
      cryptographic link to its predecessor.
    - Append-only: audit events are never modified or deleted (ORM
      listener on the AuditEvent model).

Failure modes:
    - AuditChainBrokenError: Recomputed hash does not match stored hash,
      or prev_hash does not match the predecessor's hash.

Audit relevance:
    This IS the audit service.  All audit events flow through ``record()``,
    which enforces hash chain linkage before persisting.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import AuditChainBrokenError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEntityType, AuditEvent
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.utils.hashing import GENESIS, hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID | None
    entity_name: str | None
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    correlation_id: str | None
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """Complete audit trace for an entity, in seq order."""

    entity_type: AuditEntityType
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Contract:
        ``record()`` appends one ``AuditEvent`` row with hash chain linkage
        in the caller's transaction.

    Guarantees:
        - Every audit event's ``hash`` is a deterministic function of
          ``(entity_type, entity_id, action, payload_hash, prev_hash)``.
        - ``correlation_id`` is taken from LogContext, so an event can be
          joined to the request log line that produced it.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    @staticmethod
    def _chain_hash(
        entity_type: AuditEntityType,
        entity_id: UUID,
        action: AuditAction,
        payload_hash: str,
        prev_hash: str | None,
    ) -> str:
        return hash_audit_event(entity_type.value, str(entity_id), action.value, payload_hash, prev_hash)

    @staticmethod
    def _payload_hash(tenant_id, actor_id, entity_name, before, after) -> str:
        return hash_payload(
            {
                "tenant_id": tenant_id,
                "actor_id": actor_id,
                "entity_name": entity_name,
                "before": before,
                "after": after,
            }
        )

    def _tip_hash(self) -> str | None:
        return self._session.scalar(select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1))

    def record(
        self,
        *,
        tenant_id: UUID | None,
        actor_id: UUID | None,
        entity_type: AuditEntityType,
        entity_id: UUID,
        action: AuditAction,
        entity_name: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append one event, linked to the current tip of the chain."""
        seq = self._sequences.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._tip_hash()
        before_data = to_json_safe(before)
        after_data = to_json_safe(after)
        payload_hash = self._payload_hash(tenant_id, actor_id, entity_name, before_data, after_data)

        event = AuditEvent(
            seq=seq,
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            action=action,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            before=before_data,
            after=after_data,
            correlation_id=LogContext.get("correlation_id"),
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=self._chain_hash(entity_type, entity_id, action, payload_hash, prev_hash),
        )
        self._session.add(event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={"entity_type": entity_type.value, "entity_id": str(entity_id), "action": action.value, "seq": seq},
        )
        return event

    def validate_chain(self) -> bool:
        """
        Recompute every hash in seq order.

        Raises:
            AuditChainBrokenError: a stored hash differs from its recomputation,
                or an event does not point at its predecessor.
        """
        events = self._session.scalars(select(AuditEvent).order_by(AuditEvent.seq)).all()

        previous: str | None = None
        for event in events:
            # only the first event may start a chain
            linked = event.is_genesis if previous is None else event.prev_hash == previous
            if not linked:
                self._broken(event, previous or GENESIS, event.prev_hash or GENESIS)
            expected = self._chain_hash(
                event.entity_type,
                event.entity_id,
                event.action,
                self._payload_hash(event.tenant_id, event.actor_id, event.entity_name, event.before, event.after),
                event.prev_hash,
            )
            if event.hash != expected:
                self._broken(event, expected, event.hash)
            previous = event.hash

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    @staticmethod
    def _broken(event: AuditEvent, expected: str, actual: str) -> None:
        logger.critical("audit_chain_broken", extra={"audit_event_id": str(event.id), "seq": event.seq})
        raise AuditChainBrokenError(str(event.id), expected, actual)

    def trace(self, entity_type: AuditEntityType, entity_id: UUID) -> AuditTrace:
        """Every event for one entity, oldest first."""
        events = self._session.scalars(
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.seq)
        ).all()
        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=event.seq,
                    action=event.action,
                    occurred_at=event.occurred_at,
                    actor_id=event.actor_id,
                    entity_name=event.entity_name,
                    before=event.before,
                    after=event.after,
                    correlation_id=event.correlation_id,
                    hash=event.hash,
                )
                for event in events
            ),
        )
