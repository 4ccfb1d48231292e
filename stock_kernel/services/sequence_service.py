"""
Module: stock_kernel.services.sequence_service
Responsibility: Hand out gap-tolerant, strictly increasing integers per named
    counter: the audit chain ``seq`` and the per-tenant, per-year transfer
    number suffix.
Architecture position: Kernel > Services.  Used by AuditorService and
    TransferService; never by the HTTP layer directly.

Invariants enforced:
    - The counter row is read ``FOR UPDATE``; no MAX(...)+1 over the target
      table, so two transactions cannot draw the same value.
    - Values belong to the caller's transaction; a rollback returns them.

Failure modes:
    - IntegrityError re-raised if a counter row can be neither created nor
      found after a lost creation race.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.logging_config import get_logger
from stock_kernel.models.sequence_counter import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Named counters backed by ``sequence_counters`` rows.

    Non-goals:
        - Gap-free numbering across rolled-back transactions.
        - Committing; the caller owns the transaction.
    """

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def transfer_sequence_name(tenant_id, year: int) -> str:
        return f"transfer:{tenant_id}:{year}"

    def next_value(self, name: str) -> int:
        counter = self._lock(name) or self._create(name)
        counter.current_value += 1
        self._session.flush()
        logger.debug("sequence_allocated", extra={"sequence_name": name, "value": counter.current_value})
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        return self._session.scalar(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        )

    def _lock(self, name: str) -> SequenceCounter | None:
        return self._session.scalars(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).one_or_none()

    def _create(self, name: str) -> SequenceCounter:
        # Savepoint: losing the insert race must not discard the caller's work
        savepoint = self._session.begin_nested()
        counter = SequenceCounter(name=name, current_value=0)
        self._session.add(counter)
        try:
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.info("sequence_counter_race", extra={"sequence_name": name})
            existing = self._lock(name)
            if existing is None:
                raise
            return existing
        return counter
