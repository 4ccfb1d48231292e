"""
ORM-level immutability enforcement for append-only stock records.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  Listeners registered here inspect the pending change and raise
ImmutabilityViolationError, which aborts the flush:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
    [before_delete] --> _check_*_delete() ---------^
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable          | What
--------------------|-------------------------|--------------------------------
AuditEvent          | ALWAYS                  | No update, no delete
StockLedgerEntry    | ALWAYS                  | No update, no delete
StockLot            | After insert            | qty_received, unit_cost_pence,
                    |                         | received_at frozen; the lot
                    |                         | cannot be deleted

qty_remaining on a lot stays mutable: FIFO consumption and reversal restores
move it, and every such move is mirrored by a ledger row.

===============================================================================
USAGE
===============================================================================

    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup (idempotent)

Tests that need to tamper with rows call unregister_immutability_listeners().
"""

from sqlalchemy import event, inspect

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

STOCK_LOT_FROZEN_FIELDS = frozenset({"qty_received", "unit_cost_pence", "received_at"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "operation": operation,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_audit_event_immutability(mapper, connection, target):
    """Audit events are immutable from creation."""
    _blocked(
        "AuditEvent", target.id, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    _blocked("AuditEvent", target.id, "DELETE", "Audit events cannot be deleted")


def _check_ledger_entry_immutability(mapper, connection, target):
    """Ledger rows are append-only; corrections are new rows."""
    _blocked(
        "StockLedgerEntry", target.id, "UPDATE",
        "Stock ledger entries are append-only",
    )


def _check_ledger_entry_delete(mapper, connection, target):
    _blocked(
        "StockLedgerEntry", target.id, "DELETE",
        "Stock ledger entries cannot be deleted",
    )


def _check_stock_lot_immutability(mapper, connection, target):
    """
    Block changes to a lot's receipt facts.

    Only qty_remaining (and row metadata) may move after insert.
    """
    insp = inspect(target)
    for field in STOCK_LOT_FROZEN_FIELDS:
        if insp.attrs[field].history.has_changes():
            _blocked(
                "StockLot", target.id, "UPDATE",
                f"Cannot modify field '{field}' on a received lot",
                field=field,
            )


def _check_stock_lot_delete(mapper, connection, target):
    _blocked("StockLot", target.id, "DELETE", "Stock lots cannot be deleted")


def _listeners():
    from stock_kernel.models.audit_event import AuditEvent
    from stock_kernel.models.stock import StockLedgerEntry, StockLot

    return [
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (StockLedgerEntry, "before_update", _check_ledger_entry_immutability),
        (StockLedgerEntry, "before_delete", _check_ledger_entry_delete),
        (StockLot, "before_update", _check_stock_lot_immutability),
        (StockLot, "before_delete", _check_stock_lot_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; already-registered listeners are skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that tamper with rows on purpose.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
