"""Pure domain logic: clock, RBAC catalog, FIFO, transfer state machine, approvals."""
