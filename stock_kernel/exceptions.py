"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers catch by type, never by message.  Every exception carries:

  1. A CODE class attribute (machine-readable, API-safe)
  2. An HTTP_STATUS class attribute used by the API error handler
  3. Structured DATA attributes (not just a message string)

Example:
    try:
        stock_service.consume_stock(...)
    except InsufficientStockError as e:
        log.warning("short by %s", e.requested - e.available)
        api_response(code=e.code, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from StockKernelError:

    StockKernelError (base, 500)
    |
    +-- ValidationError (400)
    |   +-- InvalidQuantityError
    |   +-- SameBranchTransferError
    |   +-- EmptyTransferError
    |   +-- UnknownPermissionError
    |   +-- ApprovalRuleValidationError
    |   +-- LotsNotFoundError
    |
    +-- AuthenticationError (401)
    |
    +-- PermissionDeniedError (403)
    |   +-- BranchAccessDeniedError
    |   +-- ApprovalLevelForbiddenError
    |   +-- OwnerRoleAssignmentError
    |
    +-- NotFoundError (404)
    |   +-- EntityNotFoundError
    |   +-- ApprovalRecordNotFoundError
    |
    +-- ConflictError (409)
    |   +-- InsufficientStockError
    |   +-- InvalidTransferTransitionError
    |   +-- TransferAlreadyReversedError
    |   +-- MultiLevelApprovalRequiredError
    |   +-- ApprovalAlreadyResolvedError
    |   +-- ApprovalOrderError
    |   +-- LastOwnerError
    |   +-- DuplicateSkuError
    |   +-- DuplicateNameError
    |   +-- AlreadyArchivedError
    |   +-- NotArchivedError
    |   +-- SystemRoleImmutableError
    |   +-- RoleInUseError
    |   +-- IdempotencyKeyReusedError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|-----------------------------------
Validation      | VALIDATION_ERROR              | Bad input (quantities, shapes)
                | LOTS_NOT_FOUND                | Restore refers to unknown lots
Auth            | AUTH_REQUIRED                 | No principal / no membership
Permission      | PERMISSION_DENIED             | Missing permission key
                | BRANCH_ACCESS_DENIED          | Not a member of the branch
                | APPROVAL_LEVEL_FORBIDDEN      | User cannot sign this level
                | CANT_ASSIGN_OWNER_ROLE        | Non-owner granting OWNER
Not found       | RESOURCE_NOT_FOUND            | Entity missing or other tenant
Conflict        | INSUFFICIENT_STOCK            | Decrement larger than on-hand
                | INVALID_TRANSFER_TRANSITION   | Illegal transfer status change
                | TRANSFER_ALREADY_REVERSED     | Second reversal attempt
                | APPROVAL_ORDER_VIOLATION      | Level signed out of order
                | CANT_DELETE_LAST_OWNER        | Tenant would lose last OWNER
                | DUPLICATE_SKU                 | SKU already used in tenant
                | IDEMPOTENCY_KEY_REUSED        | Same key, different request
Internal        | AUDIT_CHAIN_BROKEN            | Hash chain validation failed
                | IMMUTABILITY_VIOLATION        | Append-only row modified

===============================================================================
"""


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    Every subclass declares ``code`` and ``http_status`` as class
    attributes.  ``message`` is safe to show to an end user;
    ``developer_message`` is optional diagnostic detail.
    """

    code: str = "INTERNAL_ERROR"
    http_status: int = 500
    default_message: str = "Unexpected error occurred."

    def __init__(self, message: str | None = None, developer_message: str | None = None):
        self.message = message or self.default_message
        self.developer_message = developer_message
        super().__init__(self.message)


# Validation (400)


class ValidationError(StockKernelError):
    """Input failed validation."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400
    default_message: str = "One or more fields are invalid"


class InvalidQuantityError(ValidationError):
    """Quantity outside the allowed range."""

    def __init__(self, field: str, value: int, constraint: str):
        self.field = field
        self.value = value
        self.constraint = constraint
        super().__init__(f"{field} must be {constraint} (got {value})")


class SameBranchTransferError(ValidationError):
    def __init__(self, branch_id: str):
        self.branch_id = branch_id
        super().__init__("Source and destination branches must be different")


class EmptyTransferError(ValidationError):
    def __init__(self, what: str = "Transfer"):
        super().__init__(f"{what} must include at least one item")


class UnknownPermissionError(ValidationError):
    def __init__(self, keys: list[str]):
        self.keys = keys
        super().__init__(f"Unknown permission keys: {', '.join(sorted(keys))}")


class ApprovalRuleValidationError(ValidationError):
    """Approval rule shape is invalid (conditions, levels, references)."""


class LotsNotFoundError(ValidationError):
    code: str = "LOTS_NOT_FOUND"

    def __init__(self, lot_ids: list[str]):
        self.lot_ids = lot_ids
        super().__init__(
            "Some lots were not found in this branch",
            developer_message=f"Missing lots: {', '.join(lot_ids)}",
        )


# Authentication (401)


class AuthenticationError(StockKernelError):
    code: str = "AUTH_REQUIRED"
    http_status: int = 401
    default_message: str = "Please sign in to continue."


# Permission (403)


class PermissionDeniedError(StockKernelError):
    """Principal lacks a permission for this action."""

    code: str = "PERMISSION_DENIED"
    http_status: int = 403
    default_message: str = "You do not have permission for this action."

    def __init__(self, permission: str | None = None, message: str | None = None):
        self.permission = permission
        super().__init__(
            message,
            developer_message=f"Missing permission: {permission}" if permission else None,
        )


class BranchAccessDeniedError(PermissionDeniedError):
    code: str = "BRANCH_ACCESS_DENIED"

    def __init__(self, branch_id: str, user_id: str):
        self.branch_id = branch_id
        self.user_id = user_id
        super().__init__(message="You are not a member of this branch.")


class ApprovalLevelForbiddenError(PermissionDeniedError):
    code: str = "APPROVAL_LEVEL_FORBIDDEN"

    def __init__(self, level: int, user_id: str):
        self.level = level
        self.user_id = user_id
        super().__init__(message=f"You are not authorized to approve level {level}.")


class OwnerRoleAssignmentError(PermissionDeniedError):
    code: str = "CANT_ASSIGN_OWNER_ROLE"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(message="Only OWNER users can assign the OWNER role to other users.")


# Not found (404)


class NotFoundError(StockKernelError):
    code: str = "RESOURCE_NOT_FOUND"
    http_status: int = 404
    default_message: str = "The requested resource was not found."


class EntityNotFoundError(NotFoundError):
    """Entity is missing, or belongs to another tenant."""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found")


class ApprovalRecordNotFoundError(NotFoundError):
    def __init__(self, transfer_id: str, level: int):
        self.transfer_id = transfer_id
        self.level = level
        super().__init__(f"Approval level {level} not found for this transfer")


# Conflict (409)


class ConflictError(StockKernelError):
    code: str = "CONFLICT"
    http_status: int = 409
    default_message: str = "This action conflicts with the current state of the resource."


class InsufficientStockError(ConflictError):
    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, branch_id: str, product_id: str, requested: int, available: int):
        self.branch_id = branch_id
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            "Insufficient stock",
            developer_message=f"Requested {requested}, available {available}",
        )


class InvalidTransferTransitionError(ConflictError):
    code: str = "INVALID_TRANSFER_TRANSITION"

    def __init__(self, transfer_id: str, from_status: str, to_status: str):
        self.transfer_id = transfer_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot move transfer from {from_status} to {to_status}")


class TransferStateError(ConflictError):
    """Operation not allowed in the transfer's current status."""

    code: str = "INVALID_TRANSFER_TRANSITION"

    def __init__(self, transfer_id: str, status: str, message: str):
        self.transfer_id = transfer_id
        self.status = status
        super().__init__(message)


class TransferAlreadyReversedError(ConflictError):
    code: str = "TRANSFER_ALREADY_REVERSED"

    def __init__(self, transfer_id: str, reversed_by_transfer_id: str):
        self.transfer_id = transfer_id
        self.reversed_by_transfer_id = reversed_by_transfer_id
        super().__init__("This transfer has already been reversed")


class MultiLevelApprovalRequiredError(ConflictError):
    code: str = "MULTI_LEVEL_APPROVAL_REQUIRED"

    def __init__(self, transfer_id: str):
        self.transfer_id = transfer_id
        super().__init__("Transfer requires multi-level approval")


class ApprovalAlreadyResolvedError(ConflictError):
    code: str = "APPROVAL_ALREADY_RESOLVED"

    def __init__(self, transfer_id: str, level: int, status: str):
        self.transfer_id = transfer_id
        self.level = level
        self.status = status
        super().__init__(f"Approval level {level} has already been processed ({status})")


class ApprovalOrderError(ConflictError):
    code: str = "APPROVAL_ORDER_VIOLATION"

    def __init__(self, transfer_id: str, level: int, pending_levels: list[int]):
        self.transfer_id = transfer_id
        self.level = level
        self.pending_levels = pending_levels
        super().__init__("Previous approval levels must be completed first")


class LastOwnerError(ConflictError):
    code: str = "CANT_DELETE_LAST_OWNER"

    def __init__(self, tenant_id: str, user_id: str):
        self.tenant_id = tenant_id
        self.user_id = user_id
        super().__init__("You cannot delete the last owner of a tenant.")


class DuplicateSkuError(ConflictError):
    code: str = "DUPLICATE_SKU"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"A product with SKU {sku} already exists")


class DuplicateNameError(ConflictError):
    code: str = "DUPLICATE_NAME"

    def __init__(self, entity_type: str, name: str):
        self.entity_type = entity_type
        self.name = name
        super().__init__(f"A {entity_type.lower()} named {name!r} already exists")


class AlreadyArchivedError(ConflictError):
    code: str = "ALREADY_ARCHIVED"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} is already archived")


class NotArchivedError(ConflictError):
    code: str = "NOT_ARCHIVED"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} is not archived")


class SystemRoleImmutableError(ConflictError):
    code: str = "SYSTEM_ROLE_IMMUTABLE"

    def __init__(self, role_id: str, role_name: str):
        self.role_id = role_id
        self.role_name = role_name
        super().__init__(f"System role {role_name} cannot be modified")


class RoleInUseError(ConflictError):
    code: str = "ROLE_IN_USE"

    def __init__(self, role_id: str, member_count: int):
        self.role_id = role_id
        self.member_count = member_count
        super().__init__(f"Role is assigned to {member_count} user(s)")


class IdempotencyKeyReusedError(ConflictError):
    code: str = "IDEMPOTENCY_KEY_REUSED"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__("Idempotency-Key was already used for a different request")


# Audit (500)


class AuditError(StockKernelError):
    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            developer_message=(
                f"Audit chain broken at {audit_event_id}: "
                f"expected {expected_hash}, found {actual_hash}"
            )
        )


# Immutability (500)


class ImmutabilityError(StockKernelError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            developer_message=f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
