"""
Typed Exception Hierarchy for the CMMS Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock movements and work order generation are audited operations.  Callers
(HTTP layer, cron trigger, operators) must be able to react to a failure by
its KIND, never by parsing the message:

  - ValidationError  -> client-correctable, never retried automatically
  - NotFoundError    -> terminal for that call
  - ConflictError    -> optimistic commit exhausted its retry budget; the
                        caller may retry the whole operation
  - DependencyError  -> store or downstream collaborator failure

Every exception carries:
  1. A ``code`` CLASS attribute (machine-readable, API-safe)
  2. Structured attributes (item_id, requested, on_hand, ...)
  3. A human-readable message

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CmmsKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- InsufficientStockError
    |   +-- InvalidTransactionTypeError
    |   +-- DuplicatePartNumberError
    |   +-- InventoryItemInactiveError
    |   +-- ScheduleInactiveError
    |
    +-- NotFoundError
    |   +-- InventoryItemNotFoundError
    |   +-- ScheduleNotFoundError
    |
    +-- ConflictError
    |   +-- OptimisticLockError
    |
    +-- DependencyError
    |   +-- StoreUnavailableError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError
        +-- ReferencedItemDeleteError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|------------------------------------------
Validation   | INVALID_QUANTITY          | Zero/negative quantity, negative target
             | INSUFFICIENT_STOCK        | Issue/reserve more than held
             | INVALID_TRANSACTION_TYPE  | Unknown transaction type
             | DUPLICATE_PART_NUMBER     | Part number already assigned
             | INVENTORY_ITEM_INACTIVE   | Mutation of a soft-deleted item
             | SCHEDULE_INACTIVE         | Manual generation on inactive schedule
-------------|---------------------------|------------------------------------------
Not found    | INVENTORY_ITEM_NOT_FOUND  | Unknown item id
             | SCHEDULE_NOT_FOUND        | Unknown PM schedule id
-------------|---------------------------|------------------------------------------
Conflict     | OPTIMISTIC_LOCK_CONFLICT  | Retry budget exhausted on stale commits
-------------|---------------------------|------------------------------------------
Dependency   | STORE_UNAVAILABLE         | Store error / lock timeouts exhausted
-------------|---------------------------|------------------------------------------
Immutability | IMMUTABILITY_VIOLATION    | UPDATE/DELETE of a stock transaction
             | REFERENCED_ITEM_DELETE    | DELETE of an item with history

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        ledger.issue_stock(item_id, 8, work_order_id, actor_id)
    except InsufficientStockError as e:
        api_response(code=e.code, on_hand=e.on_hand, requested=e.requested)
    except ConflictError:
        # Safe to retry the whole request
        ...
"""


class CmmsKernelError(Exception):
    """
    Base exception for all CMMS kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CMMS_KERNEL_ERROR"


# Validation errors


class ValidationError(CmmsKernelError):
    """Base exception for client-correctable input errors."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantity is zero, negative, or otherwise unusable for the operation."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, transaction_type: str, quantity, reason: str):
        self.transaction_type = transaction_type
        self.quantity = quantity
        self.reason = reason
        super().__init__(
            f"Invalid quantity {quantity} for {transaction_type}: {reason}"
        )


class InsufficientStockError(ValidationError):
    """Requested quantity exceeds what is held (or available)."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, item_id: str, requested, on_hand, basis: str = "on_hand"):
        self.item_id = item_id
        self.requested = requested
        self.on_hand = on_hand
        self.basis = basis
        super().__init__(
            f"Insufficient stock for item {item_id}. "
            f"Current {basis}: {on_hand}, Requested: {requested}"
        )


class InvalidTransactionTypeError(ValidationError):
    """Transaction type is not one of the ledger's supported types."""

    code: str = "INVALID_TRANSACTION_TYPE"

    def __init__(self, transaction_type: str, valid_types: list[str]):
        self.transaction_type = transaction_type
        self.valid_types = valid_types
        super().__init__(
            f"Invalid transaction type: {transaction_type}. "
            f"Valid types: {', '.join(valid_types)}"
        )


class DuplicatePartNumberError(ValidationError):
    """Part number is already assigned to another inventory item."""

    code: str = "DUPLICATE_PART_NUMBER"

    def __init__(self, part_number: str):
        self.part_number = part_number
        super().__init__(f"Part number already exists: {part_number}")


class InventoryItemInactiveError(ValidationError):
    """Item has been soft-deleted and accepts no further stock movements."""

    code: str = "INVENTORY_ITEM_INACTIVE"

    def __init__(self, item_id: str, part_number: str | None = None):
        self.item_id = item_id
        self.part_number = part_number
        super().__init__(
            f"Inventory item {part_number or item_id} is inactive"
        )


class ScheduleInactiveError(ValidationError):
    """PM schedule is not active."""

    code: str = "SCHEDULE_INACTIVE"

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"PM schedule {schedule_id} is not active")


# Not-found errors


class NotFoundError(CmmsKernelError):
    """Base exception for unknown entities."""

    code: str = "NOT_FOUND"


class InventoryItemNotFoundError(NotFoundError):
    """Inventory item with given ID was not found."""

    code: str = "INVENTORY_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Inventory item not found: {item_id}")


class ScheduleNotFoundError(NotFoundError):
    """PM schedule with given ID was not found."""

    code: str = "SCHEDULE_NOT_FOUND"

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"PM schedule not found: {schedule_id}")


# Concurrency errors


class ConflictError(CmmsKernelError):
    """Base exception for concurrency conflicts surfaced to the caller."""

    code: str = "CONFLICT"


class OptimisticLockError(ConflictError):
    """Optimistic commit kept failing until the retry budget ran out."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, operation: str, entity_id: str, attempts: int):
        self.operation = operation
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Optimistic lock conflict on {operation} {entity_id}: "
            f"entity kept changing underneath after {attempts} attempts"
        )


# Dependency errors


class DependencyError(CmmsKernelError):
    """Base exception for store or downstream collaborator failures."""

    code: str = "DEPENDENCY_ERROR"


class StoreUnavailableError(DependencyError):
    """The transactional store failed or stayed locked past the retry budget."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, reason: str, attempts: int = 1):
        self.operation = operation
        self.reason = reason
        self.attempts = attempts
        super().__init__(
            f"Store unavailable during {operation} after {attempts} attempt(s): {reason}"
        )


# Immutability errors


class ImmutabilityError(CmmsKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only stock transaction."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class ReferencedItemDeleteError(ImmutabilityError):
    """Attempted to physically delete an item that has transaction history."""

    code: str = "REFERENCED_ITEM_DELETE"

    def __init__(self, item_id: str, transaction_count: int):
        self.item_id = item_id
        self.transaction_count = transaction_count
        super().__init__(
            f"Inventory item {item_id} is referenced by {transaction_count} "
            "stock transaction(s); deactivate it instead"
        )
