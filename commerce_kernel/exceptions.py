"""
Typed Exception Hierarchy for the Commerce Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The calling layer has to tell a buyer or an operator "already handled",
"insufficient stock - contact operator" or "invalid request". It cannot do
that by parsing message strings, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        orchestrator.confirm_payment(order_id, PaymentMethod.ORANGE_MONEY, operator)
    except AlreadyProcessedError:
        show("already handled")
    except StockConflictError as e:
        show(f"insufficient stock for {e.product_id} - resolve manually")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CommerceKernelError (base)
    |
    +-- ValidationError
    |
    +-- StateError
    |   +-- InvalidTransitionError
    |   +-- InvalidStateError
    |   +-- TerminalStateError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- StockConflictError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- AlreadyProcessedError
    |
    +-- NotFoundError
        +-- ProductNotFoundError
        +-- OrderNotFoundError
        +-- ConversationNotFoundError
        +-- RelationNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|------------------------------------------
Validation   | VALIDATION_FAILED        | Bad input, nothing written
-------------|--------------------------|------------------------------------------
State        | INVALID_TRANSITION       | Order/conversation transition not legal
             | INVALID_STATE            | Operation not legal in current state
             | TERMINAL_STATE           | Mutation of delivered/cancelled/closed
-------------|--------------------------|------------------------------------------
Stock        | INSUFFICIENT_STOCK       | Adjust would make quantity negative
             | STOCK_CONFLICT           | Confirm lost a stock race; order parked
             |                          | in problem
-------------|--------------------------|------------------------------------------
Concurrency  | CONCURRENT_MODIFICATION  | Caller targeted a stale order revision
-------------|--------------------------|------------------------------------------
Idempotency  | ALREADY_PROCESSED        | Payment already confirmed
-------------|--------------------------|------------------------------------------
Lookup       | PRODUCT_NOT_FOUND        | Unknown product id
             | ORDER_NOT_FOUND          | Unknown order id / no pending order
             | CONVERSATION_NOT_FOUND   | Unknown conversation id
             | RELATION_NOT_FOUND       | Unknown buyer-merchant relation
"""


class CommerceKernelError(Exception):
    """
    Base exception for all commerce kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COMMERCE_KERNEL_ERROR"


# Validation


class ValidationError(CommerceKernelError):
    """Input rejected before any state was changed."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# State machine exceptions


class StateError(CommerceKernelError):
    """Base exception for state machine violations."""

    code: str = "STATE_ERROR"


class InvalidTransitionError(StateError):
    """Requested transition is not in the workflow's transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, current: str, requested: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current
        self.requested_state = requested
        super().__init__(
            f"Cannot transition {entity_type} {entity_id} "
            f"from '{current}' to '{requested}'"
        )


class InvalidStateError(StateError):
    """Operation is not allowed while the entity is in its current state."""

    code: str = "INVALID_STATE"

    def __init__(self, entity_type: str, entity_id: str, state: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.state = state
        self.reason = reason
        super().__init__(
            f"{entity_type} {entity_id} in state '{state}': {reason}"
        )


class TerminalStateError(StateError):
    """Mutation attempted on an order or conversation in a terminal state."""

    code: str = "TERMINAL_STATE"

    def __init__(self, entity_type: str, entity_id: str, state: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.state = state
        super().__init__(
            f"{entity_type} {entity_id} is in terminal state '{state}'"
        )


# Stock exceptions


class StockError(CommerceKernelError):
    """Base exception for on-hand quantity violations."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Adjustment would drive on-hand quantity below zero. Nothing changed."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class StockConflictError(StockError):
    """
    Payment confirmation lost a race for stock.

    The confirm unit was rolled back and the order was moved to ``problem``.
    Retrying blindly will not help; an operator has to resolve it.
    """

    code: str = "STOCK_CONFLICT"

    def __init__(
        self,
        order_id: str,
        product_id: str,
        requested: int,
        available: int,
        conversation_id: str | None = None,
        newly_escalated: bool = False,
    ):
        self.order_id = order_id
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.conversation_id = conversation_id
        self.newly_escalated = newly_escalated
        super().__init__(
            f"Stock conflict confirming order {order_id}: product {product_id} "
            f"needs {requested}, only {available} on hand; order moved to problem"
        )


# Concurrency exceptions


class ConcurrencyError(CommerceKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Caller targeted a revision that is no longer current."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str, expected: int, actual: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_revision = expected
        self.actual_revision = actual
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently: "
            f"expected revision {expected}, found {actual}"
        )


# Idempotency


class AlreadyProcessedError(CommerceKernelError):
    """The operation was already applied to this order."""

    code: str = "ALREADY_PROCESSED"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(
            f"Payment for order {order_id} already processed (status '{status}')"
        )


# Lookup exceptions


class NotFoundError(CommerceKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFoundError(NotFoundError):
    """Order with given ID (or matching the lookup) was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class ConversationNotFoundError(NotFoundError):
    """Conversation with given ID was not found."""

    code: str = "CONVERSATION_NOT_FOUND"

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class RelationNotFoundError(NotFoundError):
    """Buyer-merchant relation was not found."""

    code: str = "RELATION_NOT_FOUND"

    def __init__(self, relation_id: str):
        self.relation_id = relation_id
        super().__init__(f"Client-merchant relation not found: {relation_id}")
