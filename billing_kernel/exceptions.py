"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure the reconciliation engine can report has its own class, a
machine-readable ``code`` class attribute, and structured attributes.
Callers (UI, API layer) translate codes into user messages; the engine never
formats user-facing text.

Inside the kernel these exceptions are raised by the command handlers.  At
the service boundary ``ReconciliationService`` catches ``BillingKernelError``
and returns a ``ReconciliationResult`` carrying the exception, so typed
failures never cross the boundary as control flow.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- OrganizationNotFoundError
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- MissingMethodError
    |   +-- MissingReasonError
    |
    +-- PolicyError
    |   +-- OrderingViolationError
    |   +-- BalanceNotZeroError
    |   +-- ReversalWindowExpiredError
    |
    +-- TransitionError
    |   +-- InvalidTransitionError
    |
    +-- IdempotencyError
    |   +-- IdempotencyKeyConflictError
    |
    +-- ConcurrencyError
    |   +-- LockTimeoutError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|------------------------------------------
Not found    | INVOICE_NOT_FOUND         | Invoice ID doesn't exist
             | PAYMENT_NOT_FOUND         | Payment ID doesn't exist
             | ORGANIZATION_NOT_FOUND    | Organization unknown to the directory
-------------|---------------------------|------------------------------------------
Validation   | INVALID_AMOUNT            | Amount <= 0, wrong currency, overpayment
             | MISSING_METHOD            | Payment method absent or unknown
             | MISSING_REASON            | Reject/reverse/cancel without a reason
-------------|---------------------------|------------------------------------------
Policy       | ORDERING_VIOLATION        | Older unpaid invoice exists for the org
             | BALANCE_NOT_ZERO          | mark_as_paid with a remaining balance
             | REVERSAL_WINDOW_EXPIRED   | Reversal after the configured window
-------------|---------------------------|------------------------------------------
Transition   | INVALID_TRANSITION        | Command not allowed from current state
-------------|---------------------------|------------------------------------------
Idempotency  | IDEMPOTENCY_KEY_CONFLICT  | Same key, different request
-------------|---------------------------|------------------------------------------
Concurrency  | LOCKED                    | Per-invoice lock acquisition timed out
-------------|---------------------------|------------------------------------------
Immutability | IMMUTABILITY_VIOLATION    | Editing a payment amount, deleting rows
-------------|---------------------------|------------------------------------------
Audit        | AUDIT_CHAIN_BROKEN        | Hash chain validation failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CHECK THE RESULT STATUS (service boundary):

    result = service.submit_payment(invoice_id, Money.of(4068, "USD"), "check", ...)
    if result.status is ResultStatus.ORDERING_VIOLATION:
        show_oldest(result.error.blocking_invoice_id)

2. DUPLICATE SUBMISSION IS SUCCESS:

    result = service.submit_payment(..., idempotency_key=key)
    assert result.is_success   # SUCCESS or DUPLICATE_SUBMISSION
    payment = result.value     # the original payment on replay

3. LOCKED IS RETRYABLE:

    if result.status is ResultStatus.LOCKED:
        retry_later()

===============================================================================
"""


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(BillingKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class PaymentNotFoundError(NotFoundError):
    """Payment with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class OrganizationNotFoundError(NotFoundError):
    """Organization is unknown to the organization directory."""

    code: str = "ORGANIZATION_NOT_FOUND"

    def __init__(self, organization_id: str):
        self.organization_id = organization_id
        super().__init__(f"Organization not found: {organization_id}")


# Validation exceptions


class ValidationError(BillingKernelError):
    """Base exception for invalid command input."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """
    Payment amount is non-positive, in the wrong currency, or overpays.

    ``reason`` is one of ``non_positive``, ``currency_mismatch`` or
    ``overpayment``.
    """

    code: str = "INVALID_AMOUNT"

    def __init__(
        self,
        amount: int,
        reason: str,
        balance_due: int | None = None,
    ):
        self.amount = amount
        self.reason = reason
        self.balance_due = balance_due
        super().__init__(
            f"Invalid amount {amount} ({reason}); balance_due={balance_due}"
        )


class MissingMethodError(ValidationError):
    """Payment method is absent, empty, or not a recognised method."""

    code: str = "MISSING_METHOD"

    def __init__(self, method: str | None = None):
        self.method = method
        super().__init__(f"Payment method missing or unknown: {method!r}")


class MissingReasonError(ValidationError):
    """A reason is required for this action."""

    code: str = "MISSING_REASON"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"A reason is required to {action}")


# Policy exceptions


class PolicyError(BillingKernelError):
    """Base exception for business policy denials."""

    code: str = "POLICY_ERROR"


class OrderingViolationError(PolicyError):
    """
    An older invoice of the same organization still has a balance.

    Invoices are settled oldest-first; ``blocking_invoice_id`` identifies
    the invoice that must be paid before this one.
    """

    code: str = "ORDERING_VIOLATION"

    def __init__(self, invoice_id: str, blocking_invoice_id: str):
        self.invoice_id = invoice_id
        self.blocking_invoice_id = blocking_invoice_id
        super().__init__(
            f"Invoice {invoice_id} cannot accept payment: "
            f"older invoice {blocking_invoice_id} has an outstanding balance"
        )


class BalanceNotZeroError(PolicyError):
    """Invoice cannot be closed while a balance remains."""

    code: str = "BALANCE_NOT_ZERO"

    def __init__(self, invoice_id: str, balance_due: int):
        self.invoice_id = invoice_id
        self.balance_due = balance_due
        super().__init__(
            f"Invoice {invoice_id} has outstanding balance {balance_due}"
        )


class ReversalWindowExpiredError(PolicyError):
    """Verified payment is older than the reversal window."""

    code: str = "REVERSAL_WINDOW_EXPIRED"

    def __init__(self, payment_id: str, verified_at: str, window_hours: int):
        self.payment_id = payment_id
        self.verified_at = verified_at
        self.window_hours = window_hours
        super().__init__(
            f"Payment {payment_id} verified at {verified_at} can only be "
            f"reversed within {window_hours} hours"
        )


# Transition exceptions


class TransitionError(BillingKernelError):
    """Base exception for state machine errors."""

    code: str = "TRANSITION_ERROR"


class InvalidTransitionError(TransitionError):
    """Command attempted from a state that does not permit it."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        action: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} in state '{current_state}'"
        )


# Idempotency exceptions


class IdempotencyError(BillingKernelError):
    """Base exception for idempotency key handling."""

    code: str = "IDEMPOTENCY_ERROR"


class IdempotencyKeyConflictError(IdempotencyError):
    """
    Idempotency key reused for a different request.

    The stored fingerprint (invoice, amount, method) does not match the
    new request.
    """

    code: str = "IDEMPOTENCY_KEY_CONFLICT"

    def __init__(
        self,
        idempotency_key: str,
        expected_fingerprint: str,
        received_fingerprint: str,
    ):
        self.idempotency_key = idempotency_key
        self.expected_fingerprint = expected_fingerprint
        self.received_fingerprint = received_fingerprint
        super().__init__(
            f"Idempotency key {idempotency_key} reused with a different request"
        )


# Concurrency exceptions


class ConcurrencyError(BillingKernelError):
    """Base exception for concurrency issues."""

    code: str = "CONCURRENCY_ERROR"


class LockTimeoutError(ConcurrencyError):
    """Per-invoice lock could not be acquired within the timeout."""

    code: str = "LOCKED"

    def __init__(self, invoice_id: str, timeout_seconds: float):
        self.invoice_id = invoice_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Invoice {invoice_id} is busy; lock not acquired within "
            f"{timeout_seconds}s"
        )


# Immutability exceptions


class ImmutabilityError(BillingKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Audit exceptions


class AuditError(BillingKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """
    Audit hash chain validation failed.

    Indicates possible tampering with an invoice's transition history.
    """

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, invoice_id: str, seq: int, expected_hash: str, actual_hash: str):
        self.invoice_id = invoice_id
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken for invoice {invoice_id} at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
