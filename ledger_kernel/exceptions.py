"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The allocation engine decides what to do with a failure by its type:
transient fetch failures feed the circuit breaker, chunk failures become
per-account error entries, a missing identity only disables history
recording.  Matching on message text would make those decisions fragile.

Every exception therefore has:
  1. A TYPED class (catch by type, not message)
  2. A class-level ``code`` (machine-readable, safe for progress snapshots)
  3. Structured attributes (survive logging via StructuredFormatter)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- RetryExhaustedError
    |
    +-- AllocationError
    |   +-- TransientFetchError
    |   |   +-- DebtorLookupError
    |   +-- BulkWriteError
    |   +-- MissingAccountError
    |   +-- CircuitBreakerOpenError
    |   +-- AllocationAlreadyRunningError
    |   +-- PaymentFileNotFoundError
    |
    +-- AuthError
        +-- AuthRequiredError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                      | When
--------------------------|------------------------------------------------
RETRY_EXHAUSTED           | A retried operation failed on every attempt
TRANSIENT_FETCH           | Pending-record page could not be read
DEBTOR_LOOKUP_FAILED      | Bulk debtor lookup for a page could not be read
BULK_WRITE_FAILED         | A write sub-chunk failed after its retries
MISSING_ACCOUNT           | No debtor account for a record (never raised;
                          | labels the failed-allocation entry)
CIRCUIT_BREAKER_OPEN      | Too many consecutive page-level failures
ALLOCATION_ALREADY_RUNNING| Another run holds the payment file
PAYMENT_FILE_NOT_FOUND    | Unknown payment file id
AUTH_REQUIRED             | No actor identity for weekly history creation
"""


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "LEDGER_KERNEL_ERROR"


class RetryExhaustedError(LedgerKernelError):
    """A retryable operation failed on every permitted attempt."""

    code: str = "RETRY_EXHAUSTED"

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        self.operation = operation
        self.attempts = attempts
        self.last_error = repr(last_error)
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}"
        )


# Allocation exceptions


class AllocationError(LedgerKernelError):
    """Base exception for payment allocation errors."""

    code: str = "ALLOCATION_ERROR"


class TransientFetchError(AllocationError):
    """
    Reading a page of pending records failed after retries.

    Aborts only the current page attempt; the runner counts it toward the
    circuit breaker and retries the same offset.
    """

    code: str = "TRANSIENT_FETCH"

    def __init__(self, payment_file_id: str, offset: int, reason: str):
        self.payment_file_id = payment_file_id
        self.offset = offset
        self.reason = reason
        super().__init__(
            f"Could not fetch records for file {payment_file_id} "
            f"at offset {offset}: {reason}"
        )


class DebtorLookupError(TransientFetchError):
    """Bulk debtor lookup for a page failed after retries."""

    code: str = "DEBTOR_LOOKUP_FAILED"

    def __init__(self, account_count: int, reason: str):
        self.payment_file_id = None
        self.offset = None
        self.account_count = account_count
        self.reason = reason
        AllocationError.__init__(
            self,
            f"Could not look up {account_count} debtor account(s): {reason}",
        )


class BulkWriteError(AllocationError):
    """
    A write sub-chunk failed after its retries.

    Isolated to the accounts in that chunk; sibling chunks continue.
    """

    code: str = "BULK_WRITE_FAILED"

    def __init__(self, operation: str, account_numbers: tuple[str, ...], reason: str):
        self.operation = operation
        self.account_numbers = account_numbers
        self.reason = reason
        super().__init__(
            f"{operation} failed for {len(account_numbers)} account(s): {reason}"
        )


class MissingAccountError(AllocationError):
    """No debtor account exists for a payment record's account number.

    Non-retryable.  The engine records it as a failed allocation entry and
    never raises it; the class exists so callers can match on its code.
    """

    code: str = "MISSING_ACCOUNT"

    def __init__(self, account_number: str):
        self.account_number = account_number
        super().__init__(f"No matching account: {account_number}")


class CircuitBreakerOpenError(AllocationError):
    """Consecutive page-level failures reached the breaker threshold."""

    code: str = "CIRCUIT_BREAKER_OPEN"

    def __init__(self, consecutive_failures: int, threshold: int):
        self.consecutive_failures = consecutive_failures
        self.threshold = threshold
        super().__init__(
            f"Circuit breaker open after {consecutive_failures} consecutive "
            f"page failure(s) (threshold {threshold})"
        )


class AllocationAlreadyRunningError(AllocationError):
    """Another allocation run currently holds the payment file."""

    code: str = "ALLOCATION_ALREADY_RUNNING"

    def __init__(self, payment_file_id: str):
        self.payment_file_id = payment_file_id
        super().__init__(
            f"Allocation already running for payment file {payment_file_id}"
        )


class PaymentFileNotFoundError(AllocationError):
    """Payment file with the given id does not exist."""

    code: str = "PAYMENT_FILE_NOT_FOUND"

    def __init__(self, payment_file_id: str):
        self.payment_file_id = payment_file_id
        super().__init__(f"Payment file not found: {payment_file_id}")


# Identity exceptions


class AuthError(LedgerKernelError):
    """Base exception for actor identity errors."""

    code: str = "AUTH_ERROR"


class AuthRequiredError(AuthError):
    """An operation needs a resolved actor identity and none was available."""

    code: str = "AUTH_REQUIRED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Actor identity required for {operation}")
