"""Custom exception classes for the marketplace core.

Provides a hierarchy of exceptions for consistent error handling
across the application with appropriate HTTP status codes. Every
business error is raised inside a unit of work, so the enclosing
database transaction is rolled back before the error reaches a caller.
"""

from decimal import Decimal


class AppException(Exception):
    """Base application exception.

    All custom exceptions should inherit from this class.
    """

    retryable: bool = False

    def __init__(self, message: str, status_code: int = 500) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found exception.

    Raised when a requested resource does not exist.
    """

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            message=f"{resource} with id {identifier} not found",
            status_code=404,
        )
        self.resource = resource
        self.identifier = identifier


class ProductNotFoundError(AppException):
    """The requested variant (or its product) is missing or inactive."""

    def __init__(self, variant_id: str) -> None:
        super().__init__(
            message=f"Product variant {variant_id} not found or inactive",
            status_code=404,
        )
        self.variant_id = variant_id


class ConflictError(AppException):
    """Resource conflict exception.

    Raised when there's a conflict such as duplicate entries
    or version mismatch during optimistic locking.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message=message, status_code=409)


class ValidationError(AppException):
    """Input validation failed exception.

    Raised when input data fails validation rules.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message=message, status_code=422)


class AuthenticationError(AppException):
    """The caller's identity header is missing or names no active user."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message=message, status_code=401)


class ForbiddenError(AppException):
    """The caller is authenticated but not allowed to perform the action."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, status_code=403)


class InsufficientFundsError(AppException):
    """Insufficient wallet balance exception.

    Raised when a debit cannot be completed due to
    insufficient funds in the source wallet.
    """

    def __init__(
        self,
        wallet_id: str,
        required: Decimal,
        available: Decimal,
    ) -> None:
        super().__init__(
            message=(
                f"Insufficient funds in wallet {wallet_id}: "
                f"required {required}, available {available}"
            ),
            status_code=402,
        )
        self.wallet_id = wallet_id
        self.required = required
        self.available = available


class WalletNotActiveError(AppException):
    """The wallet is frozen or closed and cannot move money."""

    def __init__(self, wallet_id: str, status: str) -> None:
        super().__init__(
            message=f"Wallet {wallet_id} is not active (status: {status})",
            status_code=423,
        )
        self.wallet_id = wallet_id
        self.status = status


class OutOfStockError(AppException):
    """No inventory unit could be claimed for the product."""

    def __init__(self, product_id: str) -> None:
        super().__init__(
            message=f"Product {product_id} is out of stock",
            status_code=409,
        )
        self.product_id = product_id


class UnitNotAssignedError(AppException):
    """Release was requested for a unit that is not currently assigned."""

    def __init__(self, kind: str, unit_id: str) -> None:
        super().__init__(
            message=f"Inventory {kind} {unit_id} is not assigned",
            status_code=409,
        )
        self.kind = kind
        self.unit_id = unit_id


class DuplicateIdempotencyKeyError(AppException):
    """An idempotency key was reused for a different operation.

    Retries that repeat the original request are replayed instead of
    raising; this error only surfaces when the key collides with a
    different amount, wallet or target, or when a concurrent request
    holding the same key committed first.
    """

    def __init__(self, idempotency_key: str, detail: str | None = None) -> None:
        message = f"Idempotency key {idempotency_key} was already used"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message=message, status_code=409)
        self.idempotency_key = idempotency_key


class InvalidDisputeTransitionError(AppException):
    """The dispute cannot move from its current status to the requested one."""

    def __init__(self, dispute_id: str, current: str, requested: str) -> None:
        super().__init__(
            message=(
                f"Dispute {dispute_id} cannot move from {current} to {requested}"
            ),
            status_code=400,
        )
        self.dispute_id = dispute_id
        self.current = current
        self.requested = requested


class ConcurrencyError(AppException):
    """Concurrent modification detected exception.

    Raised when a compare-and-set update detects that a row was modified
    by another transaction between read and update operations.
    The caller should implement retry logic to handle this error.
    """

    retryable = True

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            message=(
                f"{resource} {identifier} was modified by another transaction. "
                "Please retry."
            ),
            status_code=409,
        )
        self.resource = resource
        self.identifier = identifier


class TransientStorageError(AppException):
    """Lock timeout, serialization failure or lost connection.

    The unit of work has been rolled back; retrying with the same
    idempotency key is safe.
    """

    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message=message, status_code=503)
